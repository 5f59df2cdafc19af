"""Residual functions and parameter providers of least-squares costs.

The intermediate cost is ``L = 0.5 * f(t, x, u, p)' f(t, x, u, p)`` and
the final cost is ``Phi = 0.5 * g(t, x, p)' g(t, x, p)``. Users supply
``f`` and ``g`` as plain callables written with ``jax.numpy`` and,
optionally, providers for the external parameter vectors ``p``.

Example:
--------

    >>> import jax.numpy as jnp
    >>> from quadkit.cost.residual import ConstantParameters, ResidualSpec
    >>> spec = ResidualSpec(
    ...     state_dim=2,
    ...     input_dim=1,
    ...     intermediate=lambda t, x, u, p: jnp.concatenate([x - p, 0.1 * u]),
    ...     intermediate_parameters=ConstantParameters([1.0, 0.0]),
    ... )
"""

from __future__ import annotations

import abc
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import jax.numpy as jnp
import numpy as np
from numpy.typing import ArrayLike, NDArray

__all__ = [
    "IntermediateResidual",
    "FinalResidual",
    "zero_final_residual",
    "ParameterProvider",
    "NoParameters",
    "ConstantParameters",
    "FunctionParameters",
    "ResidualSpec",
]

IntermediateResidual = Callable[[Any, Any, Any, Any], Any]
FinalResidual = Callable[[Any, Any, Any], Any]


def zero_final_residual(t, x, p):
    """Default final residual ``g = [0]``, i.e. no final cost."""
    return jnp.zeros(1)


class ParameterProvider(abc.ABC):
    """Source of the external parameter vector of a residual.

    The number of parameters must stay constant for the lifetime of a
    compiled model; a different count requires recompiling.
    """

    @abc.abstractmethod
    def parameters(self, t: float) -> NDArray[np.float64]:
        """Returns the parameter vector at time ``t``."""

    @abc.abstractmethod
    def num_parameters(self) -> int:
        """Returns the length of the parameter vector."""


class NoParameters(ParameterProvider):
    """Provider of an empty parameter vector."""

    def parameters(self, t: float) -> NDArray[np.float64]:
        return np.zeros(0)

    def num_parameters(self) -> int:
        return 0

    def __eq__(self, other) -> bool:
        return isinstance(other, NoParameters)

    def __hash__(self) -> int:
        return hash(NoParameters)

    def __repr__(self) -> str:
        return "NoParameters()"


class ConstantParameters(ParameterProvider):
    """Provider of a time-invariant parameter vector."""

    def __init__(self, values: ArrayLike):
        self._values = np.array(values, dtype=np.float64).reshape(-1)
        self._values.setflags(write=False)

    def parameters(self, t: float) -> NDArray[np.float64]:
        return self._values.copy()

    def num_parameters(self) -> int:
        return int(self._values.size)

    def __repr__(self) -> str:
        return f"ConstantParameters({self._values.tolist()})"


class FunctionParameters(ParameterProvider):
    """Provider wrapping a function of time.

    Args:
        function: Maps time to a parameter vector of length ``num_parameters``.
        num_parameters: Declared length of the parameter vector.
    """

    def __init__(self, function: Callable[[float], ArrayLike], num_parameters: int):
        if not callable(function):
            raise TypeError("function must be callable.")
        if int(num_parameters) < 0:
            raise ValueError(f"num_parameters must be non-negative; got {num_parameters}.")
        self._function = function
        self._num_parameters = int(num_parameters)

    def parameters(self, t: float) -> NDArray[np.float64]:
        return np.asarray(self._function(t), dtype=np.float64).reshape(-1)

    def num_parameters(self) -> int:
        return self._num_parameters


@dataclass(frozen=True)
class ResidualSpec:
    """Immutable description of a Gauss-Newton cost.

    Attributes:
        state_dim: Dimension of the state ``x``.
        input_dim: Dimension of the input ``u``.
        intermediate: Residual ``f(t, x, u, p)`` of the intermediate cost.
        final: Residual ``g(t, x, p)`` of the final cost.
        intermediate_parameters: Provider of ``p`` for ``f``.
        final_parameters: Provider of ``p`` for ``g``.
    """

    state_dim: int
    input_dim: int
    intermediate: IntermediateResidual
    final: FinalResidual = zero_final_residual
    intermediate_parameters: ParameterProvider = field(default_factory=NoParameters)
    final_parameters: ParameterProvider = field(default_factory=NoParameters)

    def __post_init__(self):
        for name in ("state_dim", "input_dim"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise TypeError(f"{name} must be an integer; got {value!r}.")
            if value < 0:
                raise ValueError(f"{name} must be non-negative; got {value}.")
        for name in ("intermediate", "final"):
            if not callable(getattr(self, name)):
                raise TypeError(f"{name} residual must be callable.")
        for name in ("intermediate_parameters", "final_parameters"):
            if not isinstance(getattr(self, name), ParameterProvider):
                raise TypeError(f"{name} must be a ParameterProvider.")
