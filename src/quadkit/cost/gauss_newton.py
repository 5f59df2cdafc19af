"""Quadratic Gauss-Newton cost with automatically differentiated residuals.

The intermediate cost term and the final cost term have the form

- ``L = 0.5 * f(t, x, u, p)' f(t, x, u, p)``
- ``Phi = 0.5 * g(t, x, p)' g(t, x, p)``

The user provides ``f`` and ``g``; their Jacobians are computed by
automatic differentiation. The Hessians of ``L`` and ``Phi`` are
approximated by the chain rule while neglecting the second derivatives of
``f`` and ``g``, so they are guaranteed to be positive semidefinite.

Example:
--------

    >>> import jax.numpy as jnp
    >>> from quadkit.cost.gauss_newton import QuadraticGaussNewtonCost
    >>> cost = QuadraticGaussNewtonCost.from_functions(
    ...     state_dim=1, input_dim=1, intermediate=lambda t, x, u, p: x - u
    ... )
    >>> cost.initialize("x_minus_u", verbose=False)
    >>> approx = cost.cost_quadratic_approximation(0.0, [2.0], [1.0])
    >>> approx.value, approx.hessian_xu
    (0.5, array([[-1.]]))

Instances are not safe for concurrent use; give every thread its own
:meth:`~QuadraticGaussNewtonCost.clone`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from quadkit.autodiff.layout import TapeLayout
from quadkit.autodiff.model_cache import ModelCacheHandle
from quadkit.autodiff.tape import DifferentiableFunctionRecord
from quadkit.config import GaussNewtonConfig
from quadkit.cost.approximation import (
    ScalarFunctionQuadraticApproximation,
    gauss_newton_approximation,
    gauss_newton_value,
)
from quadkit.cost.cost_base import CostFunctionBase
from quadkit.cost.residual import (
    FinalResidual,
    IntermediateResidual,
    NoParameters,
    ParameterProvider,
    ResidualSpec,
    zero_final_residual,
)
from quadkit.exceptions import (
    InitializationError,
    ModelLoadError,
    NotInitializedError,
    PreconditionViolation,
)
from quadkit.logger import quadkit_logger
from quadkit.utils.validate import as_float_vector, as_time

__all__ = [
    "DEFAULT_MODEL_FOLDER",
    "CachedEvaluation",
    "EvaluationCache",
    "QuadraticGaussNewtonCost",
]

DEFAULT_MODEL_FOLDER = "/tmp/ocs2"


@dataclass
class CachedEvaluation:
    """Residual values and full Jacobian at the last approximated point."""

    t: float
    x: NDArray[np.float64]
    u: NDArray[np.float64] | None
    values: NDArray[np.float64]
    jacobian: NDArray[np.float64]

    def matches(self, t: float, x: NDArray[np.float64], u: NDArray[np.float64] | None = None) -> bool:
        if t != self.t or not np.array_equal(x, self.x):
            return False
        if self.u is None or u is None:
            return self.u is None and u is None
        return np.array_equal(u, self.u)


@dataclass
class EvaluationCache:
    """Most recent quadratic-approximation points, one per cost term."""

    intermediate: CachedEvaluation | None = None
    final: CachedEvaluation | None = None


class QuadraticGaussNewtonCost(CostFunctionBase):
    """Gauss-Newton cost built from user residuals.

    Args:
        spec: Dimensions, residual functions and parameter providers.
        config: Engine options; defaults to :class:`GaussNewtonConfig`.
    """

    def __init__(self, spec: ResidualSpec, config: GaussNewtonConfig | None = None):
        self.spec = spec
        self.config = config if config is not None else GaussNewtonConfig()
        self._intermediate_record: DifferentiableFunctionRecord | None = None
        self._final_record: DifferentiableFunctionRecord | None = None
        self._cache = EvaluationCache()

    @classmethod
    def from_functions(
        cls,
        state_dim: int,
        input_dim: int,
        intermediate: IntermediateResidual,
        final: FinalResidual | None = None,
        *,
        intermediate_parameters: ParameterProvider | None = None,
        final_parameters: ParameterProvider | None = None,
        config: GaussNewtonConfig | None = None,
    ) -> QuadraticGaussNewtonCost:
        """Builds the cost directly from residual callables."""
        spec = ResidualSpec(
            state_dim=state_dim,
            input_dim=input_dim,
            intermediate=intermediate,
            final=final if final is not None else zero_final_residual,
            intermediate_parameters=intermediate_parameters or NoParameters(),
            final_parameters=final_parameters or NoParameters(),
        )
        return cls(spec, config)

    @property
    def state_dim(self) -> int:
        return self.spec.state_dim

    @property
    def input_dim(self) -> int:
        return self.spec.input_dim

    @property
    def is_initialized(self) -> bool:
        return self._intermediate_record is not None and self._final_record is not None

    @property
    def intermediate_record(self) -> DifferentiableFunctionRecord:
        return self._require_initialized()[0]

    @property
    def final_record(self) -> DifferentiableFunctionRecord:
        return self._require_initialized()[1]

    def get_intermediate_parameters(self, t: float) -> NDArray[np.float64]:
        return np.asarray(self.spec.intermediate_parameters.parameters(t), dtype=np.float64).reshape(-1)

    def get_num_intermediate_parameters(self) -> int:
        return int(self.spec.intermediate_parameters.num_parameters())

    def get_final_parameters(self, t: float) -> NDArray[np.float64]:
        return np.asarray(self.spec.final_parameters.parameters(t), dtype=np.float64).reshape(-1)

    def get_num_final_parameters(self) -> int:
        return int(self.spec.final_parameters.num_parameters())

    def initialize(
        self,
        model_name: str,
        model_folder: str | os.PathLike = DEFAULT_MODEL_FOLDER,
        recompile_libraries: bool = True,
        verbose: bool = True,
    ) -> None:
        """Tapes both residuals and builds or loads their compiled models.

        Args:
            model_name: Name of the model library.
            model_folder: Folder the model library files are saved to.
            recompile_libraries: If True, the models are compiled anew. If
                False, existing models are loaded when available.
            verbose: Log lifecycle events at INFO instead of DEBUG.

        Raises:
            InitializationError: If a parameter provider returns a vector
                whose length differs from its declared count.
            TapeConstructionError: If a residual cannot be taped.
            ModelLoadError: If loading fails and the configured
                ``load_error_policy`` is ``"raise"``.
        """
        num_intermediate = self._checked_parameter_count(
            "intermediate", self.get_num_intermediate_parameters(), self.get_intermediate_parameters
        )
        num_final = self._checked_parameter_count(
            "final", self.get_num_final_parameters(), self.get_final_parameters
        )

        mode = self.config.jacobian_mode
        intermediate = DifferentiableFunctionRecord(
            "intermediate",
            TapeLayout.intermediate(self.state_dim, self.input_dim, num_intermediate),
            jacobian_mode=mode,
        )
        intermediate.build_tape(self.spec.intermediate)
        final = DifferentiableFunctionRecord(
            "final",
            TapeLayout.final(self.state_dim, num_final),
            jacobian_mode=mode,
        )
        final.build_tape(self.spec.final)

        for record in (intermediate, final):
            handle = ModelCacheHandle(model_folder, model_name, record.kind)
            self._compile(record, handle, recompile_libraries, verbose)

        self._intermediate_record = intermediate
        self._final_record = final
        self._cache = EvaluationCache()

    def cost(self, t: float, x: ArrayLike, u: ArrayLike) -> float:
        _, _, _, z = self._intermediate_point(t, x, u)
        return gauss_newton_value(self._intermediate_record.evaluate(z))

    def final_cost(self, t: float, x: ArrayLike) -> float:
        _, _, z = self._final_point(t, x)
        return gauss_newton_value(self._final_record.evaluate(z))

    def cost_quadratic_approximation(
        self, t: float, x: ArrayLike, u: ArrayLike
    ) -> ScalarFunctionQuadraticApproximation:
        t, x, u, z = self._intermediate_point(t, x, u)
        record = self._intermediate_record
        values, jac = record.value_and_jacobian(z)
        self._cache.intermediate = CachedEvaluation(t, x.copy(), u.copy(), values, jac)

        if record.output_dim == 0:
            return ScalarFunctionQuadraticApproximation.zeros(self.state_dim, self.input_dim)
        layout = record.layout
        return gauss_newton_approximation(
            values, jac[:, layout.slice("state")], jac[:, layout.slice("input")]
        )

    def final_cost_quadratic_approximation(
        self, t: float, x: ArrayLike
    ) -> ScalarFunctionQuadraticApproximation:
        t, x, z = self._final_point(t, x)
        record = self._final_record
        values, jac = record.value_and_jacobian(z)
        self._cache.final = CachedEvaluation(t, x.copy(), None, values, jac)

        if record.output_dim == 0:
            return ScalarFunctionQuadraticApproximation.zeros(self.state_dim)
        return gauss_newton_approximation(values, jac[:, record.layout.slice("state")])

    def cost_derivative_time(self, t: float, x: ArrayLike, u: ArrayLike) -> float:
        """Returns ``dL/dt = f' df/dt`` at the last approximated point.

        Raises:
            PreconditionViolation: If :meth:`cost_quadratic_approximation` was
                not called last at exactly ``(t, x, u)``.
        """
        self._require_initialized()
        t = as_time(t)
        x = as_float_vector(x, self.state_dim, "state")
        u = as_float_vector(u, self.input_dim, "input")
        cached = self._cache.intermediate
        if cached is None or not cached.matches(t, x, u):
            raise PreconditionViolation(
                "cost_derivative_time requires cost_quadratic_approximation to be "
                "called at the same (t, x, u) first."
            )
        return self._time_derivative(cached, self._intermediate_record.layout)

    def final_cost_derivative_time(self, t: float, x: ArrayLike) -> float:
        """Returns ``dPhi/dt = g' dg/dt`` at the last approximated point.

        Raises:
            PreconditionViolation: If :meth:`final_cost_quadratic_approximation`
                was not called last at exactly ``(t, x)``.
        """
        self._require_initialized()
        t = as_time(t)
        x = as_float_vector(x, self.state_dim, "state")
        cached = self._cache.final
        if cached is None or not cached.matches(t, x):
            raise PreconditionViolation(
                "final_cost_derivative_time requires final_cost_quadratic_approximation "
                "to be called at the same (t, x) first."
            )
        return self._time_derivative(cached, self._final_record.layout)

    def clone(self) -> QuadraticGaussNewtonCost:
        """Returns a copy sharing the compiled models but not the evaluation cache."""
        other = object.__new__(type(self))
        other.__dict__.update(self.__dict__)
        other._cache = EvaluationCache()
        return other

    def __copy__(self) -> QuadraticGaussNewtonCost:
        return self.clone()

    def __deepcopy__(self, memo) -> QuadraticGaussNewtonCost:
        return self.clone()

    def _compile(
        self,
        record: DifferentiableFunctionRecord,
        handle: ModelCacheHandle,
        recompile: bool,
        verbose: bool,
    ) -> None:
        try:
            record.compile(handle, force_recompile=recompile, verbose=verbose)
        except ModelLoadError as exc:
            if self.config.load_error_policy == "raise":
                raise
            quadkit_logger.warning("Recompiling %s model: %s", record.kind, exc)
            record.compile(handle, force_recompile=True, verbose=verbose)

    @staticmethod
    def _checked_parameter_count(kind: str, declared: int, get_parameters) -> int:
        returned = np.asarray(get_parameters(0.0)).size
        if returned != declared:
            raise InitializationError(
                f"{kind} parameter provider declares {declared} parameters "
                f"but returned {returned} at t=0."
            )
        return declared

    @staticmethod
    def _time_derivative(cached: CachedEvaluation, layout: TapeLayout) -> float:
        dfdt = cached.jacobian[:, layout.slice("time")].reshape(-1)
        return float(cached.values @ dfdt)

    def _require_initialized(self) -> tuple[DifferentiableFunctionRecord, DifferentiableFunctionRecord]:
        if not self.is_initialized:
            raise NotInitializedError(
                "QuadraticGaussNewtonCost.initialize() must be called before evaluation."
            )
        return self._intermediate_record, self._final_record

    def _runtime_parameters(self, kind: str, p: NDArray[np.float64], layout: TapeLayout) -> NDArray[np.float64]:
        expected = layout.block_size("parameters")
        if p.size != expected:
            raise InitializationError(
                f"{kind} parameter provider returned {p.size} parameters but the model "
                f"was compiled for {expected}; call initialize() again to recompile."
            )
        return p

    def _intermediate_point(self, t, x, u):
        record, _ = self._require_initialized()
        t = as_time(t)
        x = as_float_vector(x, self.state_dim, "state")
        u = as_float_vector(u, self.input_dim, "input")
        p = self._runtime_parameters("intermediate", self.get_intermediate_parameters(t), record.layout)
        z = record.layout.concatenate(time=t, state=x, input=u, parameters=p)
        return t, x, u, z

    def _final_point(self, t, x):
        _, record = self._require_initialized()
        t = as_time(t)
        x = as_float_vector(x, self.state_dim, "state")
        p = self._runtime_parameters("final", self.get_final_parameters(t), record.layout)
        z = record.layout.concatenate(time=t, state=x, parameters=p)
        return t, x, z

    def __repr__(self) -> str:
        return (
            f"QuadraticGaussNewtonCost(state_dim={self.state_dim}, input_dim={self.input_dim}, "
            f"initialized={self.is_initialized})"
        )
