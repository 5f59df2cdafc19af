"""Differentiable function records.

A :class:`DifferentiableFunctionRecord` wraps one residual function as a
JAX tape over a flat independent-variable vector ``z`` (see
:class:`quadkit.autodiff.layout.TapeLayout`). The tape is recorded once
with :meth:`~DifferentiableFunctionRecord.build_tape`, then compiled (or
loaded from disk) with :meth:`~DifferentiableFunctionRecord.compile`, and
evaluated many times afterwards.

Example:
--------

    >>> import jax.numpy as jnp
    >>> from quadkit.autodiff.layout import TapeLayout
    >>> from quadkit.autodiff.model_cache import ModelCacheHandle
    >>> from quadkit.autodiff.tape import DifferentiableFunctionRecord
    >>> layout = TapeLayout.intermediate(state_dim=1, input_dim=1, num_parameters=0)
    >>> dfr = DifferentiableFunctionRecord("intermediate", layout)
    >>> dfr.build_tape(lambda t, x, u, p: x - u)
    >>> _ = dfr.compile(ModelCacheHandle("/tmp/ocs2", "doc", "intermediate"), force_recompile=True)
    >>> dfr.jacobian([0.0, 2.0, 1.0], blocks=("state", "input"))
    array([[ 1., -1.]])
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from numpy.typing import ArrayLike, NDArray

from quadkit.autodiff.jax_utils import (
    enable_x64,
    select_jacobian_transform,
    to_jax_vector,
)
from quadkit.autodiff.layout import TapeLayout
from quadkit.autodiff.model_cache import CompiledModel, ModelCacheHandle
from quadkit.exceptions import NotInitializedError, TapeConstructionError
from quadkit.logger import lifecycle_level, quadkit_logger
from quadkit.utils.validate import as_float_vector

__all__ = [
    "DifferentiableFunctionRecord",
    "tape_fingerprint",
]


def tape_fingerprint(closed_jaxpr: jax.core.ClosedJaxpr, layout: TapeLayout) -> str:
    """Hashes a recorded tape.

    The hash covers the layout, the printed jaxpr, the values of all
    captured constants and the JAX version, so any change to the residual
    (including closed-over weights) changes the fingerprint.
    """
    h = hashlib.sha256()
    h.update(json.dumps(layout.to_dict()).encode("utf-8"))
    h.update(str(closed_jaxpr.jaxpr).encode("utf-8"))
    for const in closed_jaxpr.consts:
        arr = np.ascontiguousarray(np.asarray(const))
        h.update(f"{arr.dtype}{arr.shape}".encode("utf-8"))
        h.update(arr.tobytes())
    h.update(jax.__version__.encode("utf-8"))
    return h.hexdigest()


class DifferentiableFunctionRecord:
    """Taped residual function with value, Jacobian and Jacobian-vector products.

    Args:
        kind: Residual kind, used for log messages and artifact names.
        layout: Layout of the independent-variable vector.
        jacobian_mode: None (auto), 'fwd', or 'rev'; see
            :func:`quadkit.autodiff.jax_utils.select_jacobian_transform`.
    """

    def __init__(self, kind: str, layout: TapeLayout, *, jacobian_mode: str | None = None):
        enable_x64()
        self.kind = kind
        self.layout = layout
        self.jacobian_mode = jacobian_mode

        self.output_dim: int | None = None
        self.fingerprint: str | None = None
        self._closed_jaxpr = None
        self._flat_fn: Callable | None = None
        self._jvp_fn: Callable | None = None
        self._value_and_jacobian_fn: Callable | None = None
        self._compiled: CompiledModel | None = None
        self._is_compiled = False

    @property
    def has_tape(self) -> bool:
        return self._closed_jaxpr is not None

    @property
    def is_compiled(self) -> bool:
        return self._is_compiled

    @property
    def compiled_model(self) -> CompiledModel | None:
        """The compiled model, or None for zero-output residuals."""
        return self._compiled

    @property
    def jaxpr(self):
        """The recorded tape."""
        self._require_tape()
        return self._closed_jaxpr

    def build_tape(self, residual_fn: Callable[..., ArrayLike]) -> None:
        """Records ``residual_fn`` as a tape.

        ``residual_fn`` is called with one argument per layout block, in
        layout order (e.g. ``(t, x, u, p)``), and must be written with
        ``jax.numpy`` operations.

        Raises:
            TapeConstructionError: If the residual cannot be traced, does not
                return a 1D vector, or returns a different output dimension
                than an already compiled model of this record.
        """
        where = f"{self.kind} residual"
        layout = self.layout

        def flat_fn(z):
            return to_jax_vector(residual_fn(*layout.split(z)), where=where)

        try:
            closed = jax.make_jaxpr(flat_fn)(jax.ShapeDtypeStruct((layout.size,), jnp.float64))
        except TapeConstructionError:
            raise
        except (TypeError, ValueError, IndexError) as exc:
            raise TapeConstructionError(
                f"{where}: could not be recorded with JAX. Residuals must be composed of "
                "jax.numpy operations without Python control flow on their inputs."
            ) from exc

        output_dim = int(closed.out_avals[0].shape[0])
        if self._is_compiled and output_dim != self.output_dim:
            raise TapeConstructionError(
                f"{where}: output dimension changed from {self.output_dim} to {output_dim} "
                "after the model was compiled."
            )

        jac_fn = select_jacobian_transform(output_dim, layout.size, self.jacobian_mode)(flat_fn)

        def value_and_jacobian(z):
            return flat_fn(z), jac_fn(z)

        def jvp(z, tangent):
            return jax.jvp(flat_fn, (z,), (tangent,))[1]

        self._closed_jaxpr = closed
        self._flat_fn = flat_fn
        self._jvp_fn = jax.jit(jvp)
        self._value_and_jacobian_fn = value_and_jacobian
        self.output_dim = output_dim
        self.fingerprint = tape_fingerprint(closed, layout)
        self._compiled = None
        self._is_compiled = False

        quadkit_logger.debug(
            "Taped %s: %d inputs %s -> %d outputs.", where, layout.size, layout, output_dim
        )

    def compile(
        self,
        handle: ModelCacheHandle,
        force_recompile: bool = False,
        verbose: bool = True,
    ) -> CompiledModel | None:
        """Loads or builds the compiled model of the tape.

        Args:
            handle: Location of the persisted model.
            force_recompile: If True, always build and overwrite the
                persisted model. If False, an existing model is loaded.
            verbose: Log lifecycle events at INFO instead of DEBUG.

        Returns:
            The compiled model, or None for a zero-output residual (nothing
            to compile).

        Raises:
            NotInitializedError: If no tape was recorded.
            ModelLoadError: If an existing model does not match the tape.
        """
        self._require_tape()
        level = lifecycle_level(verbose)

        if self.output_dim == 0:
            quadkit_logger.log(
                level, "%s residual has no outputs; nothing to compile.", self.kind
            )
            self._compiled = None
            self._is_compiled = True
            return None

        if not force_recompile and handle.exists():
            model = handle.load(self.layout, self.output_dim, self.fingerprint)
            quadkit_logger.log(level, "Loaded %s model from %s.", self.kind, handle.artifact_path)
        else:
            start = time.perf_counter()
            model = CompiledModel.export(
                self._flat_fn,
                self._value_and_jacobian_fn,
                self.layout,
                self.output_dim,
                self.fingerprint,
            )
            handle.save(model)
            quadkit_logger.log(
                level,
                "Compiled %s model to %s in %.1f ms.",
                self.kind,
                handle.artifact_path,
                1e3 * (time.perf_counter() - start),
            )

        self._compiled = model
        self._is_compiled = True
        return model

    def evaluate(self, point: ArrayLike) -> NDArray[np.float64]:
        """Evaluates the residual at ``point`` with the compiled model."""
        z = self._check_point(point)
        if self.output_dim == 0:
            return np.zeros(0)
        return self._compiled.value(z)

    def value_and_jacobian(self, point: ArrayLike) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Evaluates the residual and its full Jacobian with the compiled model.

        Returns:
            ``(values, jacobian)`` with shapes ``(m,)`` and ``(m, n)``, where
            ``n`` is the layout size.
        """
        z = self._check_point(point)
        if self.output_dim == 0:
            return np.zeros(0), np.zeros((0, self.layout.size))
        return self._compiled(z)

    def jacobian(self, point: ArrayLike, blocks: Sequence[str] | None = None) -> NDArray[np.float64]:
        """Evaluates the Jacobian, optionally restricted to some input blocks.

        Args:
            point: Query point of the layout's size.
            blocks: Block names whose columns are returned, in that order.
                None returns all columns.

        Returns:
            Jacobian with shape ``(m, k)``.
        """
        _, jac = self.value_and_jacobian(point)
        if blocks is None:
            return jac
        return jac[:, self.layout.columns(tuple(blocks))]

    def jvp(self, point: ArrayLike, tangent: ArrayLike) -> NDArray[np.float64]:
        """Evaluates the Jacobian-vector product ``J(point) @ tangent``."""
        z = self._check_point(point)
        v = as_float_vector(tangent, self.layout.size, "tangent")
        if self.output_dim == 0:
            return np.zeros(0)
        return np.asarray(self._jvp_fn(z, v), dtype=np.float64)

    def _require_tape(self) -> None:
        if self._closed_jaxpr is None:
            raise NotInitializedError(f"{self.kind} residual has not been taped.")

    def _check_point(self, point: ArrayLike) -> NDArray[np.float64]:
        self._require_tape()
        if not self._is_compiled:
            raise NotInitializedError(f"{self.kind} residual has not been compiled.")
        return as_float_vector(point, self.layout.size, "point")

    def __repr__(self) -> str:
        return (
            f"DifferentiableFunctionRecord({self.kind!r}, {self.layout!r}, "
            f"output_dim={self.output_dim}, compiled={self._is_compiled})"
        )
