"""Utilities for JAX-based taping in QuadKit."""

from __future__ import annotations

from typing import Any, Callable

import jax
import jax.numpy as jnp

from quadkit.exceptions import TapeConstructionError

__all__ = [
    "enable_x64",
    "to_jax_vector",
    "select_jacobian_transform",
]


def enable_x64() -> None:
    """Enables 64-bit floating point in JAX.

    Costs, gradients and Hessians are all computed in ``float64``; tapes
    recorded with 32-bit floats would not match the compiled models.
    """
    jax.config.update("jax_enable_x64", True)


def to_jax_vector(y: Any, *, where: str) -> "jnp.ndarray":
    """Ensures that a residual output is a 1D vector and returns it as JAX array.

    Args:
        y: Output to check.
        where: Context string for error messages.

    Returns:
        JAX array with shape ``(m,)``.

    Raises:
        TapeConstructionError: If output is not numeric or not 1D.
    """
    try:
        arr = jnp.asarray(y, dtype=jnp.float64)
    except (TypeError, ValueError) as exc:
        raise TapeConstructionError(
            f"{where}: residual output could not be converted to a JAX array."
        ) from exc
    if arr.ndim != 1:
        raise TapeConstructionError(
            f"{where}: residual must return a 1D vector; got shape {tuple(arr.shape)}."
        )
    return arr


def select_jacobian_transform(
    out_dim: int,
    in_dim: int,
    mode: str | None = None,
) -> Callable:
    """Chooses between ``jax.jacrev`` and ``jax.jacfwd``.

    Args:
        out_dim: Residual output dimension.
        in_dim: Tape input dimension.
        mode: Differentiation mode; None (auto), 'fwd', or 'rev'.
            If None, chooses 'rev' if ``out_dim <= in_dim``, else 'fwd'.

    Returns:
        The JAX Jacobian transform.

    Raises:
        ValueError: If mode is invalid.
    """
    if mode is None:
        use_rev = out_dim <= in_dim
    elif mode == "rev":
        use_rev = True
    elif mode == "fwd":
        use_rev = False
    else:
        raise ValueError("select_jacobian_transform: mode must be None, 'fwd', or 'rev'.")
    return jax.jacrev if use_rev else jax.jacfwd
