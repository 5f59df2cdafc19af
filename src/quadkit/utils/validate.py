"""Validation utilities for QuadKit."""

from __future__ import annotations

import numbers

import numpy as np
from numpy.typing import ArrayLike, NDArray

__all__ = [
    "as_float_vector",
    "as_time",
]


def as_float_vector(x: ArrayLike, size: int, name: str) -> NDArray[np.float64]:
    """Converts a query vector to a 1D float64 array of a fixed size.

    Args:
        x: Array-like input.
        size: Required number of entries.
        name: Name used in error messages (e.g. ``"state"``).

    Returns:
        A 1D ``float64`` NumPy array with ``size`` entries.

    Raises:
        ValueError: If ``x`` is not 1D or does not have ``size`` entries.
    """
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim == 0 and size == 1:
        arr = arr.reshape(1)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be a 1D vector; got shape {arr.shape}.")
    if arr.size != size:
        raise ValueError(f"{name} must have {size} entries; got {arr.size}.")
    return arr


def as_time(t) -> float:
    """Converts a time argument to a Python float.

    Raises:
        TypeError: If ``t`` is not a real scalar.
    """
    if isinstance(t, numbers.Real):
        return float(t)
    arr = np.asarray(t)
    if arr.ndim != 0 or not np.issubdtype(arr.dtype, np.number):
        raise TypeError(f"time must be a real scalar; got {t!r}.")
    return float(arr)

