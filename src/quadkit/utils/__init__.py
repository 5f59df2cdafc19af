"""Utility functions for QuadKit package."""

from .validate import (
    as_float_vector,
    as_time,
)

__all__ = [
    "as_float_vector",
    "as_time",
]
