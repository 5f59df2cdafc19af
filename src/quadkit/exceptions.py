"""Exceptions raised by QuadKit."""

from __future__ import annotations

__all__ = [
    "QuadkitError",
    "TapeConstructionError",
    "ModelLoadError",
    "InitializationError",
    "NotInitializedError",
    "PreconditionViolation",
]


class QuadkitError(RuntimeError):
    """Base class for all QuadKit errors."""


class TapeConstructionError(QuadkitError):
    """Raises when a residual function cannot be recorded as a differentiable tape.

    Typical causes are non-JAX operations inside the residual (e.g. ``numpy``
    calls on traced values), Python control flow on traced values, or an
    output that is not a 1D vector.
    """


class ModelLoadError(QuadkitError):
    """Raises when a persisted compiled model cannot be used.

    The artifact may be missing, unreadable, or built for a different
    layout, output dimension or residual fingerprint.
    """


class InitializationError(QuadkitError):
    """Raises when a cost engine cannot be (or was not correctly) initialized."""


class NotInitializedError(InitializationError):
    """Raises when a model is evaluated before it was taped and compiled."""


class PreconditionViolation(QuadkitError):
    """Raises when a cached quantity is read at a point it was not computed for."""
