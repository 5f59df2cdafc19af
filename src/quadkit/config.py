"""Configuration for the quadratic Gauss-Newton cost engine.

The config controls what the engine does when a persisted model cannot be
loaded and which automatic-differentiation mode is used to build the
residual Jacobians.
"""

from __future__ import annotations

LOAD_ERROR_POLICIES = ("recompile", "raise")
JACOBIAN_MODES = (None, "fwd", "rev")


class GaussNewtonConfig:
    """Configuration for :class:`quadkit.cost.gauss_newton.QuadraticGaussNewtonCost`."""

    def __init__(
        self,
        load_error_policy: str = "recompile",
        jacobian_mode: str | None = None,
    ):
        """Initialize configuration.

        Args:
            load_error_policy:
                What to do when ``initialize`` is asked to reuse a persisted
                model and loading fails with
                :class:`quadkit.exceptions.ModelLoadError`.

                - ``"recompile"``: log a warning, rebuild the model and
                  overwrite the artifact.
                - ``"raise"``: propagate the error to the caller.

            jacobian_mode:
                Differentiation mode used for the residual Jacobian.
                ``None`` picks reverse mode if the residual has no more
                outputs than inputs and forward mode otherwise. ``"fwd"``
                and ``"rev"`` force ``jax.jacfwd`` and ``jax.jacrev``.

        Raises:
            ValueError: If an option is not one of its allowed values.
        """
        if load_error_policy not in LOAD_ERROR_POLICIES:
            raise ValueError(
                f"load_error_policy must be one of {LOAD_ERROR_POLICIES}; "
                f"got {load_error_policy!r}."
            )
        if jacobian_mode not in JACOBIAN_MODES:
            raise ValueError(
                f"jacobian_mode must be one of {JACOBIAN_MODES}; got {jacobian_mode!r}."
            )
        self.load_error_policy = load_error_policy
        self.jacobian_mode = jacobian_mode

    def __repr__(self) -> str:
        return (
            f"GaussNewtonConfig(load_error_policy={self.load_error_policy!r}, "
            f"jacobian_mode={self.jacobian_mode!r})"
        )
