"""Gauss-Newton algebra for least-squares costs.

For a cost ``L = 0.5 * f' f`` with residual Jacobian ``J = df/dz`` the
Gauss-Newton model is

- value: ``0.5 * f' f``
- gradient: ``J' f``
- Hessian: ``J' J``

The Hessian drops the term with second derivatives of ``f``. ``J' J`` is a
Gram matrix and hence positive semidefinite for any ``J``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

__all__ = [
    "ScalarFunctionQuadraticApproximation",
    "gauss_newton_value",
    "gauss_newton_gradient",
    "gauss_newton_hessian",
    "gauss_newton_approximation",
]


@dataclass
class ScalarFunctionQuadraticApproximation:
    """Second-order model of a scalar function of state and input.

    ``hessian_xu`` has shape ``(nx, nu)`` and holds ``d^2 L / dx du``.
    For final costs ``nu == 0``.
    """

    value: float
    gradient_x: NDArray[np.float64]
    gradient_u: NDArray[np.float64]
    hessian_xx: NDArray[np.float64]
    hessian_uu: NDArray[np.float64]
    hessian_xu: NDArray[np.float64]

    @property
    def hessian_ux(self) -> NDArray[np.float64]:
        return self.hessian_xu.T

    @property
    def state_dim(self) -> int:
        return int(self.gradient_x.size)

    @property
    def input_dim(self) -> int:
        return int(self.gradient_u.size)

    @classmethod
    def zeros(cls, state_dim: int, input_dim: int = 0) -> ScalarFunctionQuadraticApproximation:
        return cls(
            value=0.0,
            gradient_x=np.zeros(state_dim),
            gradient_u=np.zeros(input_dim),
            hessian_xx=np.zeros((state_dim, state_dim)),
            hessian_uu=np.zeros((input_dim, input_dim)),
            hessian_xu=np.zeros((state_dim, input_dim)),
        )


def gauss_newton_value(f: ArrayLike) -> float:
    """Returns ``0.5 * f' f``."""
    f = np.asarray(f, dtype=np.float64)
    return 0.5 * float(f @ f)


def gauss_newton_gradient(jac: ArrayLike, f: ArrayLike) -> NDArray[np.float64]:
    """Returns ``J' f``."""
    return np.asarray(jac, dtype=np.float64).T @ np.asarray(f, dtype=np.float64)


def gauss_newton_hessian(jac_a: ArrayLike, jac_b: ArrayLike | None = None) -> NDArray[np.float64]:
    """Returns ``J_a' J_b``, or the symmetrized ``J_a' J_a`` if ``jac_b`` is None."""
    a = np.asarray(jac_a, dtype=np.float64)
    if jac_b is None:
        h = a.T @ a
        return 0.5 * (h + h.T)
    return a.T @ np.asarray(jac_b, dtype=np.float64)


def gauss_newton_approximation(
    f: ArrayLike,
    jac_x: ArrayLike,
    jac_u: ArrayLike | None = None,
) -> ScalarFunctionQuadraticApproximation:
    """Assembles the Gauss-Newton model from a residual and its Jacobian blocks.

    Args:
        f: Residual values, shape ``(m,)``.
        jac_x: ``df/dx``, shape ``(m, nx)``.
        jac_u: ``df/du``, shape ``(m, nu)``; None for final costs.

    Returns:
        The quadratic approximation.

    Raises:
        ValueError: If the Jacobian row count does not match ``f``.
    """
    f = np.asarray(f, dtype=np.float64).reshape(-1)
    jac_x = np.asarray(jac_x, dtype=np.float64)
    if jac_u is None:
        jac_u = np.zeros((f.size, 0))
    jac_u = np.asarray(jac_u, dtype=np.float64)
    for name, jac in (("jac_x", jac_x), ("jac_u", jac_u)):
        if jac.ndim != 2 or jac.shape[0] != f.size:
            raise ValueError(
                f"{name} must have shape ({f.size}, n); got {jac.shape}."
            )

    return ScalarFunctionQuadraticApproximation(
        value=gauss_newton_value(f),
        gradient_x=gauss_newton_gradient(jac_x, f),
        gradient_u=gauss_newton_gradient(jac_u, f),
        hessian_xx=gauss_newton_hessian(jac_x),
        hessian_uu=gauss_newton_hessian(jac_u),
        hessian_xu=gauss_newton_hessian(jac_x, jac_u),
    )
