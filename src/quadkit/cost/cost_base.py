"""Cost function interface consumed by trajectory optimizers."""

from __future__ import annotations

import abc

import numpy as np
from numpy.typing import ArrayLike, NDArray

from quadkit.cost.approximation import ScalarFunctionQuadraticApproximation

__all__ = ["CostFunctionBase"]


class CostFunctionBase(abc.ABC):
    """Intermediate cost ``L(t, x, u)`` and final cost ``Phi(t, x)`` of an optimal control problem."""

    @abc.abstractmethod
    def cost(self, t: float, x: ArrayLike, u: ArrayLike) -> float:
        """Evaluates the intermediate cost."""

    @abc.abstractmethod
    def final_cost(self, t: float, x: ArrayLike) -> float:
        """Evaluates the final cost."""

    @abc.abstractmethod
    def cost_quadratic_approximation(
        self, t: float, x: ArrayLike, u: ArrayLike
    ) -> ScalarFunctionQuadraticApproximation:
        """Second-order model of the intermediate cost around ``(x, u)``."""

    @abc.abstractmethod
    def final_cost_quadratic_approximation(
        self, t: float, x: ArrayLike
    ) -> ScalarFunctionQuadraticApproximation:
        """Second-order model of the final cost around ``x``."""

    @abc.abstractmethod
    def cost_derivative_time(self, t: float, x: ArrayLike, u: ArrayLike) -> float:
        """Partial derivative of the intermediate cost with respect to time."""

    @abc.abstractmethod
    def final_cost_derivative_time(self, t: float, x: ArrayLike) -> float:
        """Partial derivative of the final cost with respect to time."""

    @abc.abstractmethod
    def clone(self) -> CostFunctionBase:
        """Returns an independent copy that can be evaluated on another thread."""

    def cost_derivative_state(self, t: float, x: ArrayLike, u: ArrayLike) -> NDArray[np.float64]:
        """Gradient ``dL/dx``.

        Computed from the full quadratic approximation, so it also replaces
        the point cached for :meth:`cost_derivative_time`.
        """
        return self.cost_quadratic_approximation(t, x, u).gradient_x

    def cost_derivative_input(self, t: float, x: ArrayLike, u: ArrayLike) -> NDArray[np.float64]:
        """Gradient ``dL/du``.

        Like :meth:`cost_derivative_state`, this replaces the cached point.
        """
        return self.cost_quadratic_approximation(t, x, u).gradient_u

    def final_cost_derivative_state(self, t: float, x: ArrayLike) -> NDArray[np.float64]:
        """Gradient ``dPhi/dx``.

        Computed from the final quadratic approximation, so it also replaces
        the point cached for :meth:`final_cost_derivative_time`.
        """
        return self.final_cost_quadratic_approximation(t, x).gradient_x
