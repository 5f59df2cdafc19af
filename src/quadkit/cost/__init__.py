"""Least-squares cost functions and their Gauss-Newton approximations."""

from .approximation import ScalarFunctionQuadraticApproximation
from .cost_base import CostFunctionBase
from .gauss_newton import QuadraticGaussNewtonCost
from .residual import ResidualSpec

__all__ = [
    "CostFunctionBase",
    "QuadraticGaussNewtonCost",
    "ResidualSpec",
    "ScalarFunctionQuadraticApproximation",
]
