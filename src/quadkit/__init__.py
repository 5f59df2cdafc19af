"""Provides all quadkit entry points."""

from importlib.metadata import PackageNotFoundError, version

from quadkit.autodiff.layout import TapeLayout
from quadkit.autodiff.model_cache import CompiledModel, ModelCacheHandle
from quadkit.autodiff.tape import DifferentiableFunctionRecord
from quadkit.config import GaussNewtonConfig
from quadkit.cost.approximation import ScalarFunctionQuadraticApproximation
from quadkit.cost.cost_base import CostFunctionBase
from quadkit.cost.gauss_newton import QuadraticGaussNewtonCost
from quadkit.cost.residual import (
    ConstantParameters,
    FunctionParameters,
    NoParameters,
    ParameterProvider,
    ResidualSpec,
)
from quadkit.exceptions import (
    InitializationError,
    ModelLoadError,
    NotInitializedError,
    PreconditionViolation,
    QuadkitError,
    TapeConstructionError,
)

try:
    __version__ = version("quadkit")
except PackageNotFoundError:
    pass

__all__ = [
    "CompiledModel",
    "ConstantParameters",
    "CostFunctionBase",
    "DifferentiableFunctionRecord",
    "FunctionParameters",
    "GaussNewtonConfig",
    "InitializationError",
    "ModelCacheHandle",
    "ModelLoadError",
    "NoParameters",
    "NotInitializedError",
    "ParameterProvider",
    "PreconditionViolation",
    "QuadkitError",
    "QuadraticGaussNewtonCost",
    "ResidualSpec",
    "ScalarFunctionQuadraticApproximation",
    "TapeConstructionError",
    "TapeLayout",
]
