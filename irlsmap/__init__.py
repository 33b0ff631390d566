"""
irlsmap - Multi-frame super-resolution by IRLS MAP estimation
Reconstructs a high-resolution image from degraded low-resolution observations
"""

__version__ = "0.1.0"

from .image_data import ImageData
from .degradation import DegradationOperator, gaussian_kernel
from .regularizers import (
    Regularizer,
    SmoothnessRegularizer,
    TotalVariationRegularizer,
    BilateralTotalVariationRegularizer,
)
from .weights import IrlsWeightTable
from .objective import ObjectiveTerm, ObjectiveFunction, DataTerm, IrlsRegularizationTerm
from .minimizer import Minimizer, ScipyMinimizer, Tolerances
from .solver import IrlsMapSolver, SolverOptions, initial_estimate_from_observation

__all__ = [
    "ImageData",
    "DegradationOperator",
    "gaussian_kernel",
    "Regularizer",
    "SmoothnessRegularizer",
    "TotalVariationRegularizer",
    "BilateralTotalVariationRegularizer",
    "IrlsWeightTable",
    "ObjectiveTerm",
    "ObjectiveFunction",
    "DataTerm",
    "IrlsRegularizationTerm",
    "Minimizer",
    "ScipyMinimizer",
    "Tolerances",
    "IrlsMapSolver",
    "SolverOptions",
    "initial_estimate_from_observation",
]
