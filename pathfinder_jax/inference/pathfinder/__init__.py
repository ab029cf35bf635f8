# pathfinder_jax/inference/pathfinder/__init__.py
"""
Pathfinder variational inference.

This module provides:
  - covariance.py: L-BFGS inverse-Hessian factors along an optimisation trace
  - sampler.py: draws and exact log-densities under the factored Gaussian
  - elbo.py: ELBO scoring and selection of the best iterate
  - single.py: single-path Pathfinder
  - multi.py: multi-path Pathfinder with Pareto-smoothed importance resampling
"""
from .covariance import (
    HistoryBuffer,
    InverseHessianFactors,
    CovarianceEstimate,
    init_history,
    update_diagonal,
    inverse_hessian_factors,
    estimate_inverse_hessian,
)
from .sampler import bfgs_sample, approximation_mean, approximation_moments, gaussian_logdensity
from .elbo import PathApproximation, ElboSelection, elbo, select_best_approximation
from .single import Pathfinder, PathfinderCFG, PathfinderRun, pathfinder
from .multi import MultiPathfinder, MultiPathfinderCFG, MultiPathfinderRun, multipathfinder

__all__ = [
    "HistoryBuffer", "InverseHessianFactors", "CovarianceEstimate",
    "init_history", "update_diagonal", "inverse_hessian_factors", "estimate_inverse_hessian",
    "bfgs_sample", "approximation_mean", "approximation_moments", "gaussian_logdensity",
    "PathApproximation", "ElboSelection", "elbo", "select_best_approximation",
    "Pathfinder", "PathfinderCFG", "PathfinderRun", "pathfinder",
    "MultiPathfinder", "MultiPathfinderCFG", "MultiPathfinderRun", "multipathfinder",
]
