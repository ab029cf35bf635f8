# pathfinder_jax/__init__.py
"""
Pathfinder variational inference in JAX.

Quasi-Newton (L-BFGS) optimisation paths are turned into a sequence of
low-rank-plus-diagonal Gaussian approximations; the best one by ELBO is
selected per path, and several paths can be pooled with Pareto-smoothed
importance resampling.
"""
from .core import OptimTrace, TraceStatus, truncate_nonfinite
from .optimisation import LBFGS, LBFGSCFG
from .inference import (
    Pathfinder, PathfinderCFG, PathfinderRun, pathfinder,
    MultiPathfinder, MultiPathfinderCFG, MultiPathfinderRun, multipathfinder,
    PathfinderError, ImportanceWeightDegenerate, AllPathsFailed, ImportanceWeightWarning,
    PathStatus, PathDiagnostics,
    ImportanceResult, psir,
)
from .runner import RunOut, run

__version__ = "0.1.0"

__all__ = [
    "OptimTrace", "TraceStatus", "truncate_nonfinite",
    "LBFGS", "LBFGSCFG",
    "Pathfinder", "PathfinderCFG", "PathfinderRun", "pathfinder",
    "MultiPathfinder", "MultiPathfinderCFG", "MultiPathfinderRun", "multipathfinder",
    "PathfinderError", "ImportanceWeightDegenerate", "AllPathsFailed", "ImportanceWeightWarning",
    "PathStatus", "PathDiagnostics",
    "ImportanceResult", "psir",
    "RunOut", "run",
]
