# pathfinder_jax/inference/__init__.py
"""
Inference layer.

A concrete method (single- or multi-path Pathfinder) is a composition of:
  - a log-density and its gradient (treated as black boxes),
  - an optimisation trace provider (optimisation.*), and
  - the approximation / resampling operators of this package.
"""
from __future__ import annotations

from .base import InferenceMethod
from .diagnostics import (
    PathfinderError,
    ImportanceWeightDegenerate,
    AllPathsFailed,
    ImportanceWeightWarning,
    PathStatus,
    PathDiagnostics,
)
from .particle import ImportanceResult, psir
from .pathfinder import (
    Pathfinder, PathfinderCFG, PathfinderRun, pathfinder,
    MultiPathfinder, MultiPathfinderCFG, MultiPathfinderRun, multipathfinder,
)

__all__ = [
    "InferenceMethod",
    "PathfinderError", "ImportanceWeightDegenerate", "AllPathsFailed", "ImportanceWeightWarning",
    "PathStatus", "PathDiagnostics",
    "ImportanceResult", "psir",
    "Pathfinder", "PathfinderCFG", "PathfinderRun", "pathfinder",
    "MultiPathfinder", "MultiPathfinderCFG", "MultiPathfinderRun", "multipathfinder",
]
