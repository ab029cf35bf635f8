# pathfinder_jax/inference/diagnostics.py
"""
Structured diagnostics and error taxonomy for Pathfinder.

Numerical degeneracies that are mathematically expected (curvature skips,
empty history, truncated traces) never raise: they are reported through
PathDiagnostics. Only malformed inputs raise, as ValueError. In a multi-path
call a run that raises is reported as FAILED and its siblings carry on.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import jax.numpy as jnp

from ..core.trace import TraceStatus


class PathfinderError(Exception):
    """Base class for Pathfinder errors."""


class ImportanceWeightDegenerate(PathfinderError, ValueError):
    """No pooled draw carries a finite importance ratio, so nothing can be resampled."""


class AllPathsFailed(PathfinderError):
    """Every run of a multi-path call failed, so there is nothing to pool."""


class ImportanceWeightWarning(RuntimeWarning):
    """The Pareto tail-shape diagnostic flags an unreliable importance-sampling estimate."""


class PathStatus(Enum):
    """Outcome of the ELBO selection on a single path."""
    SUCCESS = "success"
    # the trace has no optimizer step, the initial diagonal approximation is used
    NO_ITERATIONS = "no_iterations"
    # no iteration produced a finite ELBO
    ELBO_NONFINITE = "elbo_nonfinite"
    # the run raised (e.g. a non-finite start point) and was left out of the pool
    FAILED = "failed"


@dataclass
class PathDiagnostics:
    """Per-path diagnostics."""
    trace_status: TraceStatus
    n_iterations: int
    curvature_skipped: jnp.ndarray  # shape [n_iterations]
    elbo_trace: jnp.ndarray  # shape [n_iterations + 1], entry 0 is nan unless NO_ITERATIONS
    best_index: int
    path_status: PathStatus = PathStatus.SUCCESS

    @property
    def n_curvature_skipped(self) -> int:
        return int(jnp.sum(self.curvature_skipped))

    @property
    def max_elbo(self) -> float:
        return float(self.elbo_trace[self.best_index])

    @property
    def truncated(self) -> bool:
        return self.trace_status == TraceStatus.NON_FINITE


PARETO_K_THRESHOLD = 0.7


def pareto_k_is_reliable(pareto_k) -> bool:
    """True when the tail shape is finite and below the usual 0.7 threshold."""
    k = float(pareto_k)
    return math.isfinite(k) and k <= PARETO_K_THRESHOLD
