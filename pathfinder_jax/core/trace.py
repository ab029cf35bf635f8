# pathfinder_jax/core/trace.py
"""
Optimisation trace container.

A trace is the ordered sequence of (iterate, log-density, gradient) triples
visited while maximising a log-density. It is produced once per path by a
trace provider (see optimisation.lbfgs) and is read-only afterwards.

Design principle:
  The trace is a first-class value returned by the optimizer adapter. Nothing
  downstream records evaluations through callbacks or side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import jax.numpy as jnp


class TraceStatus(Enum):
    """Why the trace provider stopped."""
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    NON_FINITE = "non_finite"


@dataclass(frozen=True)
class OptimTrace:
    """
    Trace of an optimisation path of length L+1 (indices 0..L).

    - positions: iterates theta_l, shape (L+1, N)
    - logdensities: log-density values at the iterates, shape (L+1,)
    - grads: gradients of the log-density at the iterates, shape (L+1, N)
    """
    positions: jnp.ndarray
    logdensities: jnp.ndarray
    grads: jnp.ndarray
    status: TraceStatus = TraceStatus.MAX_ITERATIONS

    def __post_init__(self):
        positions = jnp.atleast_2d(jnp.asarray(self.positions))
        grads = jnp.atleast_2d(jnp.asarray(self.grads))
        logdensities = jnp.ravel(jnp.asarray(self.logdensities))
        if positions.shape != grads.shape:
            raise ValueError(
                f"positions {positions.shape} and grads {grads.shape} must have the same shape."
            )
        if logdensities.shape[0] != positions.shape[0]:
            raise ValueError(
                f"Got {logdensities.shape[0]} log-density values for {positions.shape[0]} iterates."
            )
        if positions.shape[0] == 0:
            raise ValueError("A trace must contain at least the initial position.")
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "grads", grads)
        object.__setattr__(self, "logdensities", logdensities)

    @property
    def n_iterations(self) -> int:
        """Number of optimizer steps L (the trace holds L+1 points)."""
        return self.positions.shape[0] - 1

    @property
    def dim(self) -> int:
        return self.positions.shape[1]

    def prefix(self, length: int, status: TraceStatus | None = None) -> OptimTrace:
        """First `length` points of the trace."""
        return OptimTrace(
            positions=self.positions[:length],
            logdensities=self.logdensities[:length],
            grads=self.grads[:length],
            status=self.status if status is None else status,
        )


def finite_mask(trace: OptimTrace) -> jnp.ndarray:
    """Boolean mask (L+1,) of points whose iterate, value and gradient are all finite."""
    return (
        jnp.isfinite(trace.logdensities)
        & jnp.all(jnp.isfinite(trace.positions), axis=-1)
        & jnp.all(jnp.isfinite(trace.grads), axis=-1)
    )


def truncate_nonfinite(trace: OptimTrace) -> OptimTrace:
    """
    Truncate a trace at its last finite point.

    Everything from the first non-finite iterate/value/gradient onwards is
    dropped and the status is set to NON_FINITE. A fully finite trace is
    returned unchanged.

    Raises:
        ValueError: if the initial point itself is not finite.
    """
    mask = finite_mask(trace)
    if bool(jnp.all(mask)):
        return trace
    first_bad = int(jnp.argmin(mask))
    if first_bad == 0:
        raise ValueError("The log-density or its gradient is not finite at the initial position.")
    return trace.prefix(first_bad, status=TraceStatus.NON_FINITE)
