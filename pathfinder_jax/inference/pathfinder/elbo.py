# pathfinder_jax/inference/pathfinder/elbo.py
"""
ELBO scoring and selection of the best approximation along a path.

Every iterate l >= 1 of the trace defines a Gaussian approximation. Each is
scored by a Monte Carlo ELBO from a small number of draws,

    lambda_l = mean(log p(phi)) - mean(log q(phi)),   phi ~ q_l,

and the iterate with the largest ELBO is selected. Iterate 0 carries no
curvature information and is only used when the trace has no step at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import jax
import jax.numpy as jnp
from jax import random

from ...core.trace import OptimTrace
from ...core.typing import LogDensity
from ..diagnostics import PathStatus
from .covariance import CovarianceEstimate, InverseHessianFactors
from .sampler import bfgs_sample

logger = logging.getLogger(__name__)


@dataclass
class PathApproximation:
    """Gaussian approximation at one iterate, with its evaluation draws."""
    index: int
    position: jnp.ndarray  # (N,)
    grad: jnp.ndarray  # (N,)
    factors: InverseHessianFactors
    draws: jnp.ndarray  # (K, N)
    logq: jnp.ndarray  # (K,)
    logp: jnp.ndarray  # (K,)
    elbo: jnp.ndarray  # scalar


@dataclass
class ElboSelection:
    """Result of ELBO selection over a path."""
    best_index: int
    elbos: jnp.ndarray  # shape [L+1], nan where an iterate was not scored
    approximations: List[PathApproximation]  # scored iterates, in order
    status: PathStatus = PathStatus.SUCCESS

    @property
    def best(self) -> PathApproximation:
        for approx in self.approximations:
            if approx.index == self.best_index:
                return approx
        raise KeyError(self.best_index)


def elbo(logp, logq):
    """Monte Carlo ELBO estimate mean(logp) - mean(logq)."""
    return jnp.mean(logp) - jnp.mean(logq)


def evaluate_approximation(
    key,
    logdensity_fn: LogDensity,
    index: int,
    position,
    grad,
    factors: InverseHessianFactors,
    n_draws: int,
) -> PathApproximation:
    """Draw from the approximation at one iterate and score it."""
    draws, logq = bfgs_sample(key, position, grad, factors, n_draws)
    logp = jax.vmap(logdensity_fn)(draws)
    value = elbo(logp, logq)
    # nan ELBOs (e.g. from an indefinite update) must never be selected
    value = jnp.where(jnp.isnan(value), -jnp.inf, value)
    return PathApproximation(
        index=index,
        position=position,
        grad=grad,
        factors=factors,
        draws=draws,
        logq=logq,
        logp=logp,
        elbo=value,
    )


def select_best_approximation(
    key,
    logdensity_fn: LogDensity,
    trace: OptimTrace,
    estimate: CovarianceEstimate,
    n_draws_elbo: int = 5,
) -> ElboSelection:
    """
    Score every iterate l = 1..L of a trace and select the ELBO maximiser.

    Args:
        key: PRNG key
        logdensity_fn: Target log-density (vmappable)
        trace: Optimisation trace of length L+1
        estimate: Inverse-Hessian factors for the same trace
        n_draws_elbo: Draws per iterate used to estimate the ELBO

    Returns:
        ElboSelection with the best index, the ELBO trace and all scored
        approximations (their draws are reused as the path's output)
    """
    if n_draws_elbo <= 0:
        raise ValueError(f"n_draws_elbo must be positive, got {n_draws_elbo}.")
    L = trace.n_iterations
    if len(estimate) != L + 1:
        raise ValueError(
            f"Got {len(estimate)} factorizations for a trace of {L + 1} points."
        )

    # iterate 0 is only scored when there is nothing else
    indices = range(1, L + 1) if L > 0 else range(0, 1)
    keys = random.split(key, L + 1)

    approximations = [
        evaluate_approximation(
            keys[l],
            logdensity_fn,
            l,
            trace.positions[l],
            trace.grads[l],
            estimate[l],
            n_draws_elbo,
        )
        for l in indices
    ]
    elbos = jnp.full(L + 1, jnp.nan, dtype=trace.positions.dtype)
    for approx in approximations:
        elbos = elbos.at[approx.index].set(approx.elbo)
        logger.debug("ELBO at iteration %d: %s", approx.index, float(approx.elbo))

    scores = jnp.stack([approx.elbo for approx in approximations])
    best_index = approximations[int(jnp.argmax(scores))].index

    if L == 0:
        status = PathStatus.NO_ITERATIONS
    elif not bool(jnp.any(jnp.isfinite(scores))):
        status = PathStatus.ELBO_NONFINITE
    else:
        status = PathStatus.SUCCESS

    return ElboSelection(
        best_index=best_index,
        elbos=elbos,
        approximations=approximations,
        status=status,
    )
