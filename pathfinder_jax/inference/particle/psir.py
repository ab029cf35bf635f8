# pathfinder_jax/inference/particle/psir.py
"""
Pareto-smoothed importance resampling (PSIR).

Pooled draws from one or more approximations are reweighted by their raw
log importance ratios log p(phi) - log q(phi). With method="psir" the heavy
right tail of the ratios is regularised by fitting a generalized Pareto
distribution (arviz.psislw, Vehtari et al. 2015); the fitted tail shape k is
returned as a diagnostic. Draws are then resampled with replacement.

A poor k (> 0.7, or infinite when too few draws are available to fit a tail)
only emits an ImportanceWeightWarning. Callers decide what to do with it.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Literal

import arviz as az
import jax.numpy as jnp
import numpy as np

from ..diagnostics import (
    ImportanceWeightDegenerate,
    ImportanceWeightWarning,
    pareto_k_is_reliable,
)
from .resampling import effective_sample_size, multinomial_resample, normalise_log_weights


@dataclass
class ImportanceResult:
    """Importance resampling results."""
    samples: jnp.ndarray  # (n_draws, N)
    indices: jnp.ndarray  # (n_draws,) indices into the pooled draws
    log_weights: jnp.ndarray  # (P,) normalised (smoothed) log weights of the pool
    pareto_k: float  # nan when no smoothing was applied
    ess: float  # effective sample size of the pool weights


def pareto_smooth(log_ratios):
    """
    Pareto-smooth raw log importance ratios.

    Returns:
        (normalised smoothed log weights, tail shape k)
    """
    with warnings.catch_warnings():
        # the tail diagnostic is reported by the caller
        warnings.simplefilter("ignore", category=UserWarning)
        warnings.filterwarnings("ignore", category=RuntimeWarning, message="overflow encountered in exp")
        logw, k = az.psislw(np.asarray(log_ratios, dtype=np.float64))
    return jnp.asarray(logw), float(np.asarray(k))


def psir(
    key,
    draws,
    log_ratios,
    n_draws: int,
    method: Literal["psir", "identity"] = "psir",
) -> ImportanceResult:
    """
    Resample pooled draws according to their importance ratios.

    Args:
        key: PRNG key
        draws: Pooled draws (P, N)
        log_ratios: Raw log importance ratios log p - log q (P,)
        n_draws: Number of draws to return
        method: "psir" for Pareto smoothing, "identity" for raw self-normalised weights

    Returns:
        ImportanceResult with the resampled draws and diagnostics

    Raises:
        ValueError: on non-positive n_draws, mismatched lengths or unknown method
        ImportanceWeightDegenerate: if no log ratio is finite
    """
    if n_draws <= 0:
        raise ValueError(f"n_draws must be positive, got {n_draws}.")
    draws = jnp.asarray(draws)
    log_ratios = jnp.ravel(jnp.asarray(log_ratios))
    if draws.shape[0] != log_ratios.shape[0]:
        raise ValueError(
            f"Got {draws.shape[0]} draws but {log_ratios.shape[0]} log importance ratios."
        )

    finite = jnp.isfinite(log_ratios)
    if not bool(jnp.any(finite)):
        raise ImportanceWeightDegenerate("None of the pooled draws has a finite importance ratio.")
    log_ratios = jnp.where(finite, log_ratios, -jnp.inf)

    if method == "psir":
        logw, pareto_k = pareto_smooth(log_ratios)
        if not pareto_k_is_reliable(pareto_k):
            warnings.warn(
                f"Pareto k diagnostic is {pareto_k:.2f} (> 0.7): the importance weights "
                "are unreliable and the resampled draws may be a poor approximation.",
                ImportanceWeightWarning,
            )
    elif method == "identity":
        logw, pareto_k = normalise_log_weights(log_ratios), float("nan")
    else:
        raise ValueError(f"Unknown importance sampling method: {method}")

    indices = multinomial_resample(key, logw, n_draws)
    return ImportanceResult(
        samples=draws[indices],
        indices=indices,
        log_weights=logw,
        pareto_k=pareto_k,
        ess=float(effective_sample_size(logw)),
    )
