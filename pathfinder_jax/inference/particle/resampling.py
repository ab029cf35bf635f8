# pathfinder_jax/inference/particle/resampling.py
"""
Resampling utilities for weighted draws.

This module provides the core weighted-resampling operations:
  - normalise_log_weights: self-normalise log weights, zeroing non-finite ones
  - multinomial_resample: resampling indices with replacement from log weights
  - effective_sample_size: Kish ESS of a set of log weights

These functions are used by:
  - psir: Pareto-smoothed importance resampling of pooled Pathfinder draws
"""
from __future__ import annotations

import jax.numpy as jnp
from jax import random
from jax.scipy.special import logsumexp


def normalise_log_weights(logw):
    """
    Self-normalise log weights so that logsumexp(logw) == 0.

    Non-finite entries (nan, +/-inf) get weight zero (log weight -inf).

    Args:
        logw: Log weights (P,)

    Returns:
        Normalised log weights (P,)
    """
    logw = jnp.where(jnp.isfinite(logw), logw, -jnp.inf)
    return logw - logsumexp(logw)


def multinomial_resample(key, logw, n_draws):
    """
    Multinomial resampling of indices based on log weights.

    Args:
        key: PRNG key
        logw: Log weights (P,), need not be normalised
        n_draws: Number of indices to draw

    Returns:
        indices: Resampling indices (n_draws,), drawn with replacement
    """
    w = jnp.exp(normalise_log_weights(logw))
    indices = random.choice(key, logw.shape[0], shape=(n_draws,), p=w, replace=True)
    return indices


def effective_sample_size(logw):
    """
    Compute effective sample size (ESS) from log weights.

    ESS = 1 / sum(w^2), where w are normalized weights.

    Args:
        logw: Log weights (P,)

    Returns:
        ess: Effective sample size (scalar)
    """
    w = jnp.exp(normalise_log_weights(logw))
    return 1.0 / jnp.sum(w ** 2)
