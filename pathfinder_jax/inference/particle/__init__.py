# pathfinder_jax/inference/particle/__init__.py
"""
Weighted-particle utilities.

This module provides:
  - resampling.py: multinomial resampling, ESS and log-weight normalisation
  - psir.py: Pareto-smoothed importance resampling of pooled draws
"""
from .resampling import multinomial_resample, effective_sample_size, normalise_log_weights
from .psir import ImportanceResult, psir, pareto_smooth

__all__ = [
    "multinomial_resample",
    "effective_sample_size",
    "normalise_log_weights",
    "ImportanceResult",
    "psir",
    "pareto_smooth",
]
