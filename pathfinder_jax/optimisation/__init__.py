# pathfinder_jax/optimisation/__init__.py
"""
Optimisation trace providers.

This module provides:
- LBFGS: optax L-BFGS maximisation of a log-density, returning the full trace
- TraceProvider: protocol for plugging in any other optimizer

NOTE: The optimizer is an external collaborator of Pathfinder. Only its trace
(iterates, log-density values, gradients) is consumed downstream.
"""
from .lbfgs import LBFGS, LBFGSCFG, TraceProvider, lbfgs_trace, negated_objective

__all__ = [
    "LBFGS", "LBFGSCFG",
    "TraceProvider",
    "lbfgs_trace",
    "negated_objective",
]
