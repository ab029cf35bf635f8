# pathfinder_jax/runner.py
"""
Orchestration layer: (log-density + inference method) -> result.

The runner wires a target log-density (optionally plus a log-prior term)
into an InferenceMethod and standardises the output: the method-specific
Run object plus a flat dict of diagnostics.

Design principles:
  - No assumptions about the method beyond InferenceMethod.run
  - Diagnostics are opportunistically extracted (don't rely on them elsewhere)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import jax

from .core.typing import GradLogDensity, LogDensity
from .inference.base import InferenceMethod


@dataclass
class RunOut:
    """
    Standardised output from a run.

    `result` is the method-specific run object (PathfinderRun or
    MultiPathfinderRun), `diagnostics` a flat dict of common summaries.
    """
    result: Any
    diagnostics: Dict[str, Any]


def with_log_prior(
    logdensity_fn: LogDensity,
    grad_fn: Optional[GradLogDensity],
    log_prior: Callable,
):
    """
    Add a log-prior term to a log-density (and to its gradient, if given).

    The prior gradient is obtained with jax.grad.
    """
    def logdensity_with_prior(x):
        return logdensity_fn(x) + log_prior(x)

    if grad_fn is None:
        return logdensity_with_prior, None

    prior_grad = jax.grad(log_prior)

    def grad_with_prior(x):
        return grad_fn(x) + prior_grad(x)

    return logdensity_with_prior, grad_with_prior


def run(
    *,
    key,
    method: InferenceMethod,
    logdensity_fn: LogDensity,
    initial_position: Any,
    grad_fn: Optional[GradLogDensity] = None,
    log_prior: Optional[Callable] = None,
    ndraws: Optional[int] = None,
) -> RunOut:
    """
    One-shot runner: (log-density + inference method) -> result.

    Args:
        key: PRNG key
        method: Inference method (Pathfinder, MultiPathfinder)
        logdensity_fn: Target log-density
        initial_position: Start point (N,) for Pathfinder, start points (R, N) for MultiPathfinder
        grad_fn: Gradient of the log-density (None -> autodiff)
        log_prior: Optional additive log-prior term log p(x)
        ndraws: Requested number of draws (method default if None)

    Returns:
        RunOut with the method-specific result and standardised diagnostics

    Examples:
        >>> from pathfinder_jax import run, MultiPathfinder, MultiPathfinderCFG
        >>> out = run(
        ...     key=key,
        ...     method=MultiPathfinder(MultiPathfinderCFG(ndraws=200)),
        ...     logdensity_fn=loglik,
        ...     log_prior=lambda x: -0.5 * jnp.sum(x ** 2),
        ...     initial_position=starts,
        ... )
        >>> print(out.diagnostics["pareto_k"])
    """
    if log_prior is not None:
        logdensity_fn, grad_fn = with_log_prior(logdensity_fn, grad_fn, log_prior)

    out = method.run(
        logdensity_fn,
        initial_position,
        key=key,
        grad_fn=grad_fn,
        ndraws=ndraws,
    )

    diagnostics = {"method": method.__class__.__name__}
    if hasattr(out, "diagnostics"):
        d = out.diagnostics
        diagnostics["n_iterations"] = d.n_iterations
        diagnostics["best_index"] = d.best_index
        diagnostics["max_elbo"] = d.max_elbo
        diagnostics["n_curvature_skipped"] = d.n_curvature_skipped
        diagnostics["trace_status"] = d.trace_status.value
        diagnostics["path_status"] = d.path_status.value
    if hasattr(out, "paths"):
        diagnostics["n_paths"] = len(out.paths)
        diagnostics["n_iterations"] = [p.diagnostics.n_iterations for p in out.paths]
        diagnostics["max_elbo"] = [p.diagnostics.max_elbo for p in out.paths]
        diagnostics["n_truncated"] = sum(p.diagnostics.truncated for p in out.paths)
        diagnostics["n_failed"] = out.n_failed
    if hasattr(out, "pareto_k"):
        diagnostics["pareto_k"] = float(out.pareto_k)
        diagnostics["ess"] = float(out.importance.ess)

    return RunOut(result=out, diagnostics=diagnostics)
