# pathfinder_jax/inference/pathfinder/single.py
"""
Single-path Pathfinder.

Pathfinder (Zhang et al., 2022) maximises the log-density with L-BFGS and,
at every iterate, forms the Gaussian approximation implied by the L-BFGS
inverse-Hessian estimate. The approximation with the largest ELBO is
returned together with draws from it.

Pipeline:
    trace provider -> truncate_nonfinite -> estimate_inverse_hessian
        -> select_best_approximation -> PathfinderRun
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

import jax
import jax.numpy as jnp
from jax import random

from ...core.trace import OptimTrace, truncate_nonfinite
from ...core.typing import GradLogDensity, LogDensity
from ...optimisation.lbfgs import LBFGS, LBFGSCFG, TraceProvider
from ..base import InferenceMethod
from ..diagnostics import PathDiagnostics, PathStatus
from .covariance import CovarianceEstimate, estimate_inverse_hessian
from .elbo import ElboSelection, select_best_approximation
from .sampler import approximation_moments, bfgs_sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PathfinderCFG:
    """Configuration for single-path Pathfinder."""
    ndraws: int = 5
    ndraws_elbo: int = 5
    history_length: Optional[int] = None  # None -> the L-BFGS memory size
    epsilon: float = 1e-12  # curvature test tolerance
    # "reuse_elbo": return the ndraws_elbo draws that scored the selected iterate
    # "redraw": draw ndraws fresh samples from the selected approximation
    draws_policy: Literal["reuse_elbo", "redraw"] = "reuse_elbo"
    lbfgs: LBFGSCFG = field(default_factory=LBFGSCFG)


@dataclass
class PathfinderRun:
    """Single-path Pathfinder results."""
    mean: jnp.ndarray  # (N,)
    cov: jnp.ndarray  # (N, N)
    draws: jnp.ndarray  # (K, N)
    logq: jnp.ndarray  # (K,) log-density of draws under the approximation
    logp: jnp.ndarray  # (K,) target log-density of draws
    trace: OptimTrace
    estimate: CovarianceEstimate
    selection: ElboSelection
    diagnostics: PathDiagnostics

    @property
    def elbo(self) -> jnp.ndarray:
        return self.selection.elbos[self.selection.best_index]

    @property
    def log_ratios(self) -> jnp.ndarray:
        """Raw log importance ratios log p - log q of the draws."""
        return self.logp - self.logq


class Pathfinder(InferenceMethod):
    """
    Single-path Pathfinder variational inference.

    The optimizer is pluggable: any TraceProvider works, the default is
    optax L-BFGS configured by cfg.lbfgs.
    """

    def __init__(self, cfg: PathfinderCFG = PathfinderCFG(), optimizer: Optional[TraceProvider] = None):
        self.cfg = cfg
        self.optimizer = optimizer if optimizer is not None else LBFGS(cfg.lbfgs)

    def _history_length(self) -> int:
        if self.cfg.history_length is not None:
            return self.cfg.history_length
        if isinstance(self.optimizer, LBFGS):
            return self.optimizer.cfg.history_length
        return 5

    def run(
        self,
        logdensity_fn: LogDensity,
        initial_position,
        *,
        key,
        grad_fn: Optional[GradLogDensity] = None,
        ndraws: Optional[int] = None,
    ) -> PathfinderRun:
        """
        Run Pathfinder from one start point.

        Args:
            logdensity_fn: Target log-density (pure, JAX-traceable)
            initial_position: Start point of the optimisation (N,)
            key: PRNG key
            grad_fn: Gradient of the log-density (None -> autodiff)
            ndraws: Requested number of draws (defaults to cfg.ndraws)

        Returns:
            PathfinderRun with the selected mean/covariance, draws and diagnostics
        """
        cfg = self.cfg
        ndraws = cfg.ndraws if ndraws is None else ndraws
        if ndraws <= 0:
            raise ValueError(f"ndraws must be positive, got {ndraws}.")
        if cfg.ndraws_elbo <= 0:
            raise ValueError(f"ndraws_elbo must be positive, got {cfg.ndraws_elbo}.")
        if cfg.draws_policy not in ("reuse_elbo", "redraw"):
            raise ValueError(f"Unknown draws policy: {cfg.draws_policy}")
        initial_position = jnp.asarray(initial_position)
        if initial_position.ndim != 1:
            raise ValueError(f"initial_position must be a vector, got shape {initial_position.shape}.")

        trace = self.optimizer.run(logdensity_fn, grad_fn, initial_position)
        if trace.dim != initial_position.shape[0]:
            raise ValueError(
                f"Trace has dimension {trace.dim}, the initial position has {initial_position.shape[0]}."
            )
        trace = truncate_nonfinite(trace)
        L = trace.n_iterations

        estimate = estimate_inverse_hessian(
            trace.positions,
            trace.grads,
            history_length=self._history_length(),
            epsilon=cfg.epsilon,
        )

        key_elbo, key_draws = random.split(key)
        selection = select_best_approximation(
            key_elbo, logdensity_fn, trace, estimate, cfg.ndraws_elbo
        )
        best = selection.best
        mean, cov = approximation_moments(best.position, best.grad, best.factors)

        if cfg.draws_policy == "reuse_elbo":
            draws, logq, logp = best.draws, best.logq, best.logp
            if ndraws != cfg.ndraws_elbo:
                logger.warning(
                    "Returning the %d ELBO evaluation draws of the selected iteration "
                    "instead of the %d requested (draws_policy='reuse_elbo').",
                    cfg.ndraws_elbo,
                    ndraws,
                )
        else:
            draws, logq = bfgs_sample(key_draws, best.position, best.grad, best.factors, ndraws)
            logp = jax.vmap(logdensity_fn)(draws)

        diagnostics = PathDiagnostics(
            trace_status=trace.status,
            n_iterations=L,
            curvature_skipped=estimate.curvature_skipped,
            elbo_trace=selection.elbos,
            best_index=selection.best_index,
            path_status=selection.status,
        )
        if diagnostics.n_curvature_skipped > 0:
            logger.info(
                "Skipped %d of %d inverse Hessian updates to avoid negative curvature.",
                diagnostics.n_curvature_skipped,
                L,
            )
        if selection.status != PathStatus.SUCCESS:
            logger.warning("Pathfinder path finished with status %s.", selection.status.value)
        logger.info(
            "Optimized for %d iterations. Maximum ELBO of %.2f reached at iteration %d.",
            L,
            float(diagnostics.max_elbo),
            selection.best_index,
        )

        return PathfinderRun(
            mean=mean,
            cov=cov,
            draws=draws,
            logq=logq,
            logp=logp,
            trace=trace,
            estimate=estimate,
            selection=selection,
            diagnostics=diagnostics,
        )


def pathfinder(
    logdensity_fn: LogDensity,
    grad_fn: Optional[GradLogDensity],
    initial_position,
    ndraws: int,
    *,
    key,
    optimizer: Optional[TraceProvider] = None,
    history_length: Optional[int] = None,
    ndraws_elbo: int = 5,
    epsilon: float = 1e-12,
    draws_policy: Literal["reuse_elbo", "redraw"] = "reuse_elbo",
    **optimizer_options,
) -> PathfinderRun:
    """
    Functional form of Pathfinder.

    `optimizer_options` are LBFGSCFG fields (max_iterations,
    gradient_tolerance, linesearch, ...) and only apply when no optimizer
    is given.

    Examples:
        >>> logp = lambda x: -0.5 * jnp.sum((x - 1.0) ** 2)
        >>> res = pathfinder(logp, None, jnp.zeros(2), 5, key=jax.random.PRNGKey(0))
        >>> res.mean, res.cov, res.draws, res.logq
    """
    if optimizer is not None and optimizer_options:
        raise TypeError("optimizer_options only apply to the default L-BFGS optimizer.")
    cfg = PathfinderCFG(
        ndraws=ndraws,
        ndraws_elbo=ndraws_elbo,
        history_length=history_length,
        epsilon=epsilon,
        draws_policy=draws_policy,
        lbfgs=LBFGSCFG(**optimizer_options),
    )
    return Pathfinder(cfg, optimizer=optimizer).run(
        logdensity_fn, initial_position, key=key, grad_fn=grad_fn, ndraws=ndraws
    )
