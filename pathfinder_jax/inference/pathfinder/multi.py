# pathfinder_jax/inference/pathfinder/multi.py
"""
Multi-path Pathfinder.

Runs single-path Pathfinder independently from several start points, pools
the returned draws with their raw log importance ratios log p - log q, and
produces one Pareto-smoothed importance resample of the pool.

Runs share no state. Run r uses the key fold_in(key, r), so the result does
not depend on whether runs execute serially or in a thread pool. A run that
raises (for instance from a start point where the log-density is not finite)
is left out of the pool; only a call where every run fails raises.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

import jax.numpy as jnp
from jax import random
from tqdm.auto import tqdm

from ...core.typing import GradLogDensity, LogDensity
from ...optimisation.lbfgs import LBFGSCFG, TraceProvider
from ..base import InferenceMethod
from ..diagnostics import AllPathsFailed, PathfinderError, PathStatus
from ..particle.psir import ImportanceResult, psir
from .single import Pathfinder, PathfinderCFG, PathfinderRun

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MultiPathfinderCFG:
    """Configuration for multi-path Pathfinder."""
    ndraws: int = 1000  # final number of resampled draws
    ndraws_per_run: int = 5
    importance_method: Literal["psir", "identity"] = "psir"
    max_workers: Optional[int] = None  # None -> run paths serially
    verbose: bool = False
    path: PathfinderCFG = field(default_factory=PathfinderCFG)


@dataclass
class MultiPathfinderRun:
    """Multi-path Pathfinder results."""
    samples: jnp.ndarray  # (ndraws, N) resampled draws
    pareto_k: float
    paths: List[PathfinderRun]  # successful runs, in start-point order
    pool_draws: jnp.ndarray  # (P, N)
    pool_log_ratios: jnp.ndarray  # (P,)
    importance: ImportanceResult
    path_statuses: List[PathStatus] = field(default_factory=list)  # one per start point

    @property
    def n_paths(self) -> int:
        return len(self.paths)

    @property
    def n_failed(self) -> int:
        return sum(status == PathStatus.FAILED for status in self.path_statuses)


class MultiPathfinder(InferenceMethod):
    """
    Multi-path Pathfinder with Pareto-smoothed importance resampling.

    A path whose trace was truncated by a non-finite value still contributes
    its draws to the pool. A path that raises is reported with status FAILED
    and contributes nothing.
    """

    def __init__(self, cfg: MultiPathfinderCFG = MultiPathfinderCFG(), optimizer: Optional[TraceProvider] = None):
        self.cfg = cfg
        self.pathfinder = Pathfinder(cfg.path, optimizer=optimizer)

    def run(
        self,
        logdensity_fn: LogDensity,
        initial_positions,
        *,
        key,
        grad_fn: Optional[GradLogDensity] = None,
        ndraws: Optional[int] = None,
    ) -> MultiPathfinderRun:
        """
        Run Pathfinder from every start point and resample the pooled draws.

        Args:
            logdensity_fn: Target log-density (pure, JAX-traceable)
            initial_positions: Start points, array (R, N) or sequence of (N,) vectors
            key: PRNG key
            grad_fn: Gradient of the log-density (None -> autodiff)
            ndraws: Number of resampled draws (defaults to cfg.ndraws)

        Returns:
            MultiPathfinderRun with resampled draws, per-path runs and the Pareto k
        """
        cfg = self.cfg
        ndraws = cfg.ndraws if ndraws is None else ndraws
        if ndraws <= 0:
            raise ValueError(f"ndraws must be positive, got {ndraws}.")
        if cfg.ndraws_per_run <= 0:
            raise ValueError(f"ndraws_per_run must be positive, got {cfg.ndraws_per_run}.")
        if cfg.path.ndraws_elbo <= 0:
            raise ValueError(f"ndraws_elbo must be positive, got {cfg.path.ndraws_elbo}.")
        if cfg.path.draws_policy not in ("reuse_elbo", "redraw"):
            raise ValueError(f"Unknown draws policy: {cfg.path.draws_policy}")
        initial_positions = jnp.asarray(initial_positions)
        if initial_positions.ndim != 2 or initial_positions.shape[0] == 0:
            raise ValueError(
                f"initial_positions must have shape (n_paths, N) with n_paths >= 1, got {initial_positions.shape}."
            )

        n_paths = initial_positions.shape[0]
        key_paths, key_resample = random.split(key)

        def run_path(r) -> Union[PathfinderRun, Exception]:
            try:
                return self.pathfinder.run(
                    logdensity_fn,
                    initial_positions[r],
                    key=random.fold_in(key_paths, r),
                    grad_fn=grad_fn,
                    ndraws=cfg.ndraws_per_run,
                )
            except (ValueError, PathfinderError) as e:
                logger.warning("Pathfinder run %d failed: %s", r, e)
                return e

        progress = tqdm(total=n_paths, desc="Pathfinder", disable=not cfg.verbose)
        outcomes = []
        if cfg.max_workers is None:
            for r in range(n_paths):
                outcomes.append(run_path(r))
                progress.update(1)
        else:
            with ThreadPoolExecutor(max_workers=cfg.max_workers) as executor:
                # map preserves the run order
                for outcome in executor.map(run_path, range(n_paths)):
                    outcomes.append(outcome)
                    progress.update(1)
        progress.close()

        paths = [o for o in outcomes if isinstance(o, PathfinderRun)]
        path_statuses = [
            o.diagnostics.path_status if isinstance(o, PathfinderRun) else PathStatus.FAILED
            for o in outcomes
        ]
        if not paths:
            raise AllPathsFailed(
                f"All {n_paths} Pathfinder runs failed; the last error was: {outcomes[-1]}"
            ) from outcomes[-1]
        n_failed = n_paths - len(paths)
        if n_failed:
            logger.warning("%d of %d paths failed and were left out of the pool.", n_failed, n_paths)

        n_truncated = sum(path.diagnostics.truncated for path in paths)
        if n_truncated:
            logger.warning("%d of %d paths stopped early on a non-finite value.", n_truncated, n_paths)

        pool_draws = jnp.concatenate([path.draws for path in paths], axis=0)
        pool_log_ratios = jnp.concatenate([path.log_ratios for path in paths], axis=0)

        importance = psir(
            key_resample,
            pool_draws,
            pool_log_ratios,
            ndraws,
            method=cfg.importance_method,
        )
        logger.info(
            "Resampled %d draws from a pool of %d (Pareto k = %.2f).",
            ndraws,
            pool_draws.shape[0],
            importance.pareto_k,
        )
        return MultiPathfinderRun(
            samples=importance.samples,
            pareto_k=importance.pareto_k,
            paths=paths,
            pool_draws=pool_draws,
            pool_log_ratios=pool_log_ratios,
            importance=importance,
            path_statuses=path_statuses,
        )


def multipathfinder(
    logdensity_fn: LogDensity,
    grad_fn: Optional[GradLogDensity],
    initial_positions,
    ndraws: int,
    *,
    key,
    ndraws_per_run: int = 5,
    optimizer: Optional[TraceProvider] = None,
    importance_method: Literal["psir", "identity"] = "psir",
    max_workers: Optional[int] = None,
    verbose: bool = False,
    history_length: Optional[int] = None,
    ndraws_elbo: int = 5,
    epsilon: float = 1e-12,
    draws_policy: Literal["reuse_elbo", "redraw"] = "reuse_elbo",
    **optimizer_options,
) -> MultiPathfinderRun:
    """
    Functional form of MultiPathfinder.

    Examples:
        >>> starts = jax.random.normal(jax.random.PRNGKey(1), (4, 2))
        >>> res = multipathfinder(logp, None, starts, 100, key=jax.random.PRNGKey(0))
        >>> res.samples.shape
        (100, 2)
    """
    if optimizer is not None and optimizer_options:
        raise TypeError("optimizer_options only apply to the default L-BFGS optimizer.")
    path_cfg = PathfinderCFG(
        ndraws=ndraws_per_run,
        ndraws_elbo=ndraws_elbo,
        history_length=history_length,
        epsilon=epsilon,
        draws_policy=draws_policy,
        lbfgs=LBFGSCFG(**optimizer_options),
    )
    cfg = MultiPathfinderCFG(
        ndraws=ndraws,
        ndraws_per_run=ndraws_per_run,
        importance_method=importance_method,
        max_workers=max_workers,
        verbose=verbose,
        path=path_cfg,
    )
    return MultiPathfinder(cfg, optimizer=optimizer).run(
        logdensity_fn, initial_positions, key=key, grad_fn=grad_fn, ndraws=ndraws
    )
