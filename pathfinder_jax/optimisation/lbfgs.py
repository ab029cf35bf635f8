# pathfinder_jax/optimisation/lbfgs.py
"""
L-BFGS trace provider.

Maximises a log-density by minimising its negation with optax's L-BFGS and
returns every visited iterate together with its log-density and gradient as
an OptimTrace. The optimizer itself (direction, line search, memory) belongs
to optax; this module only adapts the objective and records the path.

The user-supplied gradient is attached to the objective with a custom VJP,
so the optimizer and its line search differentiate through it instead of
re-deriving the gradient with autodiff.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Literal, Optional, Protocol, runtime_checkable

import jax
import jax.numpy as jnp
import optax

from ..core.trace import OptimTrace, TraceStatus
from ..core.typing import Array, GradLogDensity, LogDensity

logger = logging.getLogger(__name__)


@runtime_checkable
class TraceProvider(Protocol):
    """
    Protocol for optimisation-trace providers.

    A provider maximises `logdensity_fn` from `initial_position` and returns
    the full trace of iterates, log-density values and gradients with
    matching indices. Providers must stop at (and exclude) the first
    non-finite iterate, value or gradient.
    """

    def run(
        self,
        logdensity_fn: LogDensity,
        grad_fn: Optional[GradLogDensity],
        initial_position: Array,
    ) -> OptimTrace:
        ...


@dataclass(frozen=True)
class LBFGSCFG:
    """Configuration for the L-BFGS trace provider."""
    max_iterations: int = 1000
    gradient_tolerance: float = 1e-8
    history_length: int = 5  # L-BFGS memory size
    linesearch: Literal["zoom", "backtracking"] = "zoom"
    max_linesearch_steps: int = 20
    stop_on_nonfinite: bool = True
    jit: bool = True


def negated_objective(logdensity_fn: LogDensity, grad_fn: Optional[GradLogDensity] = None):
    """
    Build f(x) = -logdensity_fn(x) for minimisation.

    If `grad_fn` is given it defines the gradient of f (as -grad_fn(x)) through
    a custom VJP; otherwise JAX autodiff is used.
    """
    if grad_fn is None:
        def objective(x):
            return -logdensity_fn(x)
        return objective

    @jax.custom_vjp
    def objective(x):
        return -logdensity_fn(x)

    def objective_fwd(x):
        return -logdensity_fn(x), x

    def objective_bwd(x, ct):
        return (-ct * jnp.asarray(grad_fn(x), dtype=x.dtype),)

    objective.defvjp(objective_fwd, objective_bwd)
    return objective


class LBFGS(TraceProvider):
    """
    L-BFGS maximisation of a log-density with full trace recording.

    Stopping rules, in order of precedence:
      - a non-finite iterate, value or gradient (status NON_FINITE; the
        offending point is not recorded). With stop_on_nonfinite=False such
        points are recorded and left to truncate_nonfinite downstream,
      - ||grad||_2 < gradient_tolerance (status CONVERGED),
      - max_iterations optimizer steps (status MAX_ITERATIONS).

    The jitted step is built once per (logdensity_fn, grad_fn) pair and reused
    across calls to `run`, so many start points on the same target compile once.
    """

    def __init__(self, cfg: LBFGSCFG = LBFGSCFG()):
        self.cfg = cfg
        # one compiled step per (logdensity_fn, grad_fn), shared by all start points
        self._compiled = functools.lru_cache(maxsize=8)(self._build)

    def _get_linesearch(self):
        if self.cfg.linesearch == "zoom":
            return optax.scale_by_zoom_linesearch(
                max_linesearch_steps=self.cfg.max_linesearch_steps
            )
        elif self.cfg.linesearch == "backtracking":
            return optax.scale_by_backtracking_linesearch(
                max_backtracking_steps=self.cfg.max_linesearch_steps,
                store_grad=True,
            )
        else:
            raise ValueError(f"Unknown line search: {self.cfg.linesearch}")

    def _build(self, logdensity_fn: LogDensity, grad_fn: Optional[GradLogDensity]):
        """Objective, optimizer and (jitted) step for one log-density."""
        objective = negated_objective(logdensity_fn, grad_fn)
        opt = optax.lbfgs(memory_size=self.cfg.history_length, linesearch=self._get_linesearch())
        value_and_grad = optax.value_and_grad_from_state(objective)

        def step(x, state):
            value, grad = value_and_grad(x, state=state)
            updates, state = opt.update(
                grad, state, x, value=value, grad=grad, value_fn=objective
            )
            x = optax.apply_updates(x, updates)
            # reuses the value and gradient stored by the line search
            value, grad = value_and_grad(x, state=state)
            return x, value, grad, state

        if self.cfg.jit:
            step = jax.jit(step)
        return objective, opt, step

    def run(
        self,
        logdensity_fn: LogDensity,
        grad_fn: Optional[GradLogDensity],
        initial_position: Array,
    ) -> OptimTrace:
        """
        Run L-BFGS from `initial_position`.

        Args:
            logdensity_fn: Log-density to maximise
            grad_fn: Gradient of the log-density (None -> jax.grad)
            initial_position: Start point, shape (N,)

        Returns:
            OptimTrace of length L+1 with L <= max_iterations

        Raises:
            ValueError: if the start point is not a vector or the log-density
                is not finite there
        """
        cfg = self.cfg
        if cfg.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative.")

        x = jnp.asarray(initial_position)
        if not jnp.issubdtype(x.dtype, jnp.floating):
            x = x.astype(jnp.result_type(float))
        if x.ndim != 1:
            raise ValueError(f"initial_position must be a vector, got shape {x.shape}.")

        objective, opt, step = self._compiled(logdensity_fn, grad_fn)

        value, grad = jax.value_and_grad(objective)(x)
        if not _is_finite(x, value, grad):
            raise ValueError("The log-density or its gradient is not finite at the initial position.")

        positions, values, grads = [x], [value], [grad]
        status = TraceStatus.MAX_ITERATIONS
        if jnp.linalg.norm(grad) < cfg.gradient_tolerance:
            status = TraceStatus.CONVERGED
        else:
            state = opt.init(x)
            for _ in range(cfg.max_iterations):
                x_new, value, grad, state = step(x, state)
                if cfg.stop_on_nonfinite and not _is_finite(x_new, value, grad):
                    status = TraceStatus.NON_FINITE
                    logger.warning(
                        "L-BFGS reached a non-finite value after %d iterations; truncating the trace.",
                        len(positions) - 1,
                    )
                    break
                x = x_new
                positions.append(x)
                values.append(value)
                grads.append(grad)
                if jnp.linalg.norm(grad) < cfg.gradient_tolerance:
                    status = TraceStatus.CONVERGED
                    break

        logger.debug("L-BFGS stopped after %d iterations (%s).", len(positions) - 1, status.value)
        # the optimizer works on -logp, the trace is in terms of logp
        return OptimTrace(
            positions=jnp.stack(positions),
            logdensities=-jnp.stack(values),
            grads=-jnp.stack(grads),
            status=status,
        )


def lbfgs_trace(
    logdensity_fn: LogDensity,
    grad_fn: Optional[GradLogDensity],
    initial_position: Array,
    cfg: LBFGSCFG = LBFGSCFG(),
) -> OptimTrace:
    """Functional form of LBFGS(cfg).run(...)."""
    return LBFGS(cfg).run(logdensity_fn, grad_fn, initial_position)


def _is_finite(x, value, grad) -> bool:
    return bool(jnp.isfinite(value) & jnp.all(jnp.isfinite(x)) & jnp.all(jnp.isfinite(grad)))
