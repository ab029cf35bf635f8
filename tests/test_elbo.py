import jax
import jax.numpy as jnp
import pytest

from pathfinder_jax.core import OptimTrace
from pathfinder_jax.inference import PathStatus
from pathfinder_jax.inference.pathfinder import (
    elbo,
    estimate_inverse_hessian,
    select_best_approximation,
)


def _trace_towards_mode(grad_logp, logp, mean, n_steps):
    ts = jnp.linspace(0.0, 1.0, n_steps + 1) ** 0.5
    positions = jnp.stack([t * mean - (1.0 - t) for t in ts])
    grads = jax.vmap(grad_logp)(positions)
    return OptimTrace(positions, jax.vmap(logp)(positions), grads)


def test_elbo_is_difference_of_means():
    logp = jnp.array([-1.0, -2.0, -3.0])
    logq = jnp.array([-0.5, -0.5, -2.0])
    assert jnp.allclose(elbo(logp, logq), -2.0 - (-1.0))


def test_selection_scores_every_iterate(correlated_5d):
    logp, grad_logp, _, mean = correlated_5d
    trace = _trace_towards_mode(grad_logp, logp, mean, 6)
    est = estimate_inverse_hessian(trace.positions, trace.grads, history_length=3)

    sel = select_best_approximation(jax.random.PRNGKey(0), logp, trace, est, n_draws_elbo=4)

    assert sel.status == PathStatus.SUCCESS
    assert sel.elbos.shape == (7,)
    assert bool(jnp.isnan(sel.elbos[0]))
    assert bool(jnp.all(jnp.isfinite(sel.elbos[1:])))
    assert [a.index for a in sel.approximations] == list(range(1, 7))
    assert 1 <= sel.best_index <= 6
    assert sel.elbos[sel.best_index] == jnp.max(sel.elbos[1:])
    assert sel.best.draws.shape == (4, 5)
    assert jnp.allclose(sel.best.logp, jax.vmap(logp)(sel.best.draws))


def test_selection_on_a_truncated_trace_stays_in_range(quadratic_2d):
    logp, grad_logp = quadratic_2d
    trace = _trace_towards_mode(grad_logp, logp, jnp.ones(2), 5).prefix(3)
    est = estimate_inverse_hessian(trace.positions, trace.grads)

    sel = select_best_approximation(jax.random.PRNGKey(1), logp, trace, est)
    assert sel.elbos.shape == (3,)
    assert sel.best_index in (1, 2)


def test_no_iterations_falls_back_to_initial_point(quadratic_2d):
    logp, grad_logp = quadratic_2d
    x0 = jnp.array([0.0, 3.0])
    trace = OptimTrace(x0[None], logp(x0)[None], grad_logp(x0)[None])
    est = estimate_inverse_hessian(trace.positions, trace.grads)

    sel = select_best_approximation(jax.random.PRNGKey(2), logp, trace, est)
    assert sel.status == PathStatus.NO_ITERATIONS
    assert sel.best_index == 0
    assert bool(jnp.isfinite(sel.elbos[0]))


def test_nonfinite_elbos_are_never_preferred(quadratic_2d):
    _, grad_logp = quadratic_2d
    positions = jnp.array([[0.0, 0.0], [0.5, 0.5], [0.9, 0.9]])
    grads = jax.vmap(grad_logp)(positions)

    def logp(x):
        # -inf everywhere except in a wide box
        return jnp.where(jnp.all(jnp.abs(x) < 50.0), -jnp.sum((x - 1.0) ** 2), -jnp.inf)

    trace = OptimTrace(positions, jax.vmap(logp)(positions), grads)
    est = estimate_inverse_hessian(positions, grads)
    sel = select_best_approximation(jax.random.PRNGKey(3), logp, trace, est)
    assert sel.status == PathStatus.SUCCESS
    assert bool(jnp.isfinite(sel.elbos[sel.best_index]))

    def hopeless(x):
        return -jnp.inf * jnp.ones(())

    sel = select_best_approximation(jax.random.PRNGKey(4), hopeless, trace, est)
    assert sel.status == PathStatus.ELBO_NONFINITE
    assert sel.best_index == 1


def test_selection_rejects_mismatched_estimate(quadratic_2d):
    logp, grad_logp = quadratic_2d
    trace = _trace_towards_mode(grad_logp, logp, jnp.ones(2), 4)
    est = estimate_inverse_hessian(trace.positions[:3], trace.grads[:3])
    with pytest.raises(ValueError):
        select_best_approximation(jax.random.PRNGKey(5), logp, trace, est)
    with pytest.raises(ValueError):
        select_best_approximation(
            jax.random.PRNGKey(5), logp, trace,
            estimate_inverse_hessian(trace.positions, trace.grads), n_draws_elbo=0,
        )
