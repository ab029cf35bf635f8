import warnings

import jax
import jax.numpy as jnp

from pathfinder_jax import (
    ImportanceWeightWarning,
    MultiPathfinder,
    MultiPathfinderCFG,
    Pathfinder,
    run,
)
from pathfinder_jax.runner import with_log_prior


def test_with_log_prior_adds_value_and_gradient():
    def loglik(x):
        return -jnp.sum((x - 2.0) ** 2)

    def grad_loglik(x):
        return -2.0 * (x - 2.0)

    def log_prior(x):
        return -0.5 * jnp.sum(x ** 2)

    logp, grad = with_log_prior(loglik, grad_loglik, log_prior)
    x = jnp.array([0.5, -1.0])
    assert jnp.allclose(logp(x), loglik(x) + log_prior(x))
    assert jnp.allclose(grad(x), jax.grad(logp)(x))

    _, no_grad = with_log_prior(loglik, None, log_prior)
    assert no_grad is None


def test_run_single_path_diagnostics(quadratic_2d):
    logp, grad_logp = quadratic_2d
    out = run(
        key=jax.random.PRNGKey(0),
        method=Pathfinder(),
        logdensity_fn=logp,
        grad_fn=grad_logp,
        initial_position=jnp.zeros(2),
    )
    d = out.diagnostics
    assert d["method"] == "Pathfinder"
    assert d["n_iterations"] == out.result.trace.n_iterations
    assert d["path_status"] == "success"
    assert jnp.allclose(out.result.mean, jnp.ones(2), atol=1e-6)


def test_run_with_prior_shifts_the_mode():
    def loglik(x):
        return -jnp.sum((x - 2.0) ** 2)

    out = run(
        key=jax.random.PRNGKey(1),
        method=Pathfinder(),
        logdensity_fn=loglik,
        log_prior=lambda x: -jnp.sum(x ** 2),
        initial_position=jnp.zeros(3),
    )
    # mode of -(x-2)^2 - x^2 is x = 1
    assert jnp.allclose(out.result.trace.positions[-1], jnp.ones(3), atol=1e-6)


def test_run_multi_path_diagnostics(quadratic_2d):
    logp, _ = quadratic_2d
    starts = jax.random.normal(jax.random.PRNGKey(2), (3, 2))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ImportanceWeightWarning)
        out = run(
            key=jax.random.PRNGKey(3),
            method=MultiPathfinder(MultiPathfinderCFG(ndraws=12)),
            logdensity_fn=logp,
            initial_position=starts,
        )
    d = out.diagnostics
    assert d["method"] == "MultiPathfinder"
    assert d["n_paths"] == 3
    assert len(d["n_iterations"]) == 3
    assert d["n_truncated"] == 0
    assert d["n_failed"] == 0
    assert "pareto_k" in d and "ess" in d
    assert out.result.samples.shape == (12, 2)
