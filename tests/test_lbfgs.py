import jax
import jax.numpy as jnp
import pytest

from conftest import make_quadratic
from pathfinder_jax.core import TraceStatus
from pathfinder_jax.optimisation import LBFGS, LBFGSCFG
from pathfinder_jax.optimisation.lbfgs import negated_objective


@pytest.fixture
def anisotropic():
    precision = jnp.diag(jnp.array([1.0, 10.0, 100.0]))
    mean = jnp.array([1.0, -2.0, 0.5])
    logp, grad_logp = make_quadratic(precision, mean)
    return logp, grad_logp, mean


def test_lbfgs_converges_on_anisotropic_quadratic(anisotropic):
    logp, grad_logp, mean = anisotropic
    trace = LBFGS(LBFGSCFG(gradient_tolerance=1e-6)).run(logp, grad_logp, jnp.zeros(3))

    assert trace.status == TraceStatus.CONVERGED
    assert trace.n_iterations > 0
    assert jnp.allclose(trace.positions[-1], mean, atol=1e-5)
    # a line-searched ascent never decreases the log-density
    assert bool(jnp.all(jnp.diff(trace.logdensities) >= -1e-10))


def test_trace_records_logdensity_and_gradient(anisotropic):
    logp, grad_logp, _ = anisotropic
    trace = LBFGS().run(logp, None, jnp.array([3.0, 3.0, 3.0]))

    assert jnp.allclose(trace.logdensities, jax.vmap(logp)(trace.positions))
    assert jnp.allclose(trace.grads, jax.vmap(grad_logp)(trace.positions), atol=1e-8)


def test_max_iterations_caps_the_trace(anisotropic):
    logp, grad_logp, _ = anisotropic
    trace = LBFGS(LBFGSCFG(max_iterations=2)).run(logp, grad_logp, jnp.zeros(3))
    assert trace.n_iterations == 2
    assert trace.status == TraceStatus.MAX_ITERATIONS


def test_zero_iterations_is_a_single_point(anisotropic):
    logp, grad_logp, _ = anisotropic
    trace = LBFGS(LBFGSCFG(max_iterations=0)).run(logp, grad_logp, jnp.zeros(3))
    assert trace.n_iterations == 0
    assert trace.positions.shape == (1, 3)


def test_start_at_the_mode_converges_immediately(anisotropic):
    logp, grad_logp, mean = anisotropic
    trace = LBFGS().run(logp, grad_logp, mean)
    assert trace.n_iterations == 0
    assert trace.status == TraceStatus.CONVERGED


def test_backtracking_and_eager_runs(anisotropic):
    logp, grad_logp, mean = anisotropic
    cfg = LBFGSCFG(linesearch="backtracking", gradient_tolerance=1e-6, jit=False)
    trace = LBFGS(cfg).run(logp, grad_logp, jnp.zeros(3))
    assert trace.status == TraceStatus.CONVERGED
    assert jnp.allclose(trace.positions[-1], mean, atol=1e-5)


def test_jit_does_not_change_the_trace(anisotropic):
    logp, grad_logp, _ = anisotropic
    a = LBFGS(LBFGSCFG(max_iterations=5)).run(logp, grad_logp, jnp.zeros(3))
    b = LBFGS(LBFGSCFG(max_iterations=5, jit=False)).run(logp, grad_logp, jnp.zeros(3))
    assert jnp.allclose(a.positions, b.positions)


def test_supplied_gradient_is_used():
    objective = negated_objective(lambda x: jnp.sum(x), lambda x: 7.0 * jnp.ones_like(x))
    assert jnp.allclose(objective(jnp.ones(2)), -2.0)
    assert jnp.allclose(jax.grad(objective)(jnp.ones(2)), -7.0)


def test_integer_start_is_promoted(anisotropic):
    logp, grad_logp, _ = anisotropic
    trace = LBFGS(LBFGSCFG(max_iterations=2)).run(logp, grad_logp, jnp.array([0, 0, 0]))
    assert jnp.issubdtype(trace.positions.dtype, jnp.floating)


def test_invalid_starts_raise(anisotropic):
    logp, grad_logp, _ = anisotropic
    with pytest.raises(ValueError):
        LBFGS().run(logp, grad_logp, jnp.zeros((2, 3)))
    with pytest.raises(ValueError):
        LBFGS().run(lambda x: jnp.log(x[0]), None, jnp.array([-1.0, 0.0]))
    with pytest.raises(ValueError):
        LBFGS(LBFGSCFG(linesearch="wolfe")).run(logp, grad_logp, jnp.zeros(3))


def test_stops_before_a_nonfinite_point():
    # finite on x < 2, nan beyond; the unconstrained mode at 5 is out of reach
    def logp(x):
        return jnp.where(x[0] < 2.0, -0.5 * jnp.sum((x - 5.0) ** 2), jnp.nan)

    trace = LBFGS(LBFGSCFG(max_iterations=50)).run(logp, None, jnp.zeros(2))
    assert bool(jnp.all(jnp.isfinite(trace.logdensities)))
    assert bool(jnp.all(trace.positions[:, 0] < 2.0))
    assert trace.status in (TraceStatus.NON_FINITE, TraceStatus.MAX_ITERATIONS)


def test_step_is_built_once_per_target(anisotropic):
    logp, grad_logp, _ = anisotropic
    lbfgs = LBFGS(LBFGSCFG(max_iterations=3))
    for x0 in (jnp.zeros(3), jnp.ones(3), -jnp.ones(3)):
        lbfgs.run(logp, grad_logp, x0)
    info = lbfgs._compiled.cache_info()
    assert info.misses == 1
    assert info.hits == 2

    lbfgs.run(logp, None, jnp.zeros(3))
    assert lbfgs._compiled.cache_info().misses == 2
