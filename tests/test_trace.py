import jax.numpy as jnp
import pytest

from pathfinder_jax.core import OptimTrace, TraceStatus, finite_mask, truncate_nonfinite


def _six_step_trace():
    positions = jnp.stack([jnp.array([0.1 * l, -0.2 * l]) for l in range(7)])
    grads = -2.0 * (positions - 1.0)
    logdensities = -jnp.sum((positions - 1.0) ** 2, axis=-1)
    return OptimTrace(positions, logdensities, grads, status=TraceStatus.CONVERGED)


def test_trace_shapes_and_length():
    trace = _six_step_trace()
    assert trace.n_iterations == 6
    assert trace.dim == 2
    assert trace.logdensities.shape == (7,)


def test_trace_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        OptimTrace(jnp.zeros((3, 2)), jnp.zeros(2), jnp.zeros((3, 2)))
    with pytest.raises(ValueError):
        OptimTrace(jnp.zeros((3, 2)), jnp.zeros(3), jnp.zeros((3, 3)))


def test_truncate_at_nonfinite_gradient():
    trace = _six_step_trace()
    grads = trace.grads.at[3, 1].set(jnp.nan)
    bad = OptimTrace(trace.positions, trace.logdensities, grads)

    assert finite_mask(bad).tolist() == [True, True, True, False, True, True, True]
    truncated = truncate_nonfinite(bad)
    assert truncated.n_iterations == 2
    assert truncated.status == TraceStatus.NON_FINITE
    assert jnp.array_equal(truncated.positions, trace.positions[:3])


def test_truncate_keeps_finite_trace():
    trace = _six_step_trace()
    assert truncate_nonfinite(trace) is trace


def test_truncate_rejects_nonfinite_start():
    trace = _six_step_trace()
    bad = OptimTrace(trace.positions, trace.logdensities.at[0].set(jnp.inf), trace.grads)
    with pytest.raises(ValueError):
        truncate_nonfinite(bad)
