import jax
import jax.numpy as jnp
import pytest

# Pathfinder's recurrences and log-determinants are checked to tight tolerances
jax.config.update("jax_enable_x64", True)


def make_quadratic(precision, mean):
    """log p(x) = -0.5 (x - mean)^T precision (x - mean) and its gradient."""
    precision = jnp.asarray(precision)
    mean = jnp.asarray(mean)

    def logp(x):
        d = x - mean
        return -0.5 * d @ precision @ d

    def grad_logp(x):
        return -precision @ (x - mean)

    return logp, grad_logp


@pytest.fixture
def quadratic_2d():
    return make_quadratic(jnp.array([[2.0, 0.0], [0.0, 2.0]]), jnp.array([1.0, 1.0]))


@pytest.fixture
def correlated_5d():
    key = jax.random.PRNGKey(42)
    B = jax.random.normal(key, (5, 5))
    precision = B @ B.T + 5.0 * jnp.eye(5)
    mean = jnp.arange(5.0) / 5.0
    return make_quadratic(precision, mean) + (precision, mean)
