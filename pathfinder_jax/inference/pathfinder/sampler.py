# pathfinder_jax/inference/pathfinder/sampler.py
"""
Sampling from the L-BFGS Gaussian approximation.

Given an anchor (theta, grad) and inverse-Hessian factors (alpha, beta,
gamma), the approximation is N(mu, Sigma) with

    Sigma = diag(alpha) + beta @ gamma @ beta.T
    mu    = theta + Sigma @ grad

Draws and their exact log-densities are computed from a thin QR of
beta / sqrt(alpha) and a Cholesky factor of a (2J, 2J) matrix, so the cost is
O(N J^2) and Sigma is never materialised.
"""
from __future__ import annotations

import math

import jax.numpy as jnp
from jax import random
from jax.scipy.stats import multivariate_normal

from .covariance import InverseHessianFactors

LOG_2PI = math.log(2.0 * math.pi)


def approximation_mean(position, grad, factors: InverseHessianFactors):
    """mu = theta + alpha * g + beta (gamma (beta^T g))."""
    alpha, beta, gamma = factors
    return position + alpha * grad + beta @ (gamma @ (beta.T @ grad))


def approximation_moments(position, grad, factors: InverseHessianFactors):
    """Mean and dense covariance of the approximation. Only for reporting."""
    return approximation_mean(position, grad, factors), factors.dense()


def bfgs_sample(
    key,
    position,
    grad,
    factors: InverseHessianFactors,
    n_draws: int,
):
    """
    Draw from N(mu, Sigma) and evaluate log q at the draws.

    Args:
        key: PRNG key
        position: Anchor point theta (N,)
        grad: Gradient of the log-density at theta (N,)
        factors: InverseHessianFactors (alpha, beta, gamma)
        n_draws: Number of draws K

    Returns:
        draws: (K, N)
        logq: (K,) exact log-density of the draws under N(mu, Sigma)
    """
    if n_draws <= 0:
        raise ValueError(f"n_draws must be positive, got {n_draws}.")
    alpha, beta, gamma = factors
    position = jnp.asarray(position)
    grad = jnp.asarray(grad)
    N = position.shape[-1]
    if alpha.shape != (N,) or beta.shape[0] != N or grad.shape != (N,):
        raise ValueError(
            f"Dimension mismatch: position {position.shape}, grad {grad.shape}, "
            f"alpha {alpha.shape}, beta {beta.shape}."
        )

    sqrt_alpha = jnp.sqrt(alpha)
    mu = approximation_mean(position, grad, factors)
    u = random.normal(key, (n_draws, N), dtype=position.dtype)

    if beta.shape[1] == 0:
        # pure diagonal Gaussian N(mu, diag(alpha))
        logdet = jnp.sum(jnp.log(alpha))
        draws = mu + sqrt_alpha * u
    else:
        Q, R = jnp.linalg.qr(beta / sqrt_alpha[:, None], mode="reduced")
        K = R.shape[0]
        M = jnp.eye(K, dtype=R.dtype) + R @ gamma @ R.T
        Lchol = jnp.linalg.cholesky(0.5 * (M + M.T))
        logdet = jnp.sum(jnp.log(alpha)) + 2.0 * jnp.sum(jnp.log(jnp.diag(Lchol)))
        # row-wise version of Q ((L - I) (Q^T u)) + u
        Lm = Lchol - jnp.eye(K, dtype=R.dtype)
        draws = mu + sqrt_alpha * ((u @ Q) @ Lm.T @ Q.T + u)

    logq = -0.5 * (logdet + N * LOG_2PI + jnp.sum(u ** 2, axis=-1))
    return draws, logq


def gaussian_logdensity(x, mean, cov):
    """Closed-form multivariate normal log-density, x of shape (..., N)."""
    return multivariate_normal.logpdf(x, mean, cov)
