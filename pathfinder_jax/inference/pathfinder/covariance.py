# pathfinder_jax/inference/pathfinder/covariance.py
"""
L-BFGS inverse-Hessian estimation along an optimisation trace.

For every iterate l = 0..L of a trace this module builds the factors of the
inverse-Hessian approximation

    H_l = diag(alpha_l) + beta_l @ gamma_l @ beta_l.T

where alpha_l (N,) is a diagonal preconditioner updated with the
Gilbert-Lemarechal diagonal BFGS formula, and (beta_l, gamma_l) with shapes
(N, 2J) and (2J, 2J) are the compact representation of J BFGS updates on top
of it (Byrd, Nocedal and Schnabel, 1994). No N x N matrix is formed.

Curvature pairs (s, y) with non-positive curvature are skipped: the previous
diagonal is kept and the pair never enters the history.

References:
    Gilbert, J.C., Lemarechal, C. Some numerical experiments with
    variable-storage quasi-Newton algorithms. Mathematical Programming 45,
    407-435 (1989).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, NamedTuple

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

logger = logging.getLogger(__name__)


class HistoryBuffer(NamedTuple):
    """
    Fixed-capacity ring buffer of curvature pairs.

    S and Y are preallocated with shape (capacity, N); slot `start` holds the
    oldest pair and `size` slots are in use. `push` returns a new buffer.
    """
    S: jnp.ndarray
    Y: jnp.ndarray
    start: int = 0
    size: int = 0

    @property
    def capacity(self) -> int:
        return self.S.shape[0]

    def push(self, s: jnp.ndarray, y: jnp.ndarray) -> HistoryBuffer:
        """Store (s, y), evicting the oldest pair when full."""
        cap = self.capacity
        if cap == 0:
            return self
        if self.size < cap:
            pos = (self.start + self.size) % cap
            start, size = self.start, self.size + 1
        else:
            pos = self.start
            start, size = (self.start + 1) % cap, self.size
        return HistoryBuffer(
            S=self.S.at[pos].set(s),
            Y=self.Y.at[pos].set(y),
            start=start,
            size=size,
        )

    def ordered(self):
        """Stored pairs oldest-first, as arrays of shape (size, N)."""
        idx = (self.start + jnp.arange(self.size)) % max(self.capacity, 1)
        return self.S[idx], self.Y[idx]


def init_history(capacity: int, dim: int, dtype=jnp.float32) -> HistoryBuffer:
    if capacity < 0:
        raise ValueError(f"history_length must be non-negative, got {capacity}.")
    return HistoryBuffer(
        S=jnp.zeros((capacity, dim), dtype=dtype),
        Y=jnp.zeros((capacity, dim), dtype=dtype),
    )


class InverseHessianFactors(NamedTuple):
    """Factors of H = diag(alpha) + beta @ gamma @ beta.T."""
    alpha: jnp.ndarray  # (N,)
    beta: jnp.ndarray  # (N, 2J)
    gamma: jnp.ndarray  # (2J, 2J)

    @property
    def history_size(self) -> int:
        return self.beta.shape[1] // 2

    def dense(self) -> jnp.ndarray:
        """Materialise H as an (N, N) matrix."""
        return jnp.diag(self.alpha) + self.beta @ self.gamma @ self.beta.T


@dataclass
class CovarianceEstimate:
    """Inverse-Hessian factors for every iterate of a trace."""
    factors: List[InverseHessianFactors]  # length L+1
    curvature_skipped: jnp.ndarray  # shape [L], entry l-1 refers to the pair (l-1, l)
    history_sizes: jnp.ndarray  # shape [L+1]

    def __len__(self):
        return len(self.factors)

    def __getitem__(self, l) -> InverseHessianFactors:
        return self.factors[l]


def update_diagonal(alpha, s, y):
    """
    Gilbert-Lemarechal diagonal update (eq. 4.9).

    Assumes the curvature condition y.s > 0 has been checked. The result is
    strictly positive whenever alpha is.
    """
    b = jnp.dot(y, s)
    a = jnp.dot(y, alpha * y)
    c = jnp.dot(s, s / alpha)
    return b / (a / alpha + y ** 2 - (a / c) * (s / alpha) ** 2)


def inverse_hessian_factors(S, Y, alpha):
    """
    Compact representation of J BFGS updates of diag(alpha).

    Args:
        S: Iterate differences, oldest first (J, N)
        Y: Gradient differences of the minimised objective, oldest first (J, N)
        alpha: Diagonal of the initial inverse Hessian (N,)

    Returns:
        (beta, gamma) with shapes (N, 2J) and (2J, 2J)
    """
    J, N = S.shape
    if J == 0:
        return jnp.zeros((N, 0), dtype=alpha.dtype), jnp.zeros((0, 0), dtype=alpha.dtype)

    alpha_Y = alpha[None, :] * Y
    beta = jnp.concatenate([alpha_Y.T, S.T], axis=1)

    SY = S @ Y.T  # SY[i, j] = s_i . y_j
    R = jnp.triu(SY)
    nRinv = -solve_triangular(R, jnp.eye(J, dtype=R.dtype), lower=False)

    YaY = Y @ alpha_Y.T
    YaY = 0.5 * (YaY + YaY.T)
    gamma22 = nRinv.T @ (jnp.diag(jnp.diag(SY)) + YaY) @ nRinv
    gamma22 = 0.5 * (gamma22 + gamma22.T)

    gamma = jnp.block([
        [jnp.zeros((J, J), dtype=R.dtype), nRinv],
        [nRinv.T, gamma22],
    ])
    return beta, gamma


def estimate_inverse_hessian(
    positions: jnp.ndarray,
    grads: jnp.ndarray,
    *,
    history_length: int = 5,
    epsilon: float = 1e-12,
) -> CovarianceEstimate:
    """
    Run the L-BFGS inverse-Hessian recurrence along a trace.

    Args:
        positions: Iterates of the log-density maximisation (L+1, N)
        grads: Gradients of the log-density at the iterates (L+1, N)
        history_length: Maximum number of stored curvature pairs
        epsilon: Relative tolerance of the curvature test y.s > epsilon * |y|^2

    Returns:
        CovarianceEstimate with L+1 factorizations. Entry 0 is the identity.
    """
    positions = jnp.atleast_2d(jnp.asarray(positions))
    grads = jnp.atleast_2d(jnp.asarray(grads))
    if positions.shape != grads.shape:
        raise ValueError(
            f"positions {positions.shape} and grads {grads.shape} must have the same shape."
        )
    L = positions.shape[0] - 1
    N = positions.shape[1]
    dtype = positions.dtype

    history = init_history(history_length, N, dtype=dtype)
    alpha = jnp.ones(N, dtype=dtype)
    beta, gamma = inverse_hessian_factors(*history.ordered(), alpha)
    factors = [InverseHessianFactors(alpha, beta, gamma)]
    skipped = []
    sizes = [0]

    for l in range(1, L + 1):
        s = positions[l] - positions[l - 1]
        # gradient difference of -logp
        y = grads[l - 1] - grads[l]
        b = jnp.dot(y, s)
        if bool(b > epsilon * jnp.sum(y ** 2)):
            alpha = update_diagonal(alpha, s, y)
            history = history.push(s, y)
            skipped.append(False)
        else:
            logger.debug(
                "Skipping inverse Hessian update at iteration %d to avoid negative curvature.", l
            )
            skipped.append(True)

        beta, gamma = inverse_hessian_factors(*history.ordered(), alpha)
        factors.append(InverseHessianFactors(alpha, beta, gamma))
        sizes.append(history.size)

    return CovarianceEstimate(
        factors=factors,
        curvature_skipped=jnp.asarray(skipped, dtype=bool),
        history_sizes=jnp.asarray(sizes, dtype=jnp.int32),
    )
