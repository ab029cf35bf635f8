# pathfinder_jax/core/typing.py
from __future__ import annotations
from typing import Protocol, Callable

from jax import Array

PRNGKey = Array


class LogDensity(Protocol):
    """
    Unnormalised log-density on flat parameters x in R^N.

    Inference algorithms must treat this as a black box. It must be pure
    (deterministic, no observable side effects) and JAX-traceable, since it is
    vmapped over draws and differentiated by the optimizer.
    """

    def __call__(self, x: Array) -> Array:
        ...


GradLogDensity = Callable[[Array], Array]
