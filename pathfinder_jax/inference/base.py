# pathfinder_jax/inference/base.py
from __future__ import annotations

from typing import Protocol, runtime_checkable, Any

from ..core.typing import LogDensity


@runtime_checkable
class InferenceMethod(Protocol):
    """
    Protocol for inference methods.

    Design principles
    -----------------
    - An InferenceMethod consumes a log-density and performs inference.
    - It MUST treat the log-density as a black box (pure, JAX-traceable).
    - Configuration lives in a frozen *CFG dataclass passed at construction.

    Canonical contract
    ------------------
    run(logdensity_fn, initial_position(s), *, key, grad_fn=None, ...) -> *Run
    """

    def run(self, logdensity_fn: LogDensity, *args, **kwargs) -> Any:
        """
        Run inference on the given log-density.

        Returns
        -------
        Any
            Inference results (method-specific: draws, diagnostics, etc.).
        """
        ...
