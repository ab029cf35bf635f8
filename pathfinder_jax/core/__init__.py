from .trace import OptimTrace, TraceStatus, finite_mask, truncate_nonfinite
from .typing import Array, PRNGKey, LogDensity, GradLogDensity

__all__ = [
    "OptimTrace",
    "TraceStatus",
    "finite_mask",
    "truncate_nonfinite",
    "Array",
    "PRNGKey",
    "LogDensity",
    "GradLogDensity",
]
