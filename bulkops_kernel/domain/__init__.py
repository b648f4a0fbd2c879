"""Pure kernel domain helpers (time abstraction)."""

from bulkops_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
