"""
bulkops.domain.progress -- pure progress and ETA arithmetic.

ZERO I/O.  Used by the ProgressTracker; kept separate so the invariants can
be property-tested without threads.
"""

from __future__ import annotations

import math


def compute_progress(processed: int, total: int) -> int:
    """Integer percentage ``round(processed / total * 100)``, 0 when total is 0.

    Rounds half up (50.5 -> 51) rather than Python's banker's rounding.
    """
    if total <= 0:
        return 0
    return int(math.floor(processed * 100 / total + 0.5))


class EtaEstimator:
    """Exponential moving average of per-item duration.

    The first observation seeds the average directly, so with the default
    smoothing of 0.3 the seed's weight drops below 3% after ten items.
    """

    def __init__(self, smoothing: float = 0.3):
        if not 0 < smoothing <= 1:
            raise ValueError("smoothing must be in (0, 1]")
        self._alpha = smoothing
        self._average_ms: float | None = None
        self._samples = 0

    @property
    def average_ms(self) -> float | None:
        return self._average_ms

    @property
    def samples(self) -> int:
        return self._samples

    def observe(self, duration_ms: float) -> float:
        """Fold one per-item duration into the average and return it."""
        duration_ms = max(0.0, float(duration_ms))
        if self._average_ms is None:
            self._average_ms = duration_ms
        else:
            self._average_ms = (
                self._alpha * duration_ms + (1 - self._alpha) * self._average_ms
            )
        self._samples += 1
        return self._average_ms

    def remaining_ms(self, remaining_items: int) -> int | None:
        """ETA for ``remaining_items``; None before the first observation."""
        if self._average_ms is None:
            return None
        return int(round(max(0, remaining_items) * self._average_ms))
