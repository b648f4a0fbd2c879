"""
SystemStatisticsReporter -- cached, coalesced system statistics.

Contract:
    ``get_snapshot()`` returns a ``SystemStatisticsSnapshot`` no older than
    ``max_age`` seconds, unless background refresh is allowed, in which
    case a stale snapshot is returned immediately and one refresh runs on a
    background thread.

Invariants enforced:
    - At most one aggregation is in flight.  Concurrent callers that need
      fresh data wait on it and share its result or error.
    - A failed background refresh keeps the stale snapshot and records the
      error in ``last_refresh_error``.
    - A failed blocking refresh raises ``StatisticsUnavailableError``.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from bulkops_kernel.domain.clock import Clock, SystemClock
from bulkops_kernel.exceptions import StatisticsUnavailableError
from bulkops_kernel.logging_config import get_logger

from bulkops.domain.types import SystemStatisticsSnapshot

logger = get_logger("statistics")

SECTIONS = ("users", "data", "storage", "performance")


@runtime_checkable
class StatisticsSource(Protocol):
    """Supplies part of the statistics, keyed by section name."""

    def collect(self) -> dict[str, dict[str, Any]]: ...


class FunctionSource:
    """Adapts a zero-argument callable to StatisticsSource."""

    def __init__(self, fn: Callable[[], dict[str, dict[str, Any]]]):
        self._fn = fn

    def collect(self) -> dict[str, dict[str, Any]]:
        return self._fn()


class _Refresh:
    """One in-flight aggregation shared by all waiters."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: SystemStatisticsSnapshot | None = None
        self.error: BaseException | None = None


class SystemStatisticsReporter:
    """Aggregates StatisticsSources into cached snapshots."""

    def __init__(
        self,
        sources: Iterable[StatisticsSource],
        clock: Clock | None = None,
        max_age_seconds: float = 60.0,
        background_refresh: bool = True,
    ):
        self._sources = list(sources)
        self._clock = clock or SystemClock()
        self._max_age = max_age_seconds
        self._background = background_refresh
        self._lock = threading.Lock()
        self._cached: SystemStatisticsSnapshot | None = None
        self._inflight: _Refresh | None = None
        self._last_error: BaseException | None = None

    @property
    def cached(self) -> SystemStatisticsSnapshot | None:
        return self._cached

    @property
    def last_refresh_error(self) -> BaseException | None:
        return self._last_error

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None

    def get_snapshot(
        self,
        max_age: float | None = None,
        background_refresh: bool | None = None,
    ) -> SystemStatisticsSnapshot:
        """Snapshot honouring the freshness policy.

        Raises:
            StatisticsUnavailableError: A blocking refresh failed.
        """
        max_age = self._max_age if max_age is None else max_age
        background = self._background if background_refresh is None else background_refresh

        cached = self._cached
        if cached is not None and cached.age_seconds(self._clock.now()) < max_age:
            return cached
        if cached is not None and background:
            self._refresh_in_background()
            return cached
        return self.refresh()

    def refresh(self) -> SystemStatisticsSnapshot:
        """Blocking refresh, joining one already in flight if there is one."""
        with self._lock:
            job = self._inflight
            owner = job is None
            if owner:
                job = self._inflight = _Refresh()
        if owner:
            self._run(job)
        else:
            job.done.wait()

        if job.error is not None:
            if isinstance(job.error, StatisticsUnavailableError):
                raise job.error
            raise StatisticsUnavailableError(
                f"{type(job.error).__name__}: {job.error}"
            ) from job.error
        return job.result

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next read blocks on a refresh."""
        with self._lock:
            self._cached = None

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _refresh_in_background(self) -> None:
        with self._lock:
            if self._inflight is not None:
                return
            job = self._inflight = _Refresh()
        thread = threading.Thread(
            target=self._run,
            args=(job,),
            name="statistics-refresh",
            daemon=True,
        )
        thread.start()

    def _run(self, job: _Refresh) -> None:
        began = time.monotonic()
        try:
            snapshot = self._aggregate()
        except Exception as exc:
            job.error = exc
            self._last_error = exc
            logger.warning("statistics_refresh_failed", exc_info=True)
        else:
            job.result = snapshot
            with self._lock:
                self._cached = snapshot
            self._last_error = None
            logger.info(
                "statistics_refreshed",
                extra={
                    "duration_ms": int((time.monotonic() - began) * 1000),
                    "sources": len(self._sources),
                },
            )
        finally:
            with self._lock:
                self._inflight = None
            job.done.set()

    def _aggregate(self) -> SystemStatisticsSnapshot:
        merged: dict[str, dict[str, Any]] = {name: {} for name in SECTIONS}
        for source in self._sources:
            collected = source.collect() or {}
            for section, values in collected.items():
                if section not in merged:
                    logger.debug(
                        "statistics_section_ignored", extra={"section": section},
                    )
                    continue
                merged[section].update(values)
        return SystemStatisticsSnapshot(
            users=merged["users"],
            data=merged["data"],
            storage=merged["storage"],
            performance=merged["performance"],
            generated_at=self._clock.now(),
        )
