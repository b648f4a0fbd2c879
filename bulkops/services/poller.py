"""
StatusPoller -- background refresh of active operations for a client view.

Contract:
    Every ``interval_seconds`` the poller calls ``fetch()`` (typically
    ``Orchestrator.get_active``) and hands the result to ``on_update``.
    It keeps polling only while the last fetch returned at least one
    non-terminal operation; otherwise it parks until ``wake()``.

Non-goals:
    - Not a scheduler.  Nothing is submitted from here.
"""

from __future__ import annotations

import threading
from typing import Callable, Sequence

from bulkops_kernel.logging_config import get_logger

from bulkops.domain.types import OperationSnapshot

logger = get_logger("poller")

FetchFn = Callable[[], Sequence[OperationSnapshot]]
UpdateFn = Callable[[Sequence[OperationSnapshot]], None]


class StatusPoller:
    """Polls while work is in flight, idles otherwise."""

    def __init__(
        self,
        fetch: FetchFn,
        on_update: UpdateFn,
        interval_seconds: float = 5.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._fetch = fetch
        self._on_update = on_update
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._has_active = True
        self._polls = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def has_active(self) -> bool:
        """Whether the last fetch showed any non-terminal operation."""
        return self._has_active

    @property
    def polls(self) -> int:
        return self._polls

    def poll_once(self) -> Sequence[OperationSnapshot]:
        """Fetch and deliver one update (public for testing)."""
        snapshots = self._fetch()
        self._polls += 1
        self._has_active = any(not s.is_terminal for s in snapshots)
        self._on_update(snapshots)
        return snapshots

    def wake(self) -> None:
        """Resume polling, e.g. right after a submission."""
        self._has_active = True
        self._wake_event.set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="status-poller",
            daemon=True,
        )
        self._thread.start()
        logger.info("poller_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("poller_stopped", extra={"polls": self._polls})

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.clear()
            try:
                self.poll_once()
            except Exception:
                logger.exception("poller_fetch_failed")

            if self._has_active:
                self._stop_event.wait(timeout=self._interval)
            else:
                # Idle: park until woken or stopped.
                self._wake_event.wait()
