"""
ProgressTracker -- counter updates, ETA, and bounded subscriber delivery.

Contract:
    The tracker is the only path through which an OperationRunner mutates
    its OperationRecord.  After every change it takes an immutable
    snapshot and hands it to each subscription, waiting at most
    ``callback_timeout`` per subscriber.

Invariants enforced:
    - Snapshots reach a subscriber in the order the counter updates
      happened (one runner thread, one delivery worker per subscription).
    - processed_items never decreases across delivered snapshots.
    - A subscriber that times out or raises is disconnected, never retried.
    - Nothing is delivered after the terminal snapshot.

Non-goals:
    - No buffering for slow subscribers; slow means disconnected.
"""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import nullcontext
from typing import Callable, Iterable

from bulkops_kernel.domain.clock import Clock, SystemClock
from bulkops_kernel.logging_config import get_logger

from bulkops.domain.progress import EtaEstimator
from bulkops.domain.record import OperationRecord
from bulkops.domain.types import ItemResult, OperationSnapshot, OperationStatus

logger = get_logger("progress")

ProgressCallback = Callable[[OperationSnapshot], None]

_subscription_ids = itertools.count(1)


class Subscription:
    """One progress listener with its own delivery worker.

    ``operation_id`` is None for listeners that follow every operation.
    """

    def __init__(
        self,
        callback: ProgressCallback,
        operation_id: str | None = None,
        name: str | None = None,
    ):
        self.subscription_id = next(_subscription_ids)
        self.operation_id = operation_id
        self.name = name or getattr(callback, "__name__", "subscriber")
        self._callback = callback
        self._pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"progress-sub-{self.subscription_id}",
        )
        self._closed = threading.Event()
        self.drop_reason: str | None = None

    @property
    def active(self) -> bool:
        return not self._closed.is_set()

    def deliver(self, snapshot: OperationSnapshot, timeout: float) -> str | None:
        """Run the callback on the worker and wait up to ``timeout`` seconds.

        The timeout counts from the moment the callback starts, not from
        submission: a global subscription shared by concurrent operations
        queues deliveries behind one another on its single worker.

        Returns None on success, ``"timeout"`` or ``"error"`` when the
        subscription had to be dropped, ``"closed"`` if it already was.
        """
        if not self.active:
            return "closed"
        started = threading.Event()

        def run() -> None:
            started.set()
            self._callback(snapshot)

        try:
            future = self._pool.submit(run)
        except RuntimeError:
            # Pool shut down by a concurrent close().
            return "closed"
        # Queued behind another delivery; that one enforces its own timeout
        # and cancels this future if it drops the subscription.
        while not started.wait(timeout):
            if future.done() or not self.active:
                break
        if future.cancelled() or not started.is_set():
            return "closed"
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            self.close("timeout")
            return "timeout"
        except Exception:
            logger.warning(
                "progress_subscriber_raised",
                extra={
                    "subscription_id": self.subscription_id,
                    "subscriber": self.name,
                    "operation_id": snapshot.operation_id,
                },
                exc_info=True,
            )
            self.close("error")
            return "error"
        return None

    def close(self, reason: str = "closed") -> None:
        """Disconnect.  Idempotent; a callback already running may finish."""
        if self._closed.is_set():
            return
        self._closed.set()
        self.drop_reason = reason
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __repr__(self) -> str:
        return (
            f"Subscription({self.subscription_id}, {self.name!r}, "
            f"operation_id={self.operation_id!r}, active={self.active})"
        )


class ProgressTracker:
    """Advances one OperationRecord and notifies its subscribers.

    Contract:
        - ``start()``: pending -> in_progress, publish.
        - ``record()``: count one item outcome, recompute ETA, publish.
        - ``finish()``: enter a terminal status, run ``on_terminal``,
          publish the final snapshot, then close.

    ``finish_lock`` (the orchestrator's registry lock) is held while the
    terminal transition and ``on_terminal`` run, so registry readers never
    observe a terminal record that has not been moved to history yet.
    """

    def __init__(
        self,
        record: OperationRecord,
        clock: Clock | None = None,
        callback_timeout: float = 0.5,
        smoothing: float = 0.3,
        subscriptions: Iterable[Subscription] = (),
        on_terminal: Callable[[OperationSnapshot], None] | None = None,
        finish_lock: threading.RLock | None = None,
    ):
        self._record = record
        self._clock = clock or SystemClock()
        self._timeout = callback_timeout
        self._eta = EtaEstimator(smoothing)
        self._subscriptions: list[Subscription] = list(subscriptions)
        self._subs_lock = threading.Lock()
        self._on_terminal = on_terminal
        self._finish_lock = finish_lock
        self._closed = False

    @property
    def operation_record(self) -> OperationRecord:
        return self._record

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def eta(self) -> EtaEstimator:
        return self._eta

    def subscribe(self, subscription: Subscription) -> None:
        with self._subs_lock:
            if not self._closed:
                self._subscriptions.append(subscription)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> OperationSnapshot:
        with self._record.lock:
            self._record.mark_started(self._clock.now())
            snapshot = self._record.snapshot()
        self._publish(snapshot)
        return snapshot

    def record(
        self,
        item_index: int,
        item_id: str,
        result: ItemResult,
        duration_ms: float,
    ) -> OperationSnapshot:
        """Count one processed item and notify subscribers."""
        with self._record.lock:
            self._eta.observe(duration_ms)
            remaining = self._record.total_items - (self._record.processed_items + 1)
            self._record.record_item(
                item_index=item_index,
                success=result.success,
                error=result.error,
                now=self._clock.now(),
                eta_ms=self._eta.remaining_ms(remaining),
            )
            snapshot = self._record.snapshot()
        if not result.success:
            logger.info(
                "operation_item_failed",
                extra={
                    "operation_id": snapshot.operation_id,
                    "item_index": item_index,
                    "item_id": item_id,
                    "error": result.error,
                },
            )
        self._publish(snapshot)
        return snapshot

    def finish(
        self,
        status: OperationStatus,
        error_message: str | None = None,
    ) -> OperationSnapshot:
        """Enter ``status`` (terminal), publish the final snapshot, close."""
        with self._finish_lock or nullcontext():
            with self._record.lock:
                self._record.mark_finished(
                    status, self._clock.now(), error_message=error_message,
                )
                snapshot = self._record.snapshot()
            if self._on_terminal is not None:
                self._on_terminal(snapshot)
        self._publish(snapshot)
        self.close()
        return snapshot

    def close(self) -> None:
        """Stop delivering.  Per-operation subscriptions are disconnected."""
        with self._subs_lock:
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            if sub.operation_id is not None:
                sub.close("operation_finished")

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _publish(self, snapshot: OperationSnapshot) -> None:
        with self._subs_lock:
            if self._closed:
                return
            subscriptions = list(self._subscriptions)

        dropped: list[Subscription] = []
        for sub in subscriptions:
            outcome = sub.deliver(snapshot, self._timeout)
            if outcome is None:
                continue
            dropped.append(sub)
            if outcome != "closed":
                logger.warning(
                    "progress_subscriber_dropped",
                    extra={
                        "operation_id": snapshot.operation_id,
                        "subscription_id": sub.subscription_id,
                        "subscriber": sub.name,
                        "reason": outcome,
                        "timeout_seconds": self._timeout,
                    },
                )

        if dropped:
            with self._subs_lock:
                self._subscriptions = [
                    s for s in self._subscriptions if s not in dropped
                ]
