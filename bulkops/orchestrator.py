"""
Orchestrator -- entry point for submitting and observing bulk operations.

Contract:
    Validates submissions, registers an OperationRecord per job, runs each
    job on a worker thread, and answers status/history/report queries.
    ``from_config()`` wires the history store and statistics from a
    ``BulkOpsConfig``.

Architecture: bulkops (top-level).  Composes bulkops.services and
    bulkops.tasks; nothing below imports from here.

Invariants enforced:
    - Rejected submissions never create a record.
    - One registry lock guards insert, cancel, reads and the move to
      history.  A terminal operation is either in the registry or in the
      history store, never missing from both.
    - Cancellation is advisory.  ``cancel()`` returns before the runner
      observes it.
    - All timestamps come from the injected Clock.

Non-goals:
    - No retries, no rollback of applied items, no persistence of
      in-flight jobs across restarts.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from bulkops_config import BulkOpsConfig, load_config
from bulkops_kernel.db import create_tables, get_session_factory, init_engine_from_url
from bulkops_kernel.domain.clock import Clock, SystemClock
from bulkops_kernel.exceptions import (
    OperationNotFoundError,
    OperationNotTerminalError,
    OrchestratorNotRunningError,
    ValidationError,
)
from bulkops_kernel.logging_config import LogContext, get_logger

from bulkops.domain.record import OperationRecord
from bulkops.domain.types import (
    HistoryFilter,
    HistoryPage,
    OperationReport,
    OperationRequest,
    OperationSnapshot,
    OperationStatus,
    OperationType,
    format_duration,
)
from bulkops.domain.validation import validate_parameters, validate_request
from bulkops.services.history import (
    InMemoryHistoryStore,
    OperationHistoryStore,
    SqlHistoryStore,
)
from bulkops.services.poller import StatusPoller, UpdateFn
from bulkops.services.progress import ProgressCallback, ProgressTracker, Subscription
from bulkops.services.runner import CancellationToken, OperationRunner
from bulkops.services.statistics import (
    FunctionSource,
    StatisticsSource,
    SystemStatisticsReporter,
)
from bulkops.tasks.base import ExecutorRegistry, ItemCollector, ItemExecutor

logger = get_logger("orchestrator")


@dataclass
class _Entry:
    """Registry slot for one non-terminal operation."""

    record: OperationRecord
    tracker: ProgressTracker
    runner: OperationRunner
    token: CancellationToken
    done: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None


class Orchestrator:
    """Runs bulk operations and serves their status.

    Contract:
        - ``start()`` / ``stop()`` bracket the worker pool; also usable as
          a context manager.
        - ``submit()`` validates and schedules; returns the operation id.
        - ``get_active()`` / ``get_operation()`` / ``get_history()`` /
          ``get_report()`` are pure reads over immutable snapshots.
        - ``cancel()`` requests a stop at the next item boundary.
        - ``subscribe()`` registers push listeners.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        config: BulkOpsConfig | None = None,
        history: OperationHistoryStore | None = None,
        clock: Clock | None = None,
        statistics_sources: Iterable[StatisticsSource] = (),
    ) -> None:
        self._registry = registry
        self._config = config or BulkOpsConfig()
        self._history = (
            history if history is not None
            else InMemoryHistoryStore(self._config.history.max_entries)
        )
        self._clock = clock or SystemClock()

        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._listeners: list[Subscription] = []
        self._pollers: list[StatusPoller] = []
        self._pool: ThreadPoolExecutor | None = None
        self._running = False

        stats = self._config.statistics
        self._statistics = SystemStatisticsReporter(
            [FunctionSource(self._operation_statistics), *statistics_sources],
            clock=self._clock,
            max_age_seconds=stats.max_age_seconds,
            background_refresh=stats.background_refresh,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        registry: ExecutorRegistry,
        config: BulkOpsConfig | None = None,
        clock: Clock | None = None,
        statistics_sources: Iterable[StatisticsSource] = (),
        session_factory: sessionmaker[Session] | None = None,
    ) -> Orchestrator:
        """Create an orchestrator with its history store chosen by config.

        ``history.database_url`` (or an explicit ``session_factory``)
        selects the SQLAlchemy store; otherwise history stays in memory.
        """
        config = config or load_config()
        history_settings = config.history

        history: OperationHistoryStore
        if session_factory is None and history_settings.database_url:
            engine = init_engine_from_url(history_settings.database_url)
            create_tables(engine)
            session_factory = get_session_factory()
        if session_factory is not None:
            history = SqlHistoryStore(session_factory, history_settings.max_entries)
        else:
            history = InMemoryHistoryStore(history_settings.max_entries)

        return cls(
            registry=registry,
            config=config,
            history=history,
            clock=clock,
            statistics_sources=statistics_sources,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> Orchestrator:
        with self._lock:
            if self._running:
                return self
            self._pool = ThreadPoolExecutor(
                max_workers=self._config.orchestrator.max_workers,
                thread_name_prefix="bulkops-runner",
            )
            self._running = True
        logger.info(
            "orchestrator_started",
            extra={
                "max_workers": self._config.orchestrator.max_workers,
                "executors": [t.value for t in self._registry.list_types()],
            },
        )
        return self

    def stop(self, timeout: float | None = None, cancel_active: bool = True) -> None:
        """Stop accepting work and wait for running jobs.

        Args:
            timeout: Seconds to wait for jobs; defaults to
                ``orchestrator.shutdown_timeout_seconds``.
            cancel_active: Request cancellation of every non-terminal job
                first, so each stops at its next item boundary.
        """
        if timeout is None:
            timeout = self._config.orchestrator.shutdown_timeout_seconds
        with self._lock:
            if not self._running:
                return
            self._running = False
            pool, self._pool = self._pool, None
            entries = list(self._entries.values())
            pollers, self._pollers = self._pollers, []
            if cancel_active:
                for entry in entries:
                    entry.token.cancel("orchestrator stopping")

        for poller in pollers:
            poller.stop()

        deadline = time.monotonic() + timeout
        for entry in entries:
            entry.done.wait(max(0.0, deadline - time.monotonic()))

        if pool is not None:
            pool.shutdown(wait=False)
        unfinished = sum(1 for e in entries if not e.done.is_set())
        logger.info(
            "orchestrator_stopped",
            extra={"waited_for": len(entries), "unfinished": unfinished},
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def __enter__(self) -> Orchestrator:
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(
        self,
        request: OperationRequest,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Validate ``request`` and schedule it.  Returns the operation id.

        Raises:
            OrchestratorNotRunningError: ``start()`` has not been called.
            ValidationError: The request is malformed; nothing was created.
        """
        if not self._running:
            raise OrchestratorNotRunningError()
        with LogContext.bind(
            correlation_id=request.correlation_id, actor_id=request.initiated_by,
        ):
            try:
                operation_type = validate_request(
                    request, self._config.validation, self._registry.list_types(),
                )
            except ValidationError as exc:
                logger.info(
                    "operation_rejected",
                    extra={
                        "operation_type": str(request.operation_type),
                        "errors": exc.errors,
                    },
                )
                raise
            return self._launch(
                operation_type,
                self._registry.get(operation_type),
                tuple(request.item_ids),
                request.params,
                request.options,
                request.initiated_by,
                on_progress,
            )

    def submit_collected(
        self,
        operation_type: OperationType | str,
        params: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        initiated_by: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Submit a job whose items the executor gathers itself.

        Used by the maintenance flows (cleanup, cache clear, archive) and
        file imports, where the caller names criteria rather than ids.

        Raises:
            ValidationError: Unknown type, an executor that cannot collect
                items, invalid params/options, or nothing to process.
        """
        if not self._running:
            raise OrchestratorNotRunningError()
        try:
            parsed = OperationType.parse(operation_type)
        except ValueError:
            raise ValidationError(
                f"unknown operation type '{operation_type}'"
            ) from None
        if parsed not in self._registry:
            raise ValidationError(f"no executor registered for '{parsed.value}'")

        executor = self._registry.get(parsed)
        if not isinstance(executor, ItemCollector):
            raise ValidationError(
                f"executor for '{parsed.value}' cannot collect its own items"
            )
        params = dict(params or {})
        options = dict(options or {})
        validate_parameters(parsed, params, options, self._config.validation)
        items = tuple(executor.collect_items(params, options))
        if not items:
            raise ValidationError(f"nothing to process for '{parsed.value}'")

        return self.submit(
            OperationRequest(
                operation_type=parsed,
                item_ids=items,
                params=dict(params or {}),
                options=dict(options or {}),
                initiated_by=initiated_by,
            ),
            on_progress=on_progress,
        )

    def _launch(
        self,
        operation_type: OperationType,
        executor: ItemExecutor,
        item_ids: tuple[str, ...],
        params: dict[str, Any],
        options: dict[str, Any],
        initiated_by: str | None,
        on_progress: ProgressCallback | None,
    ) -> str:
        record = OperationRecord(
            operation_type=operation_type,
            item_ids=item_ids,
            created_at=self._clock.now(),
            initiated_by=initiated_by,
            params=params,
            options=options,
        )
        own = []
        if on_progress is not None:
            own.append(Subscription(on_progress, operation_id=record.operation_id))

        progress = self._config.progress
        with self._lock:
            if not self._running or self._pool is None:
                for sub in own:
                    sub.close()
                raise OrchestratorNotRunningError()
            self._listeners = [s for s in self._listeners if s.active]
            tracker = ProgressTracker(
                record,
                clock=self._clock,
                callback_timeout=progress.callback_timeout_seconds,
                smoothing=progress.eta_smoothing,
                subscriptions=[*self._listeners, *own],
                on_terminal=self._retire,
                finish_lock=self._lock,
            )
            token = CancellationToken()
            runner = OperationRunner(tracker, executor, token, clock=self._clock)
            entry = _Entry(record=record, tracker=tracker, runner=runner, token=token)
            self._entries[record.operation_id] = entry
            ctx = contextvars.copy_context()
            entry.future = self._pool.submit(ctx.run, self._run_job, entry)
            pollers = list(self._pollers)

        logger.info(
            "operation_submitted",
            extra={
                "operation_id": record.operation_id,
                "operation_type": operation_type.value,
                "total_items": record.total_items,
            },
        )
        for poller in pollers:
            poller.wake()
        return record.operation_id

    def _run_job(self, entry: _Entry) -> None:
        try:
            entry.runner.run()
        except Exception:
            logger.exception(
                "operation_runner_crashed",
                extra={"operation_id": entry.record.operation_id},
            )
            self._force_fail(entry)
        finally:
            entry.done.set()

    def _force_fail(self, entry: _Entry) -> None:
        record = entry.record
        with record.lock:
            if record.is_terminal:
                return
            if record.status == OperationStatus.PENDING:
                record.mark_started(self._clock.now())
        entry.tracker.finish(
            OperationStatus.FAILED, error_message="Internal error while running operation",
        )

    def _retire(self, snapshot: OperationSnapshot) -> None:
        """Move a terminal operation from the registry to history.

        Called by the tracker with the registry lock held.
        """
        try:
            self._history.add(snapshot)
        except Exception:
            # Leave it in the registry so it stays queryable.
            logger.exception(
                "history_store_failed",
                extra={"operation_id": snapshot.operation_id},
            )
            return
        self._entries.pop(snapshot.operation_id, None)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_active(self) -> list[OperationSnapshot]:
        """Snapshots of non-terminal operations, in submission order."""
        with self._lock:
            snapshots = [e.record.snapshot() for e in self._entries.values()]
        return [s for s in snapshots if not s.is_terminal]

    @property
    def has_active(self) -> bool:
        with self._lock:
            return any(not e.record.is_terminal for e in self._entries.values())

    def get_operation(self, operation_id: str) -> OperationSnapshot:
        """Snapshot of an active or retained operation.

        Raises:
            OperationNotFoundError: Unknown id (or evicted from history).
        """
        with self._lock:
            entry = self._entries.get(operation_id)
            if entry is not None:
                return entry.record.snapshot()
            snapshot = self._history.get(operation_id)
        if snapshot is None:
            raise OperationNotFoundError(operation_id)
        return snapshot

    def get_history(
        self,
        history_filter: HistoryFilter | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> HistoryPage:
        """Terminal operations, newest first.

        Raises:
            ValidationError: ``page`` or ``page_size`` below 1.
        """
        settings = self._config.history
        if page_size is None:
            page_size = settings.default_page_size
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive integers")
        page_size = min(page_size, settings.max_page_size)
        with self._lock:
            return self._history.query(history_filter, page=page, page_size=page_size)

    def get_report(self, operation_id: str) -> OperationReport:
        """Detailed report of a terminal operation.

        Raises:
            OperationNotFoundError: Unknown id.
            OperationNotTerminalError: The operation is still running.
        """
        snapshot = self.get_operation(operation_id)
        if not snapshot.is_terminal:
            raise OperationNotTerminalError(operation_id, snapshot.status.value)
        return OperationReport(
            summary=snapshot,
            errors=snapshot.errors,
            duration_ms=snapshot.duration_ms,
            duration=format_duration(snapshot.duration_ms),
            artifacts=dict(snapshot.artifacts),
        )

    def wait(self, operation_id: str, timeout: float | None = None) -> OperationSnapshot:
        """Block until the operation is terminal (or ``timeout`` elapses).

        Returns the latest snapshot either way.
        """
        with self._lock:
            entry = self._entries.get(operation_id)
        if entry is not None:
            entry.done.wait(timeout)
        return self.get_operation(operation_id)

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, operation_id: str, reason: str | None = None) -> OperationSnapshot:
        """Request cancellation.  No-op for terminal operations.

        Returns the snapshot at the time of the request; the caller polls
        to observe the ``cancelled`` status.

        Raises:
            OperationNotFoundError: Unknown id.
        """
        with self._lock:
            entry = self._entries.get(operation_id)
            if entry is None:
                snapshot = self._history.get(operation_id)
                if snapshot is None:
                    raise OperationNotFoundError(operation_id)
                return snapshot
            snapshot = entry.record.snapshot()
            if snapshot.is_terminal:
                return snapshot
            first = entry.token.cancel(reason)

        logger.info(
            "operation_cancel_requested",
            extra={
                "operation_id": operation_id,
                "status": snapshot.status.value,
                "processed_items": snapshot.processed_items,
                "repeat": not first,
                "reason": reason,
            },
        )
        return snapshot

    # -------------------------------------------------------------------------
    # Push delivery
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        callback: ProgressCallback,
        operation_id: str | None = None,
        name: str | None = None,
    ) -> Subscription:
        """Register a progress listener for one operation or for all.

        A listener for an operation that already finished is returned
        closed and never called.

        Raises:
            OperationNotFoundError: ``operation_id`` is unknown.
        """
        subscription = Subscription(callback, operation_id=operation_id, name=name)
        with self._lock:
            if operation_id is None:
                self._listeners.append(subscription)
                for entry in self._entries.values():
                    entry.tracker.subscribe(subscription)
                return subscription

            entry = self._entries.get(operation_id)
            if entry is not None and not entry.tracker.closed:
                entry.tracker.subscribe(subscription)
                return subscription
            if entry is None and self._history.get(operation_id) is None:
                subscription.close()
                raise OperationNotFoundError(operation_id)
        subscription.close("operation_finished")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close("unsubscribed")
        with self._lock:
            self._listeners = [s for s in self._listeners if s is not subscription]

    def create_poller(
        self,
        on_update: UpdateFn,
        interval_seconds: float | None = None,
    ) -> StatusPoller:
        """StatusPoller over ``get_active``, woken on every submission."""
        poller = StatusPoller(
            self.get_active,
            on_update,
            interval_seconds or self._config.poller.interval_seconds,
        )
        with self._lock:
            self._pollers.append(poller)
        return poller

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _operation_statistics(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            active = sum(1 for e in self._entries.values() if not e.record.is_terminal)
        return {
            "data": {
                "active_operations": active,
                "retained_operations": len(self._history),
            },
        }

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def registry(self) -> ExecutorRegistry:
        return self._registry

    @property
    def history(self) -> OperationHistoryStore:
        return self._history

    @property
    def statistics(self) -> SystemStatisticsReporter:
        return self._statistics

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def config(self) -> BulkOpsConfig:
        return self._config

    def listeners(self) -> Sequence[Subscription]:
        with self._lock:
            return tuple(s for s in self._listeners if s.active)
