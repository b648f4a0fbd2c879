"""
OperationRunner -- drives one operation from pending to a terminal status.

Contract:
    ``run()`` walks the item list in order, one executor call per item,
    and leaves the record in exactly one terminal status.  It never raises
    for item- or executor-level failures; those end up on the record.

Invariants enforced:
    - Item isolation: an exception from one item is recorded against that
      item and the loop moves on.
    - Cancellation is checked only at item boundaries.  Items not yet
      started are skipped and not counted.
    - ``finish()`` runs for every run that got past ``prepare()``,
      cancelled runs included.

Non-goals:
    - No retries and no rollback of items already applied.
"""

from __future__ import annotations

import threading
import time

from bulkops_kernel.domain.clock import Clock, SystemClock
from bulkops_kernel.exceptions import ExecutorUnavailableError, ItemError
from bulkops_kernel.logging_config import LogContext, get_logger

from bulkops.domain.record import outcome_status
from bulkops.domain.types import ItemResult, OperationSnapshot, OperationStatus
from bulkops.services.progress import ProgressTracker
from bulkops.tasks.base import ExecutionContext, ItemExecutor

logger = get_logger("runner")


class CancellationToken:
    """Advisory stop flag shared by the orchestrator and one runner."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._lock = threading.Lock()

    def cancel(self, reason: str | None = None) -> bool:
        """Request cancellation.  Returns False if it was already requested."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


class OperationRunner:
    """Executes one operation's items through its executor."""

    def __init__(
        self,
        tracker: ProgressTracker,
        executor: ItemExecutor,
        token: CancellationToken | None = None,
        clock: Clock | None = None,
    ):
        self._tracker = tracker
        self._record = tracker.operation_record
        self._executor = executor
        self._token = token or CancellationToken()
        self._clock = clock or SystemClock()

    @property
    def token(self) -> CancellationToken:
        return self._token

    def run(self) -> OperationSnapshot:
        record = self._record
        with LogContext.bind(
            operation_id=record.operation_id,
            operation_type=record.operation_type.value,
            actor_id=record.initiated_by,
        ):
            started = self._tracker.start()
            logger.info(
                "operation_started",
                extra={
                    "total_items": record.total_items,
                    "executor": self._executor.description,
                },
            )

            context = ExecutionContext(
                operation_id=record.operation_id,
                operation_type=record.operation_type,
                params=record.params,
                options=record.options,
                as_of=started.start_time or self._clock.now(),
                initiated_by=record.initiated_by,
            )

            try:
                self._executor.prepare(context)
            except Exception as exc:
                return self._fail_unavailable(exc)

            cancelled = self._run_items(context)
            error_message = self._finish_executor(context)

            if cancelled:
                status = OperationStatus.CANCELLED
                reason = self._token.reason
                if error_message is None and reason:
                    error_message = f"Cancelled: {reason}"
            else:
                status = outcome_status(record.total_items, record.failed_items)

            final = self._tracker.finish(status, error_message=error_message)
            logger.info(
                "operation_finished",
                extra={
                    "status": final.status.value,
                    "processed_items": final.processed_items,
                    "successful_items": final.successful_items,
                    "failed_items": final.failed_items,
                    "duration_ms": final.duration_ms,
                },
            )
            return final

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _fail_unavailable(self, exc: Exception) -> OperationSnapshot:
        if isinstance(exc, ExecutorUnavailableError):
            message = str(exc)
        else:
            message = (
                f"Executor setup failed: {type(exc).__name__}: {exc}"
            )
        logger.warning(
            "operation_executor_unavailable",
            extra={"error": message},
            exc_info=not isinstance(exc, ExecutorUnavailableError),
        )
        return self._tracker.finish(OperationStatus.FAILED, error_message=message)

    def _run_items(self, context: ExecutionContext) -> bool:
        """Process items in order.  Returns True if stopped by cancellation."""
        for index, item_id in enumerate(self._record.item_ids):
            if self._token.is_cancelled:
                logger.info(
                    "operation_cancel_observed",
                    extra={
                        "item_index": index,
                        "skipped_items": self._record.total_items - index,
                    },
                )
                return True

            began = time.monotonic()
            result = self._execute_one(item_id, context)
            duration_ms = (time.monotonic() - began) * 1000
            self._tracker.record(index, item_id, result, duration_ms)
        return False

    def _execute_one(self, item_id: str, context: ExecutionContext) -> ItemResult:
        try:
            result = self._executor.execute(item_id, context)
        except ItemError as exc:
            return ItemResult.fail(exc.reason)
        except Exception as exc:
            logger.warning(
                "operation_item_raised",
                extra={"item_id": item_id},
                exc_info=True,
            )
            return ItemResult.fail(f"{type(exc).__name__}: {exc}")

        if isinstance(result, ItemResult):
            return result
        if result:
            return ItemResult.ok()
        return ItemResult.fail("Executor returned no result")

    def _finish_executor(self, context: ExecutionContext) -> str | None:
        error_message = None
        try:
            self._executor.finish(context)
        except Exception as exc:
            error_message = f"Finalization failed: {type(exc).__name__}: {exc}"
            logger.error(
                "operation_finalize_failed",
                extra={"error": error_message},
                exc_info=True,
            )
        if context.artifacts:
            self._record.set_artifacts(context.artifacts)
        return error_message
