"""
bulkops.domain.record -- the mutable operation record and its state machine.

Contract:
    ``OperationRecord`` is owned by exactly one OperationRunner while it is
    non-terminal.  Every mutation goes through a method that checks the
    state machine and holds the record's lock, so ``snapshot()`` (called
    from any thread) always observes a consistent set of counters.

State machine::

    pending -> in_progress -> completed
                           -> partial_success
                           -> failed
                           -> cancelled

Invariants enforced:
    - processed_items == successful_items + failed_items
    - processed_items <= total_items
    - progress == compute_progress(processed_items, total_items)
    - end_time is set exactly once, on entry to a terminal status
    - terminal records reject every mutation
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any
from uuid import uuid4

from bulkops_kernel.exceptions import InvalidTransitionError

from bulkops.domain.progress import compute_progress
from bulkops.domain.types import (
    ItemErrorEntry,
    OperationSnapshot,
    OperationStatus,
    OperationType,
)

_ALLOWED: dict[OperationStatus, frozenset[OperationStatus]] = {
    OperationStatus.PENDING: frozenset({OperationStatus.IN_PROGRESS}),
    OperationStatus.IN_PROGRESS: frozenset({
        OperationStatus.COMPLETED,
        OperationStatus.PARTIAL_SUCCESS,
        OperationStatus.FAILED,
        OperationStatus.CANCELLED,
    }),
}


def new_operation_id() -> str:
    """Opaque unique operation identifier."""
    return f"op_{uuid4().hex}"


def outcome_status(total: int, failed: int) -> OperationStatus:
    """Terminal status for a run that processed every item."""
    if failed == 0:
        return OperationStatus.COMPLETED
    if failed >= total:
        return OperationStatus.FAILED
    return OperationStatus.PARTIAL_SUCCESS


class OperationRecord:
    """Mutable progress state of one batch job."""

    def __init__(
        self,
        operation_type: OperationType,
        item_ids: tuple[str, ...],
        created_at: datetime,
        initiated_by: str | None = None,
        params: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        operation_id: str | None = None,
    ):
        self._lock = threading.RLock()
        self._operation_id = operation_id or new_operation_id()
        self._operation_type = operation_type
        self._item_ids = tuple(item_ids)
        self._created_at = created_at
        self._initiated_by = initiated_by
        self._params = copy.deepcopy(params or {})
        self._options = copy.deepcopy(options or {})

        self.status = OperationStatus.PENDING
        self.total_items = len(self._item_ids)
        self.processed_items = 0
        self.successful_items = 0
        self.failed_items = 0
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.estimated_time_remaining_ms: int | None = None
        self.error_message: str | None = None
        self._errors: list[ItemErrorEntry] = []
        self._artifacts: dict[str, Any] = {}

    # -------------------------------------------------------------------------
    # Identity (immutable)
    # -------------------------------------------------------------------------

    @property
    def operation_id(self) -> str:
        return self._operation_id

    @property
    def operation_type(self) -> OperationType:
        return self._operation_type

    @property
    def item_ids(self) -> tuple[str, ...]:
        return self._item_ids

    @property
    def initiated_by(self) -> str | None:
        return self._initiated_by

    @property
    def params(self) -> dict[str, Any]:
        return copy.deepcopy(self._params)

    @property
    def options(self) -> dict[str, Any]:
        return copy.deepcopy(self._options)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def progress(self) -> int:
        return compute_progress(self.processed_items, self.total_items)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, target: OperationStatus) -> None:
        if target not in _ALLOWED.get(self.status, frozenset()):
            raise InvalidTransitionError(
                self._operation_id, self.status.value, target.value,
            )
        self.status = target

    def mark_started(self, now: datetime) -> None:
        with self._lock:
            self._transition(OperationStatus.IN_PROGRESS)
            self.start_time = now

    def mark_finished(
        self,
        status: OperationStatus,
        now: datetime,
        error_message: str | None = None,
    ) -> None:
        """Enter a terminal status and stamp ``end_time``."""
        with self._lock:
            if not status.is_terminal:
                raise InvalidTransitionError(
                    self._operation_id, self.status.value, status.value,
                )
            self._transition(status)
            self.end_time = now
            self.estimated_time_remaining_ms = (
                0 if status != OperationStatus.CANCELLED else None
            )
            if error_message is not None:
                self.error_message = error_message

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def record_item(
        self,
        item_index: int,
        success: bool,
        error: str | None,
        now: datetime,
        eta_ms: int | None = None,
    ) -> None:
        """Count one processed item.  Only legal while in progress."""
        with self._lock:
            if self.status != OperationStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    self._operation_id, self.status.value, "record_item",
                )
            if self.processed_items >= self.total_items:
                raise ValueError(
                    f"Operation {self._operation_id} already processed "
                    f"{self.total_items} items"
                )
            self.processed_items += 1
            if success:
                self.successful_items += 1
            else:
                self.failed_items += 1
                self._errors.append(ItemErrorEntry(
                    item_index=item_index,
                    item_id=self._item_ids[item_index],
                    error=error or "Unknown error",
                    timestamp=now,
                ))
            self.estimated_time_remaining_ms = eta_ms

    def set_artifacts(self, artifacts: dict[str, Any]) -> None:
        with self._lock:
            if self.is_terminal:
                raise InvalidTransitionError(
                    self._operation_id, self.status.value, "set_artifacts",
                )
            self._artifacts.update(copy.deepcopy(artifacts))

    def set_error_message(self, message: str) -> None:
        with self._lock:
            if self.is_terminal:
                raise InvalidTransitionError(
                    self._operation_id, self.status.value, "set_error_message",
                )
            self.error_message = message

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    def snapshot(self) -> OperationSnapshot:
        with self._lock:
            return OperationSnapshot(
                operation_id=self._operation_id,
                operation_type=self._operation_type,
                status=self.status,
                total_items=self.total_items,
                processed_items=self.processed_items,
                successful_items=self.successful_items,
                failed_items=self.failed_items,
                progress=self.progress,
                created_at=self._created_at,
                start_time=self.start_time,
                end_time=self.end_time,
                estimated_time_remaining_ms=self.estimated_time_remaining_ms,
                errors=tuple(self._errors),
                initiated_by=self._initiated_by,
                error_message=self.error_message,
                params=copy.deepcopy(self._params),
                options=copy.deepcopy(self._options),
                artifacts=copy.deepcopy(self._artifacts),
            )

    def __repr__(self) -> str:
        return (
            f"OperationRecord({self._operation_id}, {self._operation_type.value}, "
            f"{self.status.value}, {self.processed_items}/{self.total_items})"
        )
