"""
bulkops.domain.types -- Pure frozen dataclasses for the orchestrator.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  Everything handed to a caller (snapshots, reports,
history pages, statistics) is one of these types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


# =============================================================================
# Enums
# =============================================================================


class OperationType(str, Enum):
    """Closed set of bulk actions the orchestrator accepts."""

    ROLE_UPDATE = "role_update"
    STATUS_UPDATE = "status_update"
    VERIFICATION_UPDATE = "verification_update"
    DELETE = "delete"
    EXPORT = "export"
    IMPORT = "import"
    DATA_CLEANUP = "data_cleanup"
    SESSION_CLEANUP = "session_cleanup"
    CACHE_CLEAR = "cache_clear"
    ARCHIVE_OLD_DATA = "archive_old_data"

    @classmethod
    def parse(cls, value: OperationType | str) -> OperationType:
        """Accept an enum member or its string value.

        Raises:
            ValueError: If the value is not a known type.
        """
        if isinstance(value, cls):
            return value
        return cls(value)


class OperationStatus(str, Enum):
    """Operation lifecycle status."""

    PENDING = "pending"  # Registered, runner not started
    IN_PROGRESS = "in_progress"  # Runner dispatching items
    COMPLETED = "completed"  # Every item succeeded
    PARTIAL_SUCCESS = "partial_success"  # Some, not all, items failed
    FAILED = "failed"  # Every item failed, or executor unavailable
    CANCELLED = "cancelled"  # Stopped at an item boundary on request

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[OperationStatus] = frozenset({
    OperationStatus.COMPLETED,
    OperationStatus.PARTIAL_SUCCESS,
    OperationStatus.FAILED,
    OperationStatus.CANCELLED,
})


# =============================================================================
# Requests and item results
# =============================================================================


@dataclass(frozen=True)
class OperationRequest:
    """Immutable submission input.  Not persisted."""

    operation_type: OperationType | str
    item_ids: tuple[str, ...]
    params: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    initiated_by: str | None = None
    correlation_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> OperationRequest:
        """Build a request from the wire shape ``{type, itemIds, params, options}``.

        Structural problems (missing keys, wrong container types) are left
        for validation so the caller sees every problem at once.
        """
        item_ids = payload.get("itemIds", payload.get("item_ids"))
        if isinstance(item_ids, (list, tuple)):
            item_ids = tuple(item_ids)
        return cls(
            operation_type=payload.get("type", payload.get("operation_type", "")),
            item_ids=item_ids,  # type: ignore[arg-type]
            params=payload.get("params") or {},
            options=payload.get("options") or {},
            initiated_by=payload.get("initiatedBy", payload.get("initiated_by")),
            correlation_id=payload.get("correlationId"),
        )


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one executor call for one item."""

    success: bool
    error: str | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def ok(cls, **data: Any) -> ItemResult:
        return cls(success=True, data=data or None)

    @classmethod
    def fail(cls, error: str) -> ItemResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ItemErrorEntry:
    """One recorded item failure.  ``item_index`` is 0-based."""

    item_index: int
    item_id: str
    error: str
    timestamp: datetime


# =============================================================================
# Snapshots and reports
# =============================================================================


@dataclass(frozen=True)
class OperationSnapshot:
    """Immutable, point-in-time copy of an operation record."""

    operation_id: str
    operation_type: OperationType
    status: OperationStatus
    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    progress: int
    created_at: datetime
    start_time: datetime | None = None
    end_time: datetime | None = None
    estimated_time_remaining_ms: int | None = None
    errors: tuple[ItemErrorEntry, ...] = ()
    initiated_by: str | None = None
    error_message: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    artifacts: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> int | None:
        if self.start_time is None or self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)


@dataclass(frozen=True)
class OperationReport:
    """Detailed report for a terminal operation."""

    summary: OperationSnapshot
    errors: tuple[ItemErrorEntry, ...]
    duration_ms: int | None
    duration: str | None
    artifacts: dict[str, Any] = field(default_factory=dict)

    @property
    def operation_id(self) -> str:
        return self.summary.operation_id


def format_duration(duration_ms: int | None) -> str | None:
    """Render milliseconds as ``"2m 34s"`` / ``"1h 5m 0s"`` / ``"850ms"``."""
    if duration_ms is None:
        return None
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    total_seconds = duration_ms // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


# =============================================================================
# History queries
# =============================================================================


@dataclass(frozen=True)
class HistoryFilter:
    """Filter for terminal-operation history queries.  All fields optional."""

    operation_type: OperationType | None = None
    status: OperationStatus | None = None
    started_after: datetime | None = None
    started_before: datetime | None = None
    initiated_by: str | None = None

    def matches(self, snapshot: OperationSnapshot) -> bool:
        if self.operation_type is not None and snapshot.operation_type != self.operation_type:
            return False
        if self.status is not None and snapshot.status != self.status:
            return False
        if self.initiated_by is not None and snapshot.initiated_by != self.initiated_by:
            return False
        started = snapshot.start_time or snapshot.created_at
        if self.started_after is not None and started < self.started_after:
            return False
        if self.started_before is not None and started > self.started_before:
            return False
        return True


@dataclass(frozen=True)
class HistoryPage:
    """One page of history results.  ``page`` is 1-based."""

    items: tuple[OperationSnapshot, ...]
    page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        if self.total_items == 0:
            return 0
        return (self.total_items + self.page_size - 1) // self.page_size


# =============================================================================
# System statistics
# =============================================================================


@dataclass(frozen=True)
class SystemStatisticsSnapshot:
    """Point-in-time aggregation of system figures, cached by the reporter."""

    users: dict[str, Any]
    data: dict[str, Any]
    storage: dict[str, Any]
    performance: dict[str, Any]
    generated_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return max(0.0, (now - self.generated_at).total_seconds())
