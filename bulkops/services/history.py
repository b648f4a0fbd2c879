"""
Operation history stores -- bounded retention of terminal snapshots.

Contract:
    ``add()`` stores a terminal snapshot, evicting the oldest entries once
    ``max_entries`` is exceeded.  ``query()`` returns newest-first pages
    filtered by ``HistoryFilter``.

Two implementations share the same surface:
    - InMemoryHistoryStore: insertion-ordered dict, process lifetime only.
    - SqlHistoryStore: SQLAlchemy ORM rows in ``bulk_operations``.
      Reporting store only; nothing is replayed from it on startup.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from bulkops_kernel.db.engine import session_scope
from bulkops_kernel.logging_config import get_logger

from bulkops.domain.types import HistoryFilter, HistoryPage, OperationSnapshot
from bulkops.models.operation import OperationModel

logger = get_logger("history")


class OperationHistoryStore(Protocol):
    """Storage contract for terminal operations."""

    def add(self, snapshot: OperationSnapshot) -> None: ...

    def get(self, operation_id: str) -> OperationSnapshot | None: ...

    def query(
        self,
        history_filter: HistoryFilter | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> HistoryPage: ...

    def __len__(self) -> int: ...


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")


def _check_terminal(snapshot: OperationSnapshot) -> None:
    if not snapshot.is_terminal:
        raise ValueError(
            f"Only terminal operations are stored; {snapshot.operation_id} "
            f"is {snapshot.status.value}"
        )


# =============================================================================
# In-memory
# =============================================================================


class InMemoryHistoryStore:
    """History kept in process memory, oldest evicted first."""

    def __init__(self, max_entries: int = 500):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._entries: OrderedDict[str, OperationSnapshot] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, snapshot: OperationSnapshot) -> None:
        _check_terminal(snapshot)
        with self._lock:
            self._entries.pop(snapshot.operation_id, None)
            self._entries[snapshot.operation_id] = snapshot
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("history_evicted", extra={"operation_id": evicted})

    def get(self, operation_id: str) -> OperationSnapshot | None:
        with self._lock:
            return self._entries.get(operation_id)

    def query(
        self,
        history_filter: HistoryFilter | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> HistoryPage:
        _check_page(page, page_size)
        history_filter = history_filter or HistoryFilter()
        with self._lock:
            matched = [
                s for s in reversed(self._entries.values())
                if history_filter.matches(s)
            ]
        start = (page - 1) * page_size
        return HistoryPage(
            items=tuple(matched[start:start + page_size]),
            page=page,
            page_size=page_size,
            total_items=len(matched),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# SQLAlchemy
# =============================================================================


def _as_utc(value: datetime) -> datetime:
    # SQLite stores datetimes without offset; compare in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SqlHistoryStore:
    """History persisted through the ORM models in ``bulkops.models``.

    Each call opens its own session from ``session_factory`` so the store
    can be shared by the orchestrator's worker threads.
    """

    def __init__(self, session_factory: sessionmaker[Session], max_entries: int = 500):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._factory = session_factory
        self._max_entries = max_entries
        self._write_lock = threading.Lock()

    def add(self, snapshot: OperationSnapshot) -> None:
        _check_terminal(snapshot)
        with self._write_lock, session_scope(self._factory) as session:
            existing = session.scalars(
                select(OperationModel).where(
                    OperationModel.operation_id == snapshot.operation_id,
                )
            ).one_or_none()
            if existing is not None:
                session.delete(existing)
                session.flush()

            last = session.scalar(select(func.max(OperationModel.sequence)))
            session.add(OperationModel.from_snapshot(snapshot, (last or 0) + 1))
            session.flush()
            self._prune(session)

    def _prune(self, session: Session) -> None:
        count = session.scalar(select(func.count(OperationModel.id))) or 0
        excess = count - self._max_entries
        if excess <= 0:
            return
        oldest = session.scalars(
            select(OperationModel).order_by(OperationModel.sequence).limit(excess)
        ).all()
        for row in oldest:
            session.delete(row)
        logger.debug("history_pruned", extra={"removed": len(oldest)})

    def get(self, operation_id: str) -> OperationSnapshot | None:
        with session_scope(self._factory) as session:
            row = session.scalars(
                select(OperationModel).where(
                    OperationModel.operation_id == operation_id,
                )
            ).one_or_none()
            return row.to_snapshot() if row is not None else None

    def query(
        self,
        history_filter: HistoryFilter | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> HistoryPage:
        _check_page(page, page_size)
        stmt = select(OperationModel)
        f = history_filter or HistoryFilter()
        if f.operation_type is not None:
            stmt = stmt.where(OperationModel.operation_type == f.operation_type.value)
        if f.status is not None:
            stmt = stmt.where(OperationModel.status == f.status.value)
        if f.initiated_by is not None:
            stmt = stmt.where(OperationModel.initiated_by == f.initiated_by)
        started = func.coalesce(OperationModel.start_time, OperationModel.created_at)
        if f.started_after is not None:
            stmt = stmt.where(started >= _as_utc(f.started_after))
        if f.started_before is not None:
            stmt = stmt.where(started <= _as_utc(f.started_before))

        with session_scope(self._factory) as session:
            total = session.scalar(
                select(func.count()).select_from(stmt.subquery())
            ) or 0
            rows = session.scalars(
                stmt.order_by(OperationModel.sequence.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            items = tuple(row.to_snapshot() for row in rows)

        return HistoryPage(
            items=items,
            page=page,
            page_size=page_size,
            total_items=total,
        )

    def __len__(self) -> int:
        with session_scope(self._factory) as session:
            return session.scalar(select(func.count(OperationModel.id))) or 0
