"""
ORM models for the operation history store.

Contract:
    OperationModel holds one terminal operation snapshot;
    OperationErrorModel holds its per-item failures.  ``to_snapshot()`` /
    ``from_snapshot()`` convert to and from the frozen domain type.

Architecture: bulkops/models.  Imports from bulkops_kernel.db.base only
(domain types are imported lazily inside the conversion methods).

Invariants enforced:
    - ``operation_id`` is UNIQUE.
    - ``sequence`` increases with insertion order; history pages sort by it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bulkops_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from bulkops.domain.types import ItemErrorEntry, OperationSnapshot


class OperationModel(Base):
    """Terminal operation summary."""

    __tablename__ = "bulk_operations"

    __table_args__ = (
        Index("ix_bulk_operations_sequence", "sequence"),
        Index("ix_bulk_operations_type_status", "operation_type", "status"),
        Index("ix_bulk_operations_start_time", "start_time"),
    )

    operation_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    total_items: Mapped[int] = mapped_column(default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    successful_items: Mapped[int] = mapped_column(default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    progress: Mapped[int] = mapped_column(default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    initiated_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    options: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    artifacts: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    errors: Mapped[list["OperationErrorModel"]] = relationship(
        "OperationErrorModel",
        back_populates="operation",
        cascade="all, delete-orphan",
        order_by="OperationErrorModel.item_index",
        lazy="selectin",
    )

    def to_snapshot(self) -> OperationSnapshot:
        from bulkops.domain.types import (
            OperationSnapshot,
            OperationStatus,
            OperationType,
        )

        return OperationSnapshot(
            operation_id=self.operation_id,
            operation_type=OperationType(self.operation_type),
            status=OperationStatus(self.status),
            total_items=self.total_items,
            processed_items=self.processed_items,
            successful_items=self.successful_items,
            failed_items=self.failed_items,
            progress=self.progress,
            created_at=self.created_at,
            start_time=self.start_time,
            end_time=self.end_time,
            estimated_time_remaining_ms=(
                None if self.status == OperationStatus.CANCELLED.value else 0
            ),
            errors=tuple(e.to_entry() for e in self.errors),
            initiated_by=self.initiated_by,
            error_message=self.error_message,
            params=self.params or {},
            options=self.options or {},
            artifacts=self.artifacts or {},
        )

    @classmethod
    def from_snapshot(cls, snapshot: OperationSnapshot, sequence: int) -> OperationModel:
        return cls(
            operation_id=snapshot.operation_id,
            sequence=sequence,
            operation_type=snapshot.operation_type.value,
            status=snapshot.status.value,
            total_items=snapshot.total_items,
            processed_items=snapshot.processed_items,
            successful_items=snapshot.successful_items,
            failed_items=snapshot.failed_items,
            progress=snapshot.progress,
            created_at=snapshot.created_at,
            start_time=snapshot.start_time,
            end_time=snapshot.end_time,
            initiated_by=snapshot.initiated_by,
            error_message=snapshot.error_message,
            params=snapshot.params or None,
            options=snapshot.options or None,
            artifacts=snapshot.artifacts or None,
            errors=[OperationErrorModel.from_entry(e) for e in snapshot.errors],
        )


class OperationErrorModel(Base):
    """One failed item of a stored operation."""

    __tablename__ = "bulk_operation_errors"

    __table_args__ = (
        Index("ix_bulk_operation_errors_operation", "operation_ref"),
    )

    operation_ref: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bulk_operations.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_index: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[str] = mapped_column(String(200), nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    operation: Mapped["OperationModel"] = relationship(
        "OperationModel",
        back_populates="errors",
        foreign_keys=[operation_ref],
    )

    def to_entry(self) -> ItemErrorEntry:
        from bulkops.domain.types import ItemErrorEntry

        return ItemErrorEntry(
            item_index=self.item_index,
            item_id=self.item_id,
            error=self.error,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_entry(cls, entry: ItemErrorEntry) -> OperationErrorModel:
        return cls(
            item_index=entry.item_index,
            item_id=entry.item_id,
            error=entry.error,
            timestamp=entry.timestamp,
        )
