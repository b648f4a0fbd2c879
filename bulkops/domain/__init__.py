"""
bulkops.domain -- Pure types, the operation record, and validation.

ZERO I/O.  Snapshots, reports and requests are frozen dataclasses.
"""

from bulkops.domain.progress import EtaEstimator, compute_progress
from bulkops.domain.record import OperationRecord, outcome_status
from bulkops.domain.types import (
    TERMINAL_STATUSES,
    HistoryFilter,
    HistoryPage,
    ItemErrorEntry,
    ItemResult,
    OperationReport,
    OperationRequest,
    OperationSnapshot,
    OperationStatus,
    OperationType,
    SystemStatisticsSnapshot,
)
from bulkops.domain.validation import validate_request

__all__ = [
    "TERMINAL_STATUSES",
    "EtaEstimator",
    "HistoryFilter",
    "HistoryPage",
    "ItemErrorEntry",
    "ItemResult",
    "OperationRecord",
    "OperationReport",
    "OperationRequest",
    "OperationSnapshot",
    "OperationStatus",
    "OperationType",
    "SystemStatisticsSnapshot",
    "compute_progress",
    "outcome_status",
    "validate_request",
]
