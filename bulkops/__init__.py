"""
bulkops -- bulk operation orchestration.

Submit a batch of per-item actions (role updates, deletes, exports,
maintenance jobs), run it in the background, observe its progress, cancel
it, and report on it afterwards.

Layers:
    bulkops.domain         frozen types, the operation record, validation
    bulkops.tasks          ItemExecutor protocol, registry, built-in executors
    bulkops.services       progress tracking, runner, history, statistics, poller
    bulkops.models         ORM models for the SQL history store
    bulkops.orchestrator   Orchestrator (composition root)
    bulkops.selection      SelectionManager (caller-local selection state)
    bulkops.api            OperationsAPI (dict-shaped transport adapter)
"""

from bulkops.api import OperationsAPI
from bulkops.domain.types import (
    HistoryFilter,
    HistoryPage,
    ItemResult,
    OperationReport,
    OperationRequest,
    OperationSnapshot,
    OperationStatus,
    OperationType,
    SystemStatisticsSnapshot,
)
from bulkops.orchestrator import Orchestrator
from bulkops.selection import SelectionManager
from bulkops.tasks import ExecutorRegistry, default_executor_registry

__all__ = [
    "ExecutorRegistry",
    "HistoryFilter",
    "HistoryPage",
    "ItemResult",
    "OperationReport",
    "OperationRequest",
    "OperationSnapshot",
    "OperationStatus",
    "OperationType",
    "OperationsAPI",
    "Orchestrator",
    "SelectionManager",
    "SystemStatisticsSnapshot",
    "default_executor_registry",
]
