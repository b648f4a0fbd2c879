"""
bulkops.services -- runtime pieces the orchestrator composes.

    progress    ProgressTracker and Subscription (bounded push delivery)
    runner      OperationRunner and CancellationToken
    history     terminal-operation stores (in-memory and SQLAlchemy)
    statistics  SystemStatisticsReporter
    poller      StatusPoller
"""

from bulkops.services.history import (
    InMemoryHistoryStore,
    OperationHistoryStore,
    SqlHistoryStore,
)
from bulkops.services.poller import StatusPoller
from bulkops.services.progress import ProgressCallback, ProgressTracker, Subscription
from bulkops.services.runner import CancellationToken, OperationRunner
from bulkops.services.statistics import (
    FunctionSource,
    StatisticsSource,
    SystemStatisticsReporter,
)

__all__ = [
    "CancellationToken",
    "FunctionSource",
    "InMemoryHistoryStore",
    "OperationHistoryStore",
    "OperationRunner",
    "ProgressCallback",
    "ProgressTracker",
    "SqlHistoryStore",
    "StatisticsSource",
    "StatusPoller",
    "Subscription",
    "SystemStatisticsReporter",
]
