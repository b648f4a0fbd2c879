"""
bulkops.tasks -- executor protocol, registry, and built-in executors.

ZERO service/orchestrator imports in base.py.  The built-in executors talk
to collaborators only through the Protocols in ``ports.py``.
"""

from __future__ import annotations

from pathlib import Path

from bulkops_kernel.domain.clock import Clock

from bulkops.tasks.base import (
    BaseItemExecutor,
    ExecutionContext,
    ExecutorRegistry,
    FunctionExecutor,
    ItemCollector,
    ItemExecutor,
)
from bulkops.tasks.maintenance_tasks import (
    ArchiveOldDataExecutor,
    CacheClearExecutor,
    DataCleanupExecutor,
    SessionCleanupExecutor,
)
from bulkops.tasks.ports import (
    ArchiveStore,
    CacheBackend,
    FileStore,
    SessionStore,
    UserDirectory,
)
from bulkops.tasks.user_tasks import (
    DeleteExecutor,
    ExportExecutor,
    ImportExecutor,
    RoleUpdateExecutor,
    StatusUpdateExecutor,
    VerificationUpdateExecutor,
)

__all__ = [
    "ArchiveOldDataExecutor",
    "BaseItemExecutor",
    "CacheClearExecutor",
    "DataCleanupExecutor",
    "DeleteExecutor",
    "ExecutionContext",
    "ExecutorRegistry",
    "ExportExecutor",
    "FunctionExecutor",
    "ImportExecutor",
    "ItemCollector",
    "ItemExecutor",
    "RoleUpdateExecutor",
    "SessionCleanupExecutor",
    "StatusUpdateExecutor",
    "VerificationUpdateExecutor",
    "default_executor_registry",
]


def default_executor_registry(
    users: UserDirectory | None = None,
    sessions: SessionStore | None = None,
    file_store: FileStore | None = None,
    cache: CacheBackend | None = None,
    archive: ArchiveStore | None = None,
    export_dir: Path | str | None = None,
    allowed_roles: tuple[str, ...] | None = None,
    clock: Clock | None = None,
) -> ExecutorRegistry:
    """Registry pre-loaded with every built-in executor whose ports are given."""
    registry = ExecutorRegistry()
    if users is not None:
        registry.register(RoleUpdateExecutor(users))
        registry.register(StatusUpdateExecutor(users))
        registry.register(VerificationUpdateExecutor(users))
        registry.register(DeleteExecutor(users))
        registry.register(ExportExecutor(users, export_dir))
        if allowed_roles:
            registry.register(ImportExecutor(users, allowed_roles=allowed_roles))
        else:
            registry.register(ImportExecutor(users))
    if sessions is not None:
        registry.register(SessionCleanupExecutor(sessions, clock=clock))
        if file_store is not None:
            registry.register(DataCleanupExecutor(sessions, file_store, clock=clock))
    if cache is not None:
        registry.register(CacheClearExecutor(cache))
    if archive is not None:
        registry.register(ArchiveOldDataExecutor(archive, clock=clock))
    return registry
