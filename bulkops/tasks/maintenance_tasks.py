"""
System maintenance executors: data cleanup, session cleanup, cache clear,
archive old data.

All four can gather their own item set (``collect_items``) from the
caller's options, so the orchestrator can run them through
``submit_collected`` without the caller knowing individual ids.  Item ids
carry a ``kind:`` prefix where one executor handles several kinds.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from bulkops_kernel.domain.clock import Clock, SystemClock

from bulkops.domain.types import ItemResult, OperationType
from bulkops.tasks.base import BaseItemExecutor, ExecutionContext
from bulkops.tasks.ports import ArchiveStore, CacheBackend, FileStore, SessionStore

DEFAULT_CLEANUP_DAYS = 30
DEFAULT_ARCHIVE_MONTHS = 12
_DAYS_PER_MONTH = 30


def _split_key(item_id: str) -> tuple[str, str]:
    kind, sep, ident = item_id.partition(":")
    if not sep or not ident:
        return "", item_id
    return kind, ident


def _cutoff_days(clock: Clock, options: dict[str, Any]) -> datetime:
    days = options.get("older_than_days", DEFAULT_CLEANUP_DAYS)
    return clock.now() - timedelta(days=days)


class DataCleanupExecutor(BaseItemExecutor):
    """Remove orphaned sessions, temp files and old log files.

    options:
        cleanup_sessions, cleanup_temp_files, cleanup_old_logs (default True)
        older_than_days (default 30)
    """

    operation_type = OperationType.DATA_CLEANUP
    description = "Orphaned data cleanup"

    def __init__(
        self,
        sessions: SessionStore,
        file_store: FileStore,
        clock: Clock | None = None,
    ):
        self._sessions = sessions
        self._files = file_store
        self._clock = clock or SystemClock()

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]:
        cutoff = _cutoff_days(self._clock, options)
        items: list[str] = []
        if options.get("cleanup_sessions", True):
            items.extend(f"session:{s}" for s in self._sessions.list_expired(cutoff))
        if options.get("cleanup_temp_files", True):
            items.extend(f"temp:{f}" for f in self._files.list_temp_files(cutoff))
        if options.get("cleanup_old_logs", True):
            items.extend(f"log:{f}" for f in self._files.list_log_files(cutoff))
        return tuple(items)

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        kind, ident = _split_key(item_id)
        if kind == "session":
            removed = self._sessions.delete(ident)
        elif kind in ("temp", "log"):
            removed = self._files.remove(ident)
        else:
            return ItemResult.fail(f"Unknown cleanup item kind: {item_id}")
        if not removed:
            return ItemResult.fail("Already removed")
        return ItemResult.ok(kind=kind)


class SessionCleanupExecutor(BaseItemExecutor):
    """Delete expired login sessions (items are bare session ids)."""

    operation_type = OperationType.SESSION_CLEANUP
    description = "Expired session cleanup"

    def __init__(self, sessions: SessionStore, clock: Clock | None = None):
        self._sessions = sessions
        self._clock = clock or SystemClock()

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]:
        return tuple(self._sessions.list_expired(_cutoff_days(self._clock, options)))

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        if not self._sessions.delete(item_id):
            return ItemResult.fail("Session not found")
        return ItemResult.ok()


class CacheClearExecutor(BaseItemExecutor):
    """Clear named caches and total the bytes freed.

    options:
        clear_user_cache, clear_session_cache, clear_application_cache
        (default True) select the ``user``, ``session`` and ``application``
        caches when items are collected.

    artifacts:
        bytes_freed, cleared_caches.
    """

    operation_type = OperationType.CACHE_CLEAR
    description = "Cache clear"

    _OPTION_TO_CACHE = (
        ("clear_user_cache", "user"),
        ("clear_session_cache", "session"),
        ("clear_application_cache", "application"),
    )

    def __init__(self, cache: CacheBackend):
        self._cache = cache

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]:
        available = set(self._cache.cache_names())
        return tuple(
            name for option, name in self._OPTION_TO_CACHE
            if options.get(option, True) and name in available
        )

    def prepare(self, context: ExecutionContext) -> None:
        context.state["known"] = set(self._cache.cache_names())
        context.artifacts["bytes_freed"] = 0
        context.artifacts["cleared_caches"] = []

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        if item_id not in context.state["known"]:
            return ItemResult.fail(f"Unknown cache '{item_id}'")
        freed = self._cache.clear(item_id)
        context.artifacts["bytes_freed"] += freed
        context.artifacts["cleared_caches"].append(item_id)
        return ItemResult.ok(bytes_freed=freed)


class ArchiveOldDataExecutor(BaseItemExecutor):
    """Move old records into the archive store.

    options:
        older_than_months (default 12)
        include_inactive_users, include_old_projects, include_old_notes
        (default True)
    """

    operation_type = OperationType.ARCHIVE_OLD_DATA
    description = "Archive old data"

    _OPTION_TO_KIND = (
        ("include_inactive_users", "user"),
        ("include_old_projects", "project"),
        ("include_old_notes", "note"),
    )

    def __init__(self, archive: ArchiveStore, clock: Clock | None = None):
        self._archive = archive
        self._clock = clock or SystemClock()

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]:
        months = options.get("older_than_months", DEFAULT_ARCHIVE_MONTHS)
        cutoff = self._clock.now() - timedelta(days=months * _DAYS_PER_MONTH)
        items: list[str] = []
        for option, kind in self._OPTION_TO_KIND:
            if options.get(option, True):
                items.extend(
                    f"{kind}:{rid}"
                    for rid in self._archive.list_archivable(kind, cutoff)
                )
        return tuple(items)

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        kind, ident = _split_key(item_id)
        if kind not in ("user", "project", "note"):
            return ItemResult.fail(f"Unknown archive item kind: {item_id}")
        if not self._archive.archive(kind, ident):
            return ItemResult.fail(f"{kind.capitalize()} not found")
        return ItemResult.ok(kind=kind)
