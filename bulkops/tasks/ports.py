"""
Collaborator ports used by the built-in executors.

The orchestrator never touches persistence directly; the hosting
application passes objects satisfying these Protocols to
``default_executor_registry()``.  Methods return ``False`` / ``None`` for
"not found" and raise for infrastructure failures.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class UserDirectory(Protocol):
    """User persistence collaborator."""

    def get_user(self, user_id: str) -> dict[str, Any] | None: ...

    def update_role(self, user_id: str, role: str) -> bool: ...

    def set_active(self, user_id: str, is_active: bool) -> bool: ...

    def set_verified(self, user_id: str, is_verified: bool) -> bool: ...

    def delete_user(self, user_id: str) -> bool: ...

    def create_user(self, record: dict[str, Any]) -> str: ...


class SessionStore(Protocol):
    """Login session collaborator."""

    def list_expired(self, older_than: datetime) -> list[str]: ...

    def delete(self, session_id: str) -> bool: ...


class FileStore(Protocol):
    """Temporary files and rotated logs."""

    def list_temp_files(self, older_than: datetime) -> list[str]: ...

    def list_log_files(self, older_than: datetime) -> list[str]: ...

    def remove(self, file_id: str) -> bool: ...


class CacheBackend(Protocol):
    """Application caches addressed by name."""

    def cache_names(self) -> list[str]: ...

    def clear(self, name: str) -> int:
        """Clear one cache and return the number of bytes freed."""
        ...


class ArchiveStore(Protocol):
    """Cold storage for old records."""

    def list_archivable(self, kind: str, older_than: datetime) -> list[str]: ...

    def archive(self, kind: str, record_id: str) -> bool: ...
