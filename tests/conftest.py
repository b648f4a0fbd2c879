"""
Pytest fixtures for the bulkops test suite.

Provides:
- In-memory fakes for the collaborator ports (users, sessions, files,
  caches, archive) so the built-in executors run for real
- A deterministic clock and an orchestrator started per test
- In-memory SQLite engine/session factory for history store tests
- Structured log capture
"""

import json
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import bulkops.models  # noqa: F401  (register tables on Base.metadata)
from bulkops_config import BulkOpsConfig, ProgressSettings
from bulkops_kernel.db.engine import create_tables, drop_tables
from bulkops_kernel.domain.clock import DeterministicClock
from bulkops_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from bulkops.orchestrator import Orchestrator
from bulkops.tasks import default_executor_registry

FIXED_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakeUserDirectory:
    """Dict-backed UserDirectory.  ``broken`` ids raise on every call."""

    def __init__(self, users: dict[str, dict[str, Any]] | None = None):
        self.users = {k: dict(v) for k, v in (users or {}).items()}
        self.broken: set[str] = set()
        self.created: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._next_id = 1

    def _check(self, user_id: str) -> None:
        if user_id in self.broken:
            raise RuntimeError(f"directory unavailable for {user_id}")

    def get_user(self, user_id):
        self._check(user_id)
        user = self.users.get(user_id)
        return dict(user) if user is not None else None

    def update_role(self, user_id, role):
        self._check(user_id)
        with self._lock:
            if user_id not in self.users:
                return False
            self.users[user_id]["role"] = role
            return True

    def set_active(self, user_id, is_active):
        self._check(user_id)
        with self._lock:
            if user_id not in self.users:
                return False
            self.users[user_id]["is_active"] = is_active
            return True

    def set_verified(self, user_id, is_verified):
        self._check(user_id)
        with self._lock:
            if user_id not in self.users:
                return False
            self.users[user_id]["is_verified"] = is_verified
            return True

    def delete_user(self, user_id):
        self._check(user_id)
        with self._lock:
            return self.users.pop(user_id, None) is not None

    def create_user(self, record):
        with self._lock:
            user_id = f"new-{self._next_id}"
            self._next_id += 1
            self.users[user_id] = dict(record)
            self.created.append(dict(record))
            return user_id


class FakeSessionStore:
    def __init__(self, sessions: dict[str, datetime] | None = None):
        self.sessions = dict(sessions or {})

    def list_expired(self, older_than):
        return sorted(s for s, seen in self.sessions.items() if seen < older_than)

    def delete(self, session_id):
        return self.sessions.pop(session_id, None) is not None


class FakeFileStore:
    def __init__(
        self,
        temp: dict[str, datetime] | None = None,
        logs: dict[str, datetime] | None = None,
    ):
        self.temp = dict(temp or {})
        self.logs = dict(logs or {})
        self.removed: list[str] = []

    def list_temp_files(self, older_than):
        return sorted(f for f, ts in self.temp.items() if ts < older_than)

    def list_log_files(self, older_than):
        return sorted(f for f, ts in self.logs.items() if ts < older_than)

    def remove(self, file_id):
        for bucket in (self.temp, self.logs):
            if bucket.pop(file_id, None) is not None:
                self.removed.append(file_id)
                return True
        return False


class FakeCacheBackend:
    def __init__(self, sizes: dict[str, int] | None = None):
        self.sizes = dict(sizes or {})

    def cache_names(self):
        return list(self.sizes)

    def clear(self, name):
        freed = self.sizes.get(name, 0)
        self.sizes[name] = 0
        return freed


class FakeArchiveStore:
    def __init__(self, records: dict[str, dict[str, datetime]] | None = None):
        self.records = {k: dict(v) for k, v in (records or {}).items()}
        self.archived: list[tuple[str, str]] = []

    def list_archivable(self, kind, older_than):
        return sorted(
            rid for rid, ts in self.records.get(kind, {}).items() if ts < older_than
        )

    def archive(self, kind, record_id):
        if self.records.get(kind, {}).pop(record_id, None) is None:
            return False
        self.archived.append((kind, record_id))
        return True


# =============================================================================
# Helpers
# =============================================================================


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def eventually():
    """Expose ``wait_until`` to test modules."""
    return wait_until


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture bulkops logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            ...
            logs = captured_logs()
            assert any(r["message"] == "operation_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("bulkops")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_TIME)


@pytest.fixture
def users():
    return FakeUserDirectory({
        f"u{i}": {
            "email": f"user{i}@example.com",
            "name": f"User {i}",
            "role": "Regular User",
            "is_active": True,
            "is_verified": False,
        }
        for i in range(1, 6)
    })


@pytest.fixture
def sessions():
    return FakeSessionStore({
        "s-old-1": FIXED_TIME - timedelta(days=45),
        "s-old-2": FIXED_TIME - timedelta(days=31),
        "s-fresh": FIXED_TIME - timedelta(days=2),
    })


@pytest.fixture
def file_store():
    return FakeFileStore(
        temp={
            "tmp/upload-1": FIXED_TIME - timedelta(days=40),
            "tmp/upload-2": FIXED_TIME - timedelta(hours=3),
        },
        logs={"logs/app.log.1": FIXED_TIME - timedelta(days=90)},
    )


@pytest.fixture
def cache():
    return FakeCacheBackend({"user": 2048, "session": 512, "application": 4096})


@pytest.fixture
def archive():
    return FakeArchiveStore({
        "user": {"old-user": FIXED_TIME - timedelta(days=500)},
        "project": {
            "old-project": FIXED_TIME - timedelta(days=400),
            "new-project": FIXED_TIME - timedelta(days=10),
        },
        "note": {"old-note": FIXED_TIME - timedelta(days=370)},
    })


@pytest.fixture
def export_dir(tmp_path):
    return tmp_path / "exports"


@pytest.fixture
def registry(users, sessions, file_store, cache, archive, export_dir, clock):
    return default_executor_registry(
        users=users,
        sessions=sessions,
        file_store=file_store,
        cache=cache,
        archive=archive,
        export_dir=export_dir,
        clock=clock,
    )


@pytest.fixture
def config():
    return BulkOpsConfig(progress=ProgressSettings(callback_timeout_seconds=0.5))


@pytest.fixture
def orchestrator(registry, config, clock):
    orch = Orchestrator(registry, config=config, clock=clock)
    orch.start()
    yield orch
    orch.stop(timeout=5.0)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)
