"""
Tests for the in-memory and SQL history stores.

Both stores are run through the same behavioural tests via the
parametrized ``store`` fixture.
"""

from datetime import datetime, timedelta, timezone

import pytest

from bulkops.domain.types import (
    HistoryFilter,
    ItemErrorEntry,
    OperationSnapshot,
    OperationStatus,
    OperationType,
)
from bulkops.services.history import InMemoryHistoryStore, SqlHistoryStore

T0 = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


def _snapshot(n: int, **overrides) -> OperationSnapshot:
    values = dict(
        operation_id=f"op_{n:03d}",
        operation_type=OperationType.DELETE,
        status=OperationStatus.COMPLETED,
        total_items=2,
        processed_items=2,
        successful_items=2,
        failed_items=0,
        progress=100,
        created_at=T0 + timedelta(minutes=n),
        start_time=T0 + timedelta(minutes=n),
        end_time=T0 + timedelta(minutes=n, seconds=30),
        estimated_time_remaining_ms=0,
        initiated_by="admin-1",
    )
    values.update(overrides)
    return OperationSnapshot(**values)


@pytest.fixture(params=["memory", "sql"])
def make_store(request, session_factory):
    def _make(max_entries=500):
        if request.param == "memory":
            return InMemoryHistoryStore(max_entries=max_entries)
        return SqlHistoryStore(session_factory, max_entries=max_entries)
    return _make


@pytest.fixture
def store(make_store):
    return make_store()


class TestAddAndGet:
    def test_round_trip_preserves_fields(self, store):
        snap = _snapshot(
            1,
            status=OperationStatus.PARTIAL_SUCCESS,
            successful_items=1,
            failed_items=1,
            errors=(ItemErrorEntry(1, "u2", "User not found", T0),),
            params={"role": "Admin"},
            artifacts={"bytes_freed": 10},
            error_message=None,
        )
        store.add(snap)
        assert store.get("op_001") == snap
        assert len(store) == 1

    def test_cancelled_keeps_null_eta(self, store):
        store.add(_snapshot(
            1, status=OperationStatus.CANCELLED, estimated_time_remaining_ms=None,
        ))
        assert store.get("op_001").estimated_time_remaining_ms is None

    def test_rejects_non_terminal(self, store):
        with pytest.raises(ValueError):
            store.add(_snapshot(1, status=OperationStatus.IN_PROGRESS, end_time=None))
        assert len(store) == 0

    def test_get_missing(self, store):
        assert store.get("op_nope") is None

    def test_re_adding_replaces(self, store):
        store.add(_snapshot(1))
        store.add(_snapshot(2))
        store.add(_snapshot(1, error_message="again"))
        assert len(store) == 2
        assert store.get("op_001").error_message == "again"
        # a replaced entry counts as the newest
        assert [s.operation_id for s in store.query().items] == ["op_001", "op_002"]


class TestRetention:
    def test_oldest_evicted(self, make_store):
        store = make_store(max_entries=3)
        for n in range(1, 6):
            store.add(_snapshot(n))
        assert len(store) == 3
        assert store.get("op_001") is None
        assert store.get("op_002") is None
        assert [s.operation_id for s in store.query().items] == [
            "op_005", "op_004", "op_003",
        ]

    def test_invalid_bound(self, make_store):
        with pytest.raises(ValueError):
            make_store(max_entries=0)


class TestQuery:
    @pytest.fixture
    def populated(self, store):
        store.add(_snapshot(1))
        store.add(_snapshot(2, operation_type=OperationType.EXPORT))
        store.add(_snapshot(
            3, status=OperationStatus.FAILED, successful_items=0, failed_items=2,
        ))
        store.add(_snapshot(4, initiated_by="admin-2"))
        store.add(_snapshot(5, operation_type=OperationType.EXPORT, start_time=None))
        return store

    def test_newest_first(self, populated):
        page = populated.query()
        assert [s.operation_id for s in page.items] == [
            "op_005", "op_004", "op_003", "op_002", "op_001",
        ]
        assert page.total_items == 5
        assert page.total_pages == 1

    def test_filter_by_type_and_status(self, populated):
        page = populated.query(HistoryFilter(operation_type=OperationType.EXPORT))
        assert [s.operation_id for s in page.items] == ["op_005", "op_002"]

        page = populated.query(HistoryFilter(status=OperationStatus.FAILED))
        assert [s.operation_id for s in page.items] == ["op_003"]

    def test_filter_by_initiator(self, populated):
        page = populated.query(HistoryFilter(initiated_by="admin-2"))
        assert [s.operation_id for s in page.items] == ["op_004"]

    def test_filter_by_date_range(self, populated):
        page = populated.query(HistoryFilter(
            started_after=T0 + timedelta(minutes=2),
            started_before=T0 + timedelta(minutes=4),
        ))
        assert [s.operation_id for s in page.items] == ["op_004", "op_003", "op_002"]

    def test_date_range_falls_back_to_created_at(self, populated):
        page = populated.query(HistoryFilter(started_after=T0 + timedelta(minutes=5)))
        assert [s.operation_id for s in page.items] == ["op_005"]

    def test_date_bounds_in_other_timezones(self, populated):
        plus_two = timezone(timedelta(hours=2))
        page = populated.query(HistoryFilter(
            started_after=(T0 + timedelta(minutes=4)).astimezone(plus_two),
        ))
        assert [s.operation_id for s in page.items] == ["op_005", "op_004"]

    def test_pagination(self, populated):
        first = populated.query(page=1, page_size=2)
        second = populated.query(page=2, page_size=2)
        third = populated.query(page=3, page_size=2)
        assert [s.operation_id for s in first.items] == ["op_005", "op_004"]
        assert [s.operation_id for s in second.items] == ["op_003", "op_002"]
        assert [s.operation_id for s in third.items] == ["op_001"]
        assert first.total_pages == 3
        assert third.total_items == 5

    def test_page_past_end_is_empty(self, populated):
        page = populated.query(page=9, page_size=2)
        assert page.items == ()
        assert page.total_items == 5

    @pytest.mark.parametrize("page, size", [(0, 10), (1, 0)])
    def test_bad_paging(self, populated, page, size):
        with pytest.raises(ValueError):
            populated.query(page=page, page_size=size)
