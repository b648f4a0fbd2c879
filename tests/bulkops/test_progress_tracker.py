"""
Tests for ProgressTracker and Subscription: ordered delivery, ETA, and
disconnection of slow or failing subscribers.
"""

import threading
import time
from datetime import datetime, timezone

import pytest

from bulkops.domain.record import OperationRecord
from bulkops.domain.types import ItemResult, OperationStatus, OperationType
from bulkops.services.progress import ProgressTracker, Subscription

FIXED_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def record():
    return OperationRecord(
        OperationType.STATUS_UPDATE, ("u1", "u2", "u3", "u4"), FIXED_TIME,
    )


@pytest.fixture
def subscriptions():
    created = []

    def _make(callback, operation_id=None, name=None):
        sub = Subscription(callback, operation_id=operation_id, name=name)
        created.append(sub)
        return sub

    yield _make
    for sub in created:
        sub.close()


def _collector():
    seen = []
    return seen, seen.append


class TestOrderedDelivery:
    def test_every_change_delivered_in_order(self, record, clock, subscriptions):
        seen, callback = _collector()
        tracker = ProgressTracker(
            record, clock, subscriptions=[subscriptions(callback, record.operation_id)],
        )
        tracker.start()
        for i, item in enumerate(record.item_ids):
            tracker.record(i, item, ItemResult.ok(), duration_ms=10)
        tracker.finish(OperationStatus.COMPLETED)

        assert [s.status for s in seen] == (
            [OperationStatus.IN_PROGRESS] * 5 + [OperationStatus.COMPLETED]
        )
        processed = [s.processed_items for s in seen]
        assert processed == sorted(processed) == [0, 1, 2, 3, 4, 4]
        assert seen[-1].progress == 100

    def test_subscribe_after_start(self, record, clock, subscriptions):
        seen, callback = _collector()
        tracker = ProgressTracker(record, clock)
        tracker.start()
        tracker.subscribe(subscriptions(callback))
        tracker.record(0, "u1", ItemResult.fail("nope"), duration_ms=5)
        assert len(seen) == 1
        assert seen[0].errors[0].error == "nope"

    def test_eta_from_item_durations(self, record, clock):
        tracker = ProgressTracker(record, clock)
        tracker.start()
        snap = tracker.record(0, "u1", ItemResult.ok(), duration_ms=100)
        assert snap.estimated_time_remaining_ms == 300
        snap = tracker.record(1, "u2", ItemResult.ok(), duration_ms=100)
        assert snap.estimated_time_remaining_ms == 200

    def test_failed_item_logged(self, record, clock, captured_logs):
        tracker = ProgressTracker(record, clock)
        tracker.start()
        tracker.record(1, "u2", ItemResult.fail("User not found"), duration_ms=1)

        entries = [r for r in captured_logs() if r["message"] == "operation_item_failed"]
        assert len(entries) == 1
        assert entries[0]["item_id"] == "u2"
        assert entries[0]["item_index"] == 1
        assert entries[0]["error"] == "User not found"


class TestTerminal:
    def test_closed_after_finish(self, record, clock, subscriptions):
        per_op = subscriptions(lambda s: None, record.operation_id)
        global_sub = subscriptions(lambda s: None)
        tracker = ProgressTracker(record, clock, subscriptions=[per_op, global_sub])
        tracker.start()
        tracker.finish(OperationStatus.CANCELLED)

        assert tracker.closed
        assert not per_op.active
        assert per_op.drop_reason == "operation_finished"
        # listeners on every operation outlive a single one
        assert global_sub.active

    def test_nothing_delivered_after_terminal(self, record, clock, subscriptions):
        seen, callback = _collector()
        tracker = ProgressTracker(record, clock)
        tracker.start()
        tracker.finish(OperationStatus.CANCELLED)
        tracker.subscribe(subscriptions(callback))
        tracker._publish(record.snapshot())
        assert seen == []

    def test_on_terminal_runs_under_finish_lock(self, record, clock):
        lock = threading.Lock()
        observed = []

        def on_terminal(snapshot):
            observed.append((snapshot.status, lock.locked()))

        tracker = ProgressTracker(
            record, clock, on_terminal=on_terminal, finish_lock=lock,
        )
        tracker.start()
        tracker.finish(OperationStatus.FAILED, error_message="x")
        assert observed == [(OperationStatus.FAILED, True)]
        assert not lock.locked()

    def test_on_terminal_before_final_delivery(self, record, clock, subscriptions):
        order = []
        tracker = ProgressTracker(
            record,
            clock,
            subscriptions=[subscriptions(lambda s: order.append(("cb", s.status)))],
            on_terminal=lambda s: order.append(("terminal", s.status)),
        )
        tracker.start()
        tracker.finish(OperationStatus.COMPLETED)
        assert order[-2:] == [
            ("terminal", OperationStatus.COMPLETED),
            ("cb", OperationStatus.COMPLETED),
        ]


class TestSubscriberIsolation:
    def test_slow_subscriber_dropped(self, record, clock, subscriptions, captured_logs):
        release = threading.Event()
        fast_seen, fast_callback = _collector()
        slow_calls = []

        def slow(snapshot):
            slow_calls.append(snapshot.processed_items)
            release.wait(2.0)

        slow_sub = subscriptions(slow, name="slow")
        tracker = ProgressTracker(
            record,
            clock,
            callback_timeout=0.05,
            subscriptions=[slow_sub, subscriptions(fast_callback)],
        )
        try:
            tracker.start()
            tracker.record(0, "u1", ItemResult.ok(), duration_ms=1)
        finally:
            release.set()

        assert not slow_sub.active
        assert slow_sub.drop_reason == "timeout"
        assert slow_calls == [0]
        assert [s.processed_items for s in fast_seen] == [0, 1]

        dropped = [
            r for r in captured_logs() if r["message"] == "progress_subscriber_dropped"
        ]
        assert dropped[0]["reason"] == "timeout"
        assert dropped[0]["subscriber"] == "slow"

    def test_raising_subscriber_dropped(self, record, clock, subscriptions):
        fast_seen, fast_callback = _collector()
        calls = []

        def broken(snapshot):
            calls.append(snapshot)
            raise RuntimeError("listener bug")

        bad = subscriptions(broken)
        tracker = ProgressTracker(
            record, clock, subscriptions=[bad, subscriptions(fast_callback)],
        )
        tracker.start()
        tracker.record(0, "u1", ItemResult.ok(), duration_ms=1)
        tracker.finish(OperationStatus.PARTIAL_SUCCESS)

        assert len(calls) == 1
        assert bad.drop_reason == "error"
        assert len(fast_seen) == 3

    def test_closed_subscription_reports_closed(self, record):
        sub = Subscription(lambda s: None)
        sub.close()
        sub.close()
        assert sub.deliver(record.snapshot(), 0.1) == "closed"
        assert sub.drop_reason == "closed"

    def test_subscription_ids_unique(self):
        a, b = Subscription(lambda s: None), Subscription(lambda s: None)
        try:
            assert a.subscription_id != b.subscription_id
        finally:
            a.close()
            b.close()

    def test_exposes_its_operation_record(self, record, clock):
        tracker = ProgressTracker(record, clock)
        assert tracker.operation_record is record
        assert isinstance(tracker.operation_record, OperationRecord)


class TestSharedSubscription:
    def test_queued_deliveries_not_counted_against_timeout(self, clock, subscriptions):
        delivered = []
        lock = threading.Lock()

        def listener(snapshot):
            time.sleep(0.1)
            with lock:
                delivered.append(snapshot.operation_id)

        shared = subscriptions(listener, name="dashboard")
        records = [
            OperationRecord(OperationType.DELETE, (f"u{i}",), FIXED_TIME)
            for i in range(4)
        ]
        trackers = [
            ProgressTracker(r, clock, callback_timeout=0.3, subscriptions=[shared])
            for r in records
        ]
        threads = [threading.Thread(target=t.start) for t in trackers]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        assert shared.active
        assert shared.drop_reason is None
        assert sorted(delivered) == sorted(r.operation_id for r in records)

    def test_queued_delivery_closed_when_running_one_times_out(self, record):
        release = threading.Event()
        running = threading.Event()

        def hang(snapshot):
            running.set()
            release.wait(2.0)

        sub = Subscription(hang, name="stuck")
        outcomes = {}

        def deliver(key):
            outcomes[key] = sub.deliver(record.snapshot(), 0.1)

        first = threading.Thread(target=deliver, args=("first",))
        first.start()
        assert running.wait(2.0)
        second = threading.Thread(target=deliver, args=("second",))
        second.start()
        try:
            first.join(2.0)
            second.join(2.0)
        finally:
            release.set()
            sub.close()

        assert outcomes == {"first": "timeout", "second": "closed"}
        assert sub.drop_reason == "timeout"
