"""
Tests for OperationRunner: item isolation, executor setup failure,
cooperative cancellation at item boundaries, and finalization.
"""

from datetime import datetime, timezone

import pytest

from bulkops_kernel.exceptions import ExecutorUnavailableError, ItemError

from bulkops.domain.record import OperationRecord
from bulkops.domain.types import ItemResult, OperationStatus, OperationType
from bulkops.services.progress import ProgressTracker
from bulkops.services.runner import CancellationToken, OperationRunner
from bulkops.tasks.base import BaseItemExecutor

FIXED_TIME = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


class ScriptedExecutor(BaseItemExecutor):
    """Executor whose per-item behaviour is given as a dict of callables."""

    operation_type = OperationType.DELETE
    description = "scripted"

    def __init__(self, behaviour=None, prepare_error=None, finish_error=None):
        self.behaviour = behaviour or {}
        self.prepare_error = prepare_error
        self.finish_error = finish_error
        self.executed = []
        self.finished = False
        self.contexts = []

    def prepare(self, context):
        self.contexts.append(context)
        if self.prepare_error is not None:
            raise self.prepare_error

    def execute(self, item_id, context):
        self.executed.append(item_id)
        action = self.behaviour.get(item_id)
        if action is None:
            return ItemResult.ok()
        return action()

    def finish(self, context):
        self.finished = True
        context.artifacts["executed"] = len(self.executed)
        if self.finish_error is not None:
            raise self.finish_error


def _runner(executor, items=("a", "b", "c", "d"), clock=None, token=None):
    record = OperationRecord(OperationType.DELETE, tuple(items), FIXED_TIME)
    tracker = ProgressTracker(record, clock)
    return OperationRunner(tracker, executor, token=token, clock=clock)


def _raise(exc):
    def action():
        raise exc
    return action


class TestItemIsolation:
    def test_all_succeed(self, clock):
        executor = ScriptedExecutor()
        final = _runner(executor, clock=clock).run()

        assert final.status == OperationStatus.COMPLETED
        assert final.processed_items == final.successful_items == 4
        assert final.start_time == FIXED_TIME
        assert final.end_time == FIXED_TIME
        assert final.artifacts == {"executed": 4}
        assert executor.finished

    def test_exception_recorded_and_loop_continues(self, clock, captured_logs):
        executor = ScriptedExecutor({"b": _raise(RuntimeError("boom"))})
        final = _runner(executor, clock=clock).run()

        assert executor.executed == ["a", "b", "c", "d"]
        assert final.status == OperationStatus.PARTIAL_SUCCESS
        assert final.failed_items == 1
        assert final.errors[0].item_index == 1
        assert final.errors[0].item_id == "b"
        assert final.errors[0].error == "RuntimeError: boom"
        assert any(r["message"] == "operation_item_raised" for r in captured_logs())

    def test_item_error_uses_reason(self, clock):
        executor = ScriptedExecutor({"c": _raise(ItemError("c", "Locked by another job"))})
        final = _runner(executor, clock=clock).run()
        assert final.errors[0].error == "Locked by another job"

    def test_falsy_and_truthy_returns(self, clock):
        executor = ScriptedExecutor({"a": lambda: None, "b": lambda: True})
        final = _runner(executor, items=("a", "b"), clock=clock).run()
        assert final.successful_items == 1
        assert final.errors[0].error == "Executor returned no result"

    def test_every_item_failing_is_failed(self, clock):
        executor = ScriptedExecutor({
            "a": lambda: ItemResult.fail("x"), "b": lambda: ItemResult.fail("y"),
        })
        final = _runner(executor, items=("a", "b"), clock=clock).run()
        assert final.status == OperationStatus.FAILED
        assert final.error_message is None

    def test_context_carries_record_fields(self, clock):
        executor = ScriptedExecutor()
        runner = _runner(executor, clock=clock)
        runner.run()
        ctx = executor.contexts[0]
        assert ctx.operation_type == OperationType.DELETE
        assert ctx.as_of == FIXED_TIME
        assert ctx.operation_id.startswith("op_")


class TestExecutorSetupFailure:
    def test_unavailable_fails_with_zero_processed(self, clock, captured_logs):
        executor = ScriptedExecutor(
            prepare_error=ExecutorUnavailableError("delete", "directory offline"),
        )
        final = _runner(executor, clock=clock).run()

        assert final.status == OperationStatus.FAILED
        assert final.processed_items == 0
        assert final.total_items == 4
        assert final.error_message == (
            "Executor for 'delete' is unavailable: directory offline"
        )
        assert executor.executed == []
        assert not executor.finished
        assert any(
            r["message"] == "operation_executor_unavailable" for r in captured_logs()
        )

    def test_unexpected_prepare_error(self, clock):
        executor = ScriptedExecutor(prepare_error=ValueError("bad params"))
        final = _runner(executor, clock=clock).run()
        assert final.status == OperationStatus.FAILED
        assert final.error_message == "Executor setup failed: ValueError: bad params"


class TestCancellation:
    def test_token_is_idempotent(self):
        token = CancellationToken()
        assert token.cancel("first")
        assert not token.cancel("second")
        assert token.is_cancelled
        assert token.reason == "first"
        assert token.wait(0)

    def test_cancel_observed_at_next_boundary(self, clock):
        token = CancellationToken()

        def cancel_then_succeed():
            token.cancel("user request")
            return ItemResult.ok()

        executor = ScriptedExecutor({"b": cancel_then_succeed})
        final = _runner(executor, clock=clock, token=token).run()

        # the in-flight item completes; later items are never started
        assert executor.executed == ["a", "b"]
        assert final.status == OperationStatus.CANCELLED
        assert final.processed_items == 2
        assert final.total_items == 4
        assert final.error_message == "Cancelled: user request"
        assert final.estimated_time_remaining_ms is None
        assert executor.finished

    def test_cancel_before_run(self, clock):
        token = CancellationToken()
        token.cancel()
        executor = ScriptedExecutor()
        final = _runner(executor, clock=clock, token=token).run()

        assert final.status == OperationStatus.CANCELLED
        assert final.processed_items == 0
        assert final.start_time is not None
        assert final.error_message is None

    def test_cancel_after_last_item_completes_normally(self, clock):
        token = CancellationToken()

        def cancel_late():
            token.cancel("too late")
            return ItemResult.ok()

        executor = ScriptedExecutor({"d": cancel_late})
        final = _runner(executor, clock=clock, token=token).run()
        assert final.status == OperationStatus.COMPLETED


class TestFinalization:
    def test_finish_failure_keeps_counters(self, clock, captured_logs):
        executor = ScriptedExecutor(finish_error=OSError("disk full"))
        final = _runner(executor, clock=clock).run()

        assert final.status == OperationStatus.COMPLETED
        assert final.successful_items == 4
        assert final.error_message == "Finalization failed: OSError: disk full"
        assert final.artifacts == {"executed": 4}
        assert any(r["message"] == "operation_finalize_failed" for r in captured_logs())

    def test_finish_failure_wins_over_cancel_reason(self, clock):
        token = CancellationToken()
        token.cancel("stop")
        executor = ScriptedExecutor(finish_error=OSError("disk full"))
        final = _runner(executor, clock=clock, token=token).run()
        assert final.status == OperationStatus.CANCELLED
        assert final.error_message.startswith("Finalization failed")


@pytest.mark.parametrize("items, failures, status", [
    (("a",), (), OperationStatus.COMPLETED),
    (("a", "b"), ("a",), OperationStatus.PARTIAL_SUCCESS),
    (("a", "b"), ("a", "b"), OperationStatus.FAILED),
])
def test_terminal_status_from_counts(clock, items, failures, status):
    executor = ScriptedExecutor({i: (lambda: ItemResult.fail("no")) for i in failures})
    assert _runner(executor, items=items, clock=clock).run().status == status
