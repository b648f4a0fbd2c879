"""
Tests for the typed exception hierarchy (bulkops_kernel.exceptions).
"""

import pytest

from bulkops_kernel.exceptions import (
    BulkOpsError,
    ConfigurationError,
    ExecutorError,
    ExecutorNotRegisteredError,
    ExecutorUnavailableError,
    InvalidTransitionError,
    ItemError,
    NotFoundError,
    OperationNotFoundError,
    OperationNotTerminalError,
    OperationStateError,
    OrchestratorNotRunningError,
    StatisticsUnavailableError,
    ValidationError,
)

ALL = [
    (ValidationError(["a"]), "VALIDATION_ERROR", BulkOpsError),
    (OperationNotFoundError("op_1"), "OPERATION_NOT_FOUND", NotFoundError),
    (ItemError("u1", "locked"), "ITEM_ERROR", BulkOpsError),
    (ExecutorUnavailableError("export", "no dir"), "EXECUTOR_UNAVAILABLE", ExecutorError),
    (ExecutorNotRegisteredError("export"), "EXECUTOR_NOT_REGISTERED", ExecutorError),
    (InvalidTransitionError("op_1", "pending", "completed"), "INVALID_TRANSITION",
     OperationStateError),
    (OperationNotTerminalError("op_1", "in_progress"), "OPERATION_NOT_TERMINAL",
     OperationStateError),
    (OrchestratorNotRunningError(), "ORCHESTRATOR_NOT_RUNNING", BulkOpsError),
    (StatisticsUnavailableError("timeout"), "STATISTICS_UNAVAILABLE", BulkOpsError),
    (ConfigurationError("bad"), "CONFIGURATION_ERROR", BulkOpsError),
]


class TestHierarchy:
    @pytest.mark.parametrize("exc, code, parent", ALL)
    def test_codes_and_parents(self, exc, code, parent):
        assert exc.code == code
        assert isinstance(exc, parent)
        assert isinstance(exc, BulkOpsError)

    @pytest.mark.parametrize("exc, code, parent", ALL)
    def test_payload(self, exc, code, parent):
        payload = exc.to_payload()
        assert payload["code"] == code
        assert payload["message"] == str(exc)


class TestDetails:
    def test_validation_error_accepts_string(self):
        exc = ValidationError("one problem")
        assert exc.errors == ["one problem"]
        assert exc.to_payload()["details"] == ["one problem"]

    def test_item_error_message_is_reason(self):
        exc = ItemError("u1", "User locked")
        assert str(exc) == "User locked"
        assert exc.item_id == "u1"

    def test_not_registered_lists_available(self):
        exc = ExecutorNotRegisteredError("export", ("delete", "role_update"))
        assert "['delete', 'role_update']" in str(exc)

    def test_configuration_error_with_path(self):
        exc = ConfigurationError("unknown keys", path="/etc/bulkops.yaml")
        assert str(exc) == "/etc/bulkops.yaml: unknown keys"
        assert exc.path == "/etc/bulkops.yaml"
