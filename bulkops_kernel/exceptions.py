"""
Typed Exception Hierarchy for the bulk operation orchestrator.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the orchestrator must tell two situations apart:

  - "my request was rejected"  -> a synchronous exception from submit/cancel
  - "my request ran and some items failed" -> a terminal status on the
    operation record plus its ``errors`` list

Every exception therefore carries:
  1. A TYPED class (catch by type, not by message)
  2. A CODE attribute (machine-readable, safe to put on the wire)
  3. Structured DATA attributes (operation_id, field errors, ...)

Example:
    try:
        operation_id = orchestrator.submit(request)
    except ValidationError as e:
        return 400, {"error": {"code": e.code, "details": e.errors}}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

BulkOpsError (base)
    ValidationError            -- malformed request, nothing was created
    NotFoundError
        OperationNotFoundError -- unknown operation id
    ItemError                  -- one item failed inside a running operation
    ExecutorError
        ExecutorUnavailableError   -- executor cannot run at all
        ExecutorNotRegisteredError -- no executor for an operation type
    OperationStateError
        InvalidTransitionError     -- illegal status transition
        OperationNotTerminalError  -- report requested for a running job
    OrchestratorNotRunningError
    StatisticsUnavailableError
    ConfigurationError
"""

from typing import Any


class BulkOpsError(Exception):
    """
    Base exception for all orchestrator errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "BULKOPS_ERROR"

    def to_payload(self) -> dict[str, Any]:
        """Wire-safe representation used by the transport adapter."""
        return {"code": self.code, "message": str(self)}


# Validation


class ValidationError(BulkOpsError):
    """Submission rejected before any operation record was created."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Invalid operation request: " + "; ".join(self.errors))

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["details"] = list(self.errors)
        return payload


# Lookup


class NotFoundError(BulkOpsError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class OperationNotFoundError(NotFoundError):
    """No active or retained operation has the given id."""

    code: str = "OPERATION_NOT_FOUND"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation not found: {operation_id}")


# Item level


class ItemError(BulkOpsError):
    """A single item could not be processed.

    Executors may raise this for an item; the runner records it in the
    operation's error list exactly like any other item failure.
    """

    code: str = "ITEM_ERROR"

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(reason)


# Executors


class ExecutorError(BulkOpsError):
    """Base exception for executor wiring problems."""

    code: str = "EXECUTOR_ERROR"


class ExecutorUnavailableError(ExecutorError):
    """The executor for an operation type cannot run at all."""

    code: str = "EXECUTOR_UNAVAILABLE"

    def __init__(self, operation_type: str, reason: str):
        self.operation_type = operation_type
        self.reason = reason
        super().__init__(
            f"Executor for '{operation_type}' is unavailable: {reason}"
        )


class ExecutorNotRegisteredError(ExecutorError):
    """No executor is registered for the requested operation type."""

    code: str = "EXECUTOR_NOT_REGISTERED"

    def __init__(self, operation_type: str, available: tuple[str, ...] = ()):
        self.operation_type = operation_type
        self.available = available
        super().__init__(
            f"No executor registered for type '{operation_type}'. "
            f"Available: {list(available)}"
        )


# Operation state


class OperationStateError(BulkOpsError):
    """Base exception for operation lifecycle violations."""

    code: str = "OPERATION_STATE_ERROR"


class InvalidTransitionError(OperationStateError):
    """Attempted status transition is not allowed by the state machine."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, operation_id: str, from_status: str, to_status: str):
        self.operation_id = operation_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Operation {operation_id} cannot move from "
            f"{from_status} to {to_status}"
        )


class OperationNotTerminalError(OperationStateError):
    """A report was requested for an operation that is still running."""

    code: str = "OPERATION_NOT_TERMINAL"

    def __init__(self, operation_id: str, status: str):
        self.operation_id = operation_id
        self.status = status
        super().__init__(
            f"Operation {operation_id} is still {status}; "
            "reports are available once it finishes"
        )


# Orchestrator lifecycle


class OrchestratorNotRunningError(BulkOpsError):
    """Submission attempted before start() or after stop()."""

    code: str = "ORCHESTRATOR_NOT_RUNNING"

    def __init__(self) -> None:
        super().__init__("Orchestrator is not running; call start() first")


# Statistics


class StatisticsUnavailableError(BulkOpsError):
    """Statistics aggregation failed and no snapshot could be produced."""

    code: str = "STATISTICS_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"System statistics unavailable: {reason}")


# Configuration


class ConfigurationError(BulkOpsError):
    """Configuration file or values are invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message if path is None else f"{path}: {message}")
