"""
ItemExecutor protocol, supporting types, and ExecutorRegistry.

Contract:
    ``ItemExecutor`` defines the interface every per-type executor implements.
    ``ExecutorRegistry`` stores executors keyed by ``OperationType``; the
    hosting application fills it once at startup.

Architecture:
    bulkops/tasks.  ZERO imports from bulkops.services or the orchestrator.
    Only imports from bulkops.domain, the kernel exceptions, and stdlib.

Invariants enforced:
    - One executor per operation type.
    - Executors keep per-job state only in ``ExecutionContext.state``; the
      runner creates a fresh context for every job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from bulkops_kernel.exceptions import ExecutorNotRegisteredError

from bulkops.domain.types import ItemResult, OperationType


# =============================================================================
# Supporting types
# =============================================================================


@dataclass
class ExecutionContext:
    """Per-job context the runner passes to every executor call.

    ``state`` is private scratch space for one job (e.g. rows gathered for
    an export).  ``artifacts`` is copied onto the operation record when the
    run ends and shows up in snapshots and reports.
    """

    operation_id: str
    operation_type: OperationType
    params: dict[str, Any]
    options: dict[str, Any]
    as_of: datetime
    initiated_by: str | None = None
    state: dict[str, Any] = field(default_factory=dict)
    artifacts: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# ItemExecutor Protocol
# =============================================================================


@runtime_checkable
class ItemExecutor(Protocol):
    """Protocol for per-operation-type executors.

    Contract:
        - ``operation_type``: key registered in ExecutorRegistry.
        - ``description``: human-readable label for logs and reports.
        - ``prepare()``: job setup.  Raising here (typically
          ``ExecutorUnavailableError``) fails the job with zero processed items.
        - ``execute()``: processes ONE item.  Expected failures are returned
          as ``ItemResult.fail``; anything raised is caught by the runner and
          recorded against the item.
        - ``finish()``: flush per-job state once the item loop ends.

    Non-goals:
        - Does NOT retry -- resubmission is the caller's job.
        - Does NOT check cancellation -- the runner does that between items.
    """

    @property
    def operation_type(self) -> OperationType: ...

    @property
    def description(self) -> str: ...

    def prepare(self, context: ExecutionContext) -> None: ...

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult: ...

    def finish(self, context: ExecutionContext) -> None: ...


@runtime_checkable
class ItemCollector(Protocol):
    """Optional capability: the executor can gather its own item set."""

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]: ...


class BaseItemExecutor:
    """Convenience base with no-op ``prepare`` / ``finish``."""

    operation_type: OperationType
    description: str = ""

    def prepare(self, context: ExecutionContext) -> None:
        return None

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        raise NotImplementedError

    def finish(self, context: ExecutionContext) -> None:
        return None


class FunctionExecutor(BaseItemExecutor):
    """Adapts a plain ``fn(item_id) -> ItemResult | bool`` to ItemExecutor."""

    def __init__(
        self,
        operation_type: OperationType,
        fn: Callable[[str], ItemResult | bool],
        description: str = "",
    ):
        self.operation_type = operation_type
        self.description = description or getattr(fn, "__name__", "function")
        self._fn = fn

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        result = self._fn(item_id)
        if isinstance(result, ItemResult):
            return result
        if result:
            return ItemResult.ok()
        return ItemResult.fail(f"{self.description} returned a falsy result")


# =============================================================================
# ExecutorRegistry
# =============================================================================


class ExecutorRegistry:
    """Registry mapping operation types to ItemExecutor implementations.

    Contract:
        - ``register()`` adds an executor; raises ValueError on duplicate.
        - ``get()`` retrieves by type; raises ExecutorNotRegisteredError.
        - ``list_types()`` returns registered types, sorted by value.
    """

    def __init__(self, executors: Iterable[ItemExecutor] = ()) -> None:
        self._executors: dict[OperationType, ItemExecutor] = {}
        for executor in executors:
            self.register(executor)

    def register(self, executor: ItemExecutor) -> None:
        """Register an executor.

        Raises:
            TypeError: If the object does not satisfy ItemExecutor.
            ValueError: If the type is already registered.
        """
        if not isinstance(executor, ItemExecutor):
            raise TypeError(f"{executor!r} does not implement ItemExecutor")
        operation_type = OperationType.parse(executor.operation_type)
        if operation_type in self._executors:
            raise ValueError(
                f"Executor for '{operation_type.value}' is already registered"
            )
        self._executors[operation_type] = executor

    def register_function(
        self,
        operation_type: OperationType | str,
        fn: Callable[[str], ItemResult | bool],
        description: str = "",
    ) -> FunctionExecutor:
        """Register a plain per-item function for ``operation_type``."""
        executor = FunctionExecutor(OperationType.parse(operation_type), fn, description)
        self.register(executor)
        return executor

    def get(self, operation_type: OperationType | str) -> ItemExecutor:
        """Retrieve the executor for ``operation_type``.

        Raises:
            ExecutorNotRegisteredError: If nothing is registered for it.
        """
        try:
            return self._executors[OperationType.parse(operation_type)]
        except (KeyError, ValueError):
            raise ExecutorNotRegisteredError(
                str(getattr(operation_type, "value", operation_type)),
                tuple(t.value for t in self.list_types()),
            ) from None

    def list_types(self) -> tuple[OperationType, ...]:
        return tuple(sorted(self._executors, key=lambda t: t.value))

    def __len__(self) -> int:
        return len(self._executors)

    def __contains__(self, operation_type: object) -> bool:
        try:
            return OperationType.parse(operation_type) in self._executors  # type: ignore[arg-type]
        except ValueError:
            return False
