"""
User management executors: role/status/verification updates, delete,
export and import.

Each executor makes one ``UserDirectory`` call per item.  A directory
returning ``False``/``None`` is an expected failure ("User not found");
exceptions from the directory propagate to the runner, which records them
against the item.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from bulkops_kernel.exceptions import ExecutorUnavailableError, ValidationError

from bulkops.domain.types import ItemResult, OperationType
from bulkops.tasks import files
from bulkops.tasks.base import BaseItemExecutor, ExecutionContext
from bulkops.tasks.ports import UserDirectory

USER_NOT_FOUND = "User not found"

PERSONAL_FIELDS = frozenset({
    "email", "name", "first_name", "last_name", "phone", "address",
})


class RoleUpdateExecutor(BaseItemExecutor):
    """Assign ``params["role"]`` to every selected user."""

    operation_type = OperationType.ROLE_UPDATE
    description = "Bulk role update"

    def __init__(self, users: UserDirectory):
        self._users = users

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        role = context.params["role"]
        if not self._users.update_role(item_id, role):
            return ItemResult.fail(USER_NOT_FOUND)
        return ItemResult.ok(role=role)


class StatusUpdateExecutor(BaseItemExecutor):
    """Activate or deactivate users (``params["is_active"]``)."""

    operation_type = OperationType.STATUS_UPDATE
    description = "Bulk status update"

    def __init__(self, users: UserDirectory):
        self._users = users

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        if not self._users.set_active(item_id, context.params["is_active"]):
            return ItemResult.fail(USER_NOT_FOUND)
        return ItemResult.ok()


class VerificationUpdateExecutor(BaseItemExecutor):
    """Mark users verified or unverified (``params["is_verified"]``)."""

    operation_type = OperationType.VERIFICATION_UPDATE
    description = "Bulk verification update"

    def __init__(self, users: UserDirectory):
        self._users = users

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        if not self._users.set_verified(item_id, context.params["is_verified"]):
            return ItemResult.fail(USER_NOT_FOUND)
        return ItemResult.ok()


class DeleteExecutor(BaseItemExecutor):
    """Delete users.  Irreversible; cancellation leaves earlier deletes in place."""

    operation_type = OperationType.DELETE
    description = "Bulk user deletion"

    def __init__(self, users: UserDirectory):
        self._users = users

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        if not self._users.delete_user(item_id):
            return ItemResult.fail(USER_NOT_FOUND)
        return ItemResult.ok()


class ExportExecutor(BaseItemExecutor):
    """Collect user rows per item and write one export file in ``finish``.

    params:
        format: ``csv`` (default), ``json`` or ``xlsx``.
        include_personal_data: keep PERSONAL_FIELDS columns (default False).

    artifacts:
        export_path, file_name, record_count.
    """

    operation_type = OperationType.EXPORT
    description = "User export"

    def __init__(self, users: UserDirectory, export_dir: Path | str | None):
        self._users = users
        self._export_dir = Path(export_dir) if export_dir is not None else None

    def prepare(self, context: ExecutionContext) -> None:
        if self._export_dir is None:
            raise ExecutorUnavailableError(
                self.operation_type.value, "no export directory configured",
            )
        try:
            self._export_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ExecutorUnavailableError(self.operation_type.value, str(exc)) from exc
        context.state["rows"] = []

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        user = self._users.get_user(item_id)
        if user is None:
            return ItemResult.fail(USER_NOT_FOUND)
        row = {"id": item_id, **user}
        if not context.params.get("include_personal_data", False):
            row = {k: v for k, v in row.items() if k not in PERSONAL_FIELDS}
        context.state["rows"].append(row)
        return ItemResult.ok()

    def finish(self, context: ExecutionContext) -> None:
        rows: list[dict[str, Any]] = context.state.get("rows", [])
        fmt = context.params.get("format", "csv")
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        if not columns:
            columns = ["id"]

        file_name = (
            f"users_export_{context.as_of:%Y-%m-%d}_"
            f"{context.operation_id[-8:]}.{fmt}"
        )
        path = self._export_dir / file_name
        count = files.write_rows(path, rows, columns, fmt)
        context.artifacts.update({
            "export_path": str(path),
            "file_name": file_name,
            "record_count": count,
        })


class ImportExecutor(BaseItemExecutor):
    """Create users from the rows of ``params["source_path"]``.

    Items are row keys ``row-1`` .. ``row-N`` (1-based data rows).  Rows
    need an ``email``; ``role`` defaults to ``default_role`` and must be
    one of ``allowed_roles`` when given.
    """

    operation_type = OperationType.IMPORT
    description = "User import"

    def __init__(
        self,
        users: UserDirectory,
        allowed_roles: tuple[str, ...] = ("Admin", "Pro User", "Regular User"),
        default_role: str = "Regular User",
    ):
        self._users = users
        self._allowed_roles = allowed_roles
        self._default_role = default_role

    @staticmethod
    def _load(source_path: str) -> list[dict[str, Any]]:
        return files.read_rows(Path(source_path))

    def collect_items(
        self, params: dict[str, Any], options: dict[str, Any],
    ) -> tuple[str, ...]:
        source = params.get("source_path")
        if not source:
            raise ValidationError("params.source_path is required")
        try:
            rows = self._load(source)
        except (OSError, ValueError) as exc:
            raise ValidationError(f"cannot read import file: {exc}") from exc
        return tuple(f"row-{n}" for n in range(1, len(rows) + 1))

    def prepare(self, context: ExecutionContext) -> None:
        try:
            context.state["rows"] = self._load(context.params["source_path"])
        except (OSError, ValueError) as exc:
            raise ExecutorUnavailableError(self.operation_type.value, str(exc)) from exc

    def execute(self, item_id: str, context: ExecutionContext) -> ItemResult:
        rows: list[dict[str, Any]] = context.state["rows"]
        try:
            number = int(item_id.removeprefix("row-"))
        except ValueError:
            number = 0
        if not 1 <= number <= len(rows):
            return ItemResult.fail(f"No such row in import file: {item_id}")
        row = rows[number - 1]

        email = str(row.get("email") or "").strip()
        if not email or "@" not in email:
            return ItemResult.fail("Missing or invalid email")
        role = str(row.get("role") or self._default_role).strip()
        if role not in self._allowed_roles:
            return ItemResult.fail(f"Unknown role '{role}'")

        record = {k: v for k, v in row.items() if v not in (None, "")}
        record["email"] = email
        record["role"] = role
        user_id = self._users.create_user(record)
        return ItemResult.ok(user_id=user_id)
