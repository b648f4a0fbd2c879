"""
bulkops.domain.validation -- submission-time request checks.

Pure function over the request, the configured limits and the set of
operation types that have an executor.  Every problem is collected so a
rejected caller sees all of them in one ``ValidationError``.
"""

from __future__ import annotations

from typing import Any, Callable, Collection

from bulkops_config.schema import ValidationSettings
from bulkops_kernel.exceptions import ValidationError

from bulkops.domain.types import OperationRequest, OperationType


def _require_bool(params: dict[str, Any], key: str, errors: list[str]) -> None:
    if key not in params:
        errors.append(f"params.{key} is required")
    elif not isinstance(params[key], bool):
        errors.append(f"params.{key} must be true or false")


def _positive_int(
    options: dict[str, Any], key: str, errors: list[str],
) -> None:
    if key not in options:
        return
    value = options[key]
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors.append(f"options.{key} must be a positive integer")


def _check_role_update(params, options, settings, errors):
    role = params.get("role")
    if not role:
        errors.append("params.role is required")
    elif role not in settings.allowed_roles:
        errors.append(
            f"params.role '{role}' is not one of {list(settings.allowed_roles)}"
        )


def _check_status_update(params, options, settings, errors):
    _require_bool(params, "is_active", errors)


def _check_verification_update(params, options, settings, errors):
    _require_bool(params, "is_verified", errors)


def _check_export(params, options, settings, errors):
    fmt = params.get("format", "csv")
    if fmt not in settings.export_formats:
        errors.append(
            f"params.format '{fmt}' is not one of {list(settings.export_formats)}"
        )
    include = params.get("include_personal_data", False)
    if not isinstance(include, bool):
        errors.append("params.include_personal_data must be true or false")


def _check_import(params, options, settings, errors):
    if not params.get("source_path"):
        errors.append("params.source_path is required")


def _check_data_cleanup(params, options, settings, errors):
    _positive_int(options, "older_than_days", errors)


def _check_archive(params, options, settings, errors):
    _positive_int(options, "older_than_months", errors)


_TYPE_CHECKS: dict[OperationType, Callable[..., None]] = {
    OperationType.ROLE_UPDATE: _check_role_update,
    OperationType.STATUS_UPDATE: _check_status_update,
    OperationType.VERIFICATION_UPDATE: _check_verification_update,
    OperationType.EXPORT: _check_export,
    OperationType.IMPORT: _check_import,
    OperationType.DATA_CLEANUP: _check_data_cleanup,
    OperationType.SESSION_CLEANUP: _check_data_cleanup,
    OperationType.ARCHIVE_OLD_DATA: _check_archive,
}


def _check_parameters(
    operation_type: OperationType | None,
    params: Any,
    options: Any,
    settings: ValidationSettings,
    errors: list[str],
) -> None:
    if not isinstance(params, dict):
        errors.append("params must be a mapping")
    elif not isinstance(options, dict):
        errors.append("options must be a mapping")
    elif operation_type is not None:
        check = _TYPE_CHECKS.get(operation_type)
        if check is not None:
            check(params, options, settings, errors)


def validate_parameters(
    operation_type: OperationType,
    params: Any,
    options: Any,
    settings: ValidationSettings,
) -> None:
    """Run only the type-specific ``params`` / ``options`` checks.

    Used before an executor collects its own items, so selection criteria
    such as ``older_than_days`` are rejected before they reach a query.

    Raises:
        ValidationError: With every problem found.
    """
    errors: list[str] = []
    _check_parameters(operation_type, params, options, settings, errors)
    if errors:
        raise ValidationError(errors)


def validate_request(
    request: OperationRequest,
    settings: ValidationSettings,
    registered_types: Collection[OperationType],
) -> OperationType:
    """Validate a submission and return its parsed operation type.

    Raises:
        ValidationError: With every problem found.
    """
    errors: list[str] = []

    operation_type: OperationType | None
    try:
        operation_type = OperationType.parse(request.operation_type)
    except ValueError:
        operation_type = None
        errors.append(
            f"unknown operation type '{request.operation_type}'; expected one of "
            f"{[t.value for t in OperationType]}"
        )

    if operation_type is not None and operation_type not in registered_types:
        errors.append(f"no executor registered for '{operation_type.value}'")

    item_ids = request.item_ids
    if not isinstance(item_ids, (tuple, list)):
        errors.append("item_ids must be a list of identifiers")
    elif not item_ids:
        errors.append("item_ids must not be empty")
    else:
        if len(item_ids) > settings.max_items_per_operation:
            errors.append(
                f"item_ids has {len(item_ids)} entries; the limit is "
                f"{settings.max_items_per_operation}"
            )
        blank = [
            i for i, item in enumerate(item_ids)
            if not isinstance(item, str) or not item.strip()
        ]
        if blank:
            errors.append(f"item_ids contains blank or non-string ids at {blank[:10]}")
        seen: set[str] = set()
        duplicates: list[str] = []
        for item in item_ids:
            if not isinstance(item, str):
                continue
            if item in seen and item not in duplicates:
                duplicates.append(item)
            seen.add(item)
        if duplicates:
            errors.append(f"item_ids contains duplicates: {duplicates[:10]}")

    _check_parameters(
        operation_type, request.params, request.options, settings, errors,
    )

    if errors or operation_type is None:
        raise ValidationError(errors)
    return operation_type
