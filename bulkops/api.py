"""
OperationsAPI -- transport-neutral request/response adapter.

Every method takes plain dicts (a parsed JSON body or query string) and
returns ``(http_status, body)`` with camelCase keys and ISO-8601
timestamps, so a web framework route can return the pair unchanged.

    submit(payload)             202 {operationId} | 400 | 503
    list_active()               200 {operations}
    get_operation(id)           200 snapshot | 404
    list_history(query)         200 {operations, pagination} | 400
    cancel(id, payload)         202 {operationId, status, acknowledged} | 404
    report(id)                  200 report | 404 | 409
    statistics(query)           200 snapshot | 400 | 503
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Mapping

from bulkops_kernel.exceptions import (
    BulkOpsError,
    NotFoundError,
    OperationNotTerminalError,
    OrchestratorNotRunningError,
    StatisticsUnavailableError,
    ValidationError,
)
from bulkops_kernel.logging_config import get_logger

from bulkops.domain.types import (
    HistoryFilter,
    ItemErrorEntry,
    OperationReport,
    OperationRequest,
    OperationSnapshot,
    OperationStatus,
    OperationType,
    SystemStatisticsSnapshot,
)
from bulkops.orchestrator import Orchestrator

logger = get_logger("api")

Response = tuple[int, dict[str, Any]]


# =============================================================================
# Serialization
# =============================================================================


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _camel_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_camel(str(k)): v for k, v in data.items()}


def error_to_dict(entry: ItemErrorEntry) -> dict[str, Any]:
    return {
        "itemIndex": entry.item_index,
        "itemId": entry.item_id,
        "error": entry.error,
        "timestamp": _iso(entry.timestamp),
    }


def snapshot_to_dict(snapshot: OperationSnapshot) -> dict[str, Any]:
    return {
        "operationId": snapshot.operation_id,
        "type": snapshot.operation_type.value,
        "status": snapshot.status.value,
        "totalItems": snapshot.total_items,
        "processedItems": snapshot.processed_items,
        "successfulItems": snapshot.successful_items,
        "failedItems": snapshot.failed_items,
        "progress": snapshot.progress,
        "createdAt": _iso(snapshot.created_at),
        "startTime": _iso(snapshot.start_time),
        "endTime": _iso(snapshot.end_time),
        "estimatedTimeRemaining": snapshot.estimated_time_remaining_ms,
        "errors": [error_to_dict(e) for e in snapshot.errors],
        "initiatedBy": snapshot.initiated_by,
        "errorMessage": snapshot.error_message,
        "params": dict(snapshot.params),
        "options": dict(snapshot.options),
        "artifacts": _camel_keys(snapshot.artifacts),
    }


def report_to_dict(report: OperationReport) -> dict[str, Any]:
    return {
        "operationId": report.operation_id,
        "summary": snapshot_to_dict(report.summary),
        "errors": [error_to_dict(e) for e in report.errors],
        "durationMs": report.duration_ms,
        "duration": report.duration,
        "artifacts": _camel_keys(report.artifacts),
    }


def statistics_to_dict(snapshot: SystemStatisticsSnapshot, now: datetime) -> dict[str, Any]:
    return {
        "users": _camel_keys(snapshot.users),
        "data": _camel_keys(snapshot.data),
        "storage": _camel_keys(snapshot.storage),
        "performance": _camel_keys(snapshot.performance),
        "generatedAt": _iso(snapshot.generated_at),
        "ageSeconds": round(snapshot.age_seconds(now), 3),
    }


def _error(status: int, exc: BulkOpsError) -> Response:
    return status, {"error": exc.to_payload()}


# =============================================================================
# Query parsing
# =============================================================================


def _int_param(query: Mapping[str, Any], key: str, default: int) -> int:
    raw = query.get(key)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer") from None
    if value < 1:
        raise ValidationError(f"{key} must be >= 1")
    return value


def _datetime_param(query: Mapping[str, Any], key: str) -> datetime | None:
    raw = query.get(key)
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        try:
            value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 timestamp") from None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value


def _bool_param(query: Mapping[str, Any], key: str) -> bool | None:
    raw = query.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("1", "true", "yes"):
        return True
    if text in ("0", "false", "no"):
        return False
    raise ValidationError(f"{key} must be true or false")


def parse_history_query(query: Mapping[str, Any]) -> tuple[HistoryFilter, int, int | None]:
    """``{page, limit, operationType, status, from, to, initiatedBy}`` -> filter + paging.

    Raises:
        ValidationError: Any value that does not parse.
    """
    errors: list[str] = []
    operation_type = status = None
    if query.get("operationType"):
        try:
            operation_type = OperationType.parse(query["operationType"])
        except ValueError:
            errors.append(f"unknown operationType '{query['operationType']}'")
    if query.get("status"):
        try:
            status = OperationStatus(query["status"])
        except ValueError:
            errors.append(f"unknown status '{query['status']}'")
    if errors:
        raise ValidationError(errors)

    page = _int_param(query, "page", 1)
    limit = _int_param(query, "limit", 0) or None
    history_filter = HistoryFilter(
        operation_type=operation_type,
        status=status,
        started_after=_datetime_param(query, "from"),
        started_before=_datetime_param(query, "to"),
        initiated_by=query.get("initiatedBy") or None,
    )
    return history_filter, page, limit


# =============================================================================
# Adapter
# =============================================================================


class OperationsAPI:
    """Dict-in, dict-out facade over one Orchestrator."""

    def __init__(self, orchestrator: Orchestrator):
        self._orchestrator = orchestrator

    def submit(self, payload: Mapping[str, Any]) -> Response:
        if not isinstance(payload, Mapping):
            return _error(400, ValidationError("request body must be an object"))
        try:
            operation_id = self._orchestrator.submit(OperationRequest.from_payload(payload))
        except ValidationError as exc:
            return _error(400, exc)
        except OrchestratorNotRunningError as exc:
            return _error(503, exc)
        return 202, {"operationId": operation_id}

    def list_active(self) -> Response:
        return 200, {
            "operations": [snapshot_to_dict(s) for s in self._orchestrator.get_active()],
        }

    def get_operation(self, operation_id: str) -> Response:
        try:
            snapshot = self._orchestrator.get_operation(operation_id)
        except NotFoundError as exc:
            return _error(404, exc)
        return 200, snapshot_to_dict(snapshot)

    def list_history(self, query: Mapping[str, Any] | None = None) -> Response:
        try:
            history_filter, page, limit = parse_history_query(query or {})
            result = self._orchestrator.get_history(history_filter, page=page, page_size=limit)
        except ValidationError as exc:
            return _error(400, exc)
        return 200, {
            "operations": [snapshot_to_dict(s) for s in result.items],
            "pagination": {
                "page": result.page,
                "limit": result.page_size,
                "total": result.total_items,
                "pages": result.total_pages,
            },
        }

    def cancel(
        self,
        operation_id: str,
        payload: Mapping[str, Any] | None = None,
    ) -> Response:
        reason = (payload or {}).get("reason")
        try:
            snapshot = self._orchestrator.cancel(operation_id, reason=reason)
        except NotFoundError as exc:
            return _error(404, exc)
        return 202, {
            "operationId": operation_id,
            "status": snapshot.status.value,
            "acknowledged": not snapshot.is_terminal,
        }

    def report(self, operation_id: str) -> Response:
        try:
            report = self._orchestrator.get_report(operation_id)
        except NotFoundError as exc:
            return _error(404, exc)
        except OperationNotTerminalError as exc:
            return _error(409, exc)
        return 200, report_to_dict(report)

    def statistics(self, query: Mapping[str, Any] | None = None) -> Response:
        query = query or {}
        try:
            raw_age = query.get("maxAge")
            try:
                max_age = float(raw_age) if raw_age not in (None, "") else None
            except (TypeError, ValueError):
                raise ValidationError("maxAge must be a number of seconds") from None
            if max_age is not None and max_age < 0:
                raise ValidationError("maxAge must not be negative")
            background = _bool_param(query, "background")
        except ValidationError as exc:
            return _error(400, exc)

        reporter = self._orchestrator.statistics
        try:
            snapshot = reporter.get_snapshot(max_age=max_age, background_refresh=background)
        except StatisticsUnavailableError as exc:
            logger.warning("statistics_request_failed", extra={"reason": exc.reason})
            return _error(503, exc)
        return 200, statistics_to_dict(snapshot, self._orchestrator.clock.now())
