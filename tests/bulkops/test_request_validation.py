"""
Tests for bulkops.domain.validation -- submission-time request checks.
"""

import pytest

from bulkops_config import ValidationSettings
from bulkops_kernel.exceptions import ValidationError

from bulkops.domain.types import OperationRequest, OperationType
from bulkops.domain.validation import validate_parameters, validate_request

ALL_TYPES = frozenset(OperationType)


def _validate(settings=None, registered=ALL_TYPES, **kwargs):
    kwargs.setdefault("item_ids", ("u1",))
    request = OperationRequest(**kwargs)
    return validate_request(request, settings or ValidationSettings(), registered)


def _errors(**kwargs) -> list[str]:
    with pytest.raises(ValidationError) as exc_info:
        _validate(**kwargs)
    return exc_info.value.errors


class TestCommonRules:
    def test_valid_request_returns_type(self):
        assert _validate(operation_type="delete") is OperationType.DELETE
        assert _validate(
            operation_type=OperationType.CACHE_CLEAR,
        ) is OperationType.CACHE_CLEAR

    def test_unknown_type(self):
        errors = _errors(operation_type="reboot")
        assert len(errors) == 1
        assert "unknown operation type 'reboot'" in errors[0]

    def test_unregistered_type(self):
        errors = _errors(
            operation_type="delete", registered=frozenset({OperationType.EXPORT}),
        )
        assert errors == ["no executor registered for 'delete'"]

    def test_empty_item_ids(self):
        assert _errors(operation_type="delete", item_ids=()) == [
            "item_ids must not be empty",
        ]

    def test_item_ids_must_be_a_list(self):
        assert _errors(operation_type="delete", item_ids="u1") == [
            "item_ids must be a list of identifiers",
        ]

    def test_list_item_ids_accepted(self):
        assert _validate(operation_type="delete", item_ids=["u1", "u2"])

    def test_too_many_items(self):
        settings = ValidationSettings(max_items_per_operation=2)
        errors = _errors(
            operation_type="delete", item_ids=("a", "b", "c"), settings=settings,
        )
        assert errors == ["item_ids has 3 entries; the limit is 2"]

    def test_blank_ids(self):
        errors = _errors(operation_type="delete", item_ids=("a", " ", 7))
        assert errors == ["item_ids contains blank or non-string ids at [1, 2]"]

    def test_duplicate_ids(self):
        errors = _errors(operation_type="delete", item_ids=("a", "b", "a", "a"))
        assert errors == ["item_ids contains duplicates: ['a']"]

    def test_params_must_be_mapping(self):
        errors = _errors(operation_type="delete", params=["role"])
        assert errors == ["params must be a mapping"]

    def test_all_problems_collected(self):
        errors = _errors(operation_type="reboot", item_ids=())
        assert len(errors) == 2

    def test_message_joins_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            _validate(operation_type="reboot", item_ids=())
        message = str(exc_info.value)
        assert message.startswith("Invalid operation request: ")
        assert "item_ids must not be empty" in message
        assert exc_info.value.code == "VALIDATION_ERROR"


class TestTypeSpecificRules:
    def test_role_required(self):
        assert _errors(operation_type="role_update") == ["params.role is required"]

    def test_role_must_be_allowed(self):
        errors = _errors(operation_type="role_update", params={"role": "Root"})
        assert errors[0].startswith("params.role 'Root' is not one of")

    def test_role_ok(self):
        assert _validate(operation_type="role_update", params={"role": "Pro User"})

    @pytest.mark.parametrize(
        "op_type, key",
        [("status_update", "is_active"), ("verification_update", "is_verified")],
    )
    def test_boolean_flags(self, op_type, key):
        assert _errors(operation_type=op_type) == [f"params.{key} is required"]
        assert _errors(operation_type=op_type, params={key: "yes"}) == [
            f"params.{key} must be true or false",
        ]
        assert _validate(operation_type=op_type, params={key: False})

    def test_export_format(self):
        assert _validate(operation_type="export")
        assert _validate(operation_type="export", params={"format": "xlsx"})
        errors = _errors(operation_type="export", params={"format": "pdf"})
        assert errors[0].startswith("params.format 'pdf' is not one of")

    def test_export_personal_data_flag(self):
        errors = _errors(
            operation_type="export", params={"include_personal_data": "no"},
        )
        assert errors == ["params.include_personal_data must be true or false"]

    def test_import_needs_source(self):
        assert _errors(operation_type="import") == ["params.source_path is required"]
        assert _validate(operation_type="import", params={"source_path": "users.csv"})

    @pytest.mark.parametrize("value", [0, -3, "30", 1.5, True])
    def test_cleanup_window_must_be_positive_int(self, value):
        errors = _errors(
            operation_type="data_cleanup", options={"older_than_days": value},
        )
        assert errors == ["options.older_than_days must be a positive integer"]

    def test_cleanup_window_optional(self):
        assert _validate(operation_type="session_cleanup")
        assert _validate(
            operation_type="session_cleanup", options={"older_than_days": 7},
        )

    def test_archive_window(self):
        errors = _errors(
            operation_type="archive_old_data", options={"older_than_months": 0},
        )
        assert errors == ["options.older_than_months must be a positive integer"]


class TestParametersOnly:
    def test_valid_parameters_pass(self):
        validate_parameters(
            OperationType.SESSION_CLEANUP, {}, {"older_than_days": 30},
            ValidationSettings(),
        )

    def test_string_window_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters(
                OperationType.DATA_CLEANUP, {}, {"older_than_days": "30"},
                ValidationSettings(),
            )
        assert exc_info.value.errors == [
            "options.older_than_days must be a positive integer",
        ]

    def test_options_must_be_mapping(self):
        with pytest.raises(ValidationError, match="options must be a mapping"):
            validate_parameters(
                OperationType.ARCHIVE_OLD_DATA, {}, ["older_than_months"],
                ValidationSettings(),
            )

    def test_types_without_rules_pass(self):
        validate_parameters(OperationType.CACHE_CLEAR, {}, {}, ValidationSettings())
