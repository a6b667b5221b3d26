"""Unit tests for type-driven field coercion in both directions."""

from __future__ import annotations

import math

from src.app.sync.coercion import coerce, coerce_inbound, coerce_outbound
from src.app.sync.schemas import Direction, FieldDefinition


def _field(data_type: str, **overrides) -> FieldDefinition:
    defaults = {
        "api_name": "Field_A",
        "display_label": "Field A",
        "data_type": data_type,
    }
    defaults.update(overrides)
    return FieldDefinition.model_validate(defaults)


# ── Inbound ────────────────────────────────────────────────────────────────


class TestCoerceInbound:
    """CRM -> CDP value translation."""

    def test_integer_digit_string_parses_exactly(self):
        assert coerce_inbound(_field("integer"), "12345") == 12345
        assert coerce_inbound(_field("bigint"), "9007199254740993") == 9007199254740993

    def test_integer_non_numeric_string_is_nan(self):
        """Non-numeric strings propagate NaN rather than None."""
        result = coerce_inbound(_field("integer"), "abc")
        assert isinstance(result, float)
        assert math.isnan(result)

    def test_integer_past_digit_limit_is_nan(self):
        result = coerce_inbound(_field("bigint"), "9" * 5000)
        assert math.isnan(result)

    def test_datetime_epoch_overflow_is_none(self):
        assert coerce_inbound(_field("datetime"), 10**400) is None

    def test_currency_string_parses_float(self):
        assert coerce_inbound(_field("currency"), "1250.50") == 1250.5
        assert coerce_inbound(_field("double"), "3.5kg") == 3.5

    def test_numbers_pass_through(self):
        assert coerce_inbound(_field("double"), 4.25) == 4.25
        assert coerce_inbound(_field("integer"), 7) == 7

    def test_text_is_stringified(self):
        assert coerce_inbound(_field("text"), 42) == "42"
        assert coerce_inbound(_field("text"), True) == "true"
        assert coerce_inbound(_field("email"), None) is None

    def test_jsonarray_text_passes_through(self):
        field = _field("text", json_type="jsonarray")
        assert coerce_inbound(field, ["a", "b"]) == ["a", "b"]

    def test_boolean_passes_through(self):
        assert coerce_inbound(_field("boolean"), False) is False

    def test_datetime_iso_is_normalized(self):
        result = coerce_inbound(_field("datetime"), "2024-03-01T10:15:30+01:00")
        assert result == "2024-03-01T10:15:30.000+01:00"

    def test_datetime_epoch_millis(self):
        result = coerce_inbound(_field("datetime"), 0)
        assert result == "1970-01-01T00:00:00.000+00:00"

    def test_invalid_date_string_is_none(self):
        assert coerce_inbound(_field("date"), "not a date") is None

    def test_lookup_projects_id_and_name(self):
        value = {"id": "99", "name": "Acme", "extra": "dropped"}
        assert coerce_inbound(_field("lookup"), value) == {"id": "99", "name": "Acme"}

    def test_ownerlookup_projects_id_name_email(self):
        value = {"id": "7", "name": "Jane"}
        assert coerce_inbound(_field("ownerlookup"), value) == {
            "id": "7",
            "name": "Jane",
            "email": None,
        }

    def test_multiselectlookup_is_always_none(self):
        assert coerce_inbound(_field("multiselectlookup"), [{"id": "1"}]) is None

    def test_formula_delegates_to_return_type(self):
        decimal = _field("formula", formula={"return_type": "decimal"})
        text = _field("formula", formula={"return_type": "string"})
        other = _field("formula", formula={"return_type": "boolean"})
        assert coerce_inbound(decimal, "2.5") == 2.5
        assert coerce_inbound(text, 10) == "10"
        assert coerce_inbound(other, True) is True

    def test_unsupported_type_is_none(self):
        assert coerce_inbound(_field("subform"), [{"a": 1}]) is None
        assert coerce_inbound(_field("mystery"), "value") is None


# ── Outbound ───────────────────────────────────────────────────────────────


class TestCoerceOutbound:
    """CDP -> CRM value validation."""

    def test_currency_int_becomes_float(self):
        result = coerce_outbound(_field("currency", length=16), 42)
        assert result.errors == []
        assert result.value == 42.0
        assert isinstance(result.value, float)

    def test_string_too_long_names_display_label(self):
        result = coerce_outbound(_field("text", length=255), "x" * 300, attribute="traits_bio")
        assert len(result.errors) == 1
        assert "Field A" in result.errors[0]
        assert "bio" in result.errors[0]

    def test_string_is_stringified(self):
        result = coerce_outbound(_field("text", length=10), 12)
        assert result.value == "12"

    def test_none_string_clears_field(self):
        result = coerce_outbound(_field("text", length=10), None)
        assert result.errors == []
        assert result.has_value
        assert result.value is None

    def test_picklist_rejects_unknown_value(self):
        field = _field(
            "picklist",
            length=50,
            pick_list_values=[{"actual_value": "Hot"}, {"actual_value": "Cold"}],
        )
        result = coerce_outbound(field, "Warm", attribute="rating")
        assert len(result.errors) == 1
        assert "Warm" in result.errors[0]
        assert "Hot, Cold" in result.errors[0]
        assert coerce_outbound(field, "Hot").value == "Hot"

    def test_non_finite_number_rejected(self):
        assert coerce_outbound(_field("double"), float("inf")).errors
        assert coerce_outbound(_field("integer"), "abc").errors

    def test_oversized_numbers_rejected(self):
        """Values too large for a float are reported, not raised."""
        assert coerce_outbound(_field("integer"), "9" * 400).errors
        assert coerce_outbound(_field("bigint"), 10**400).errors
        assert coerce_outbound(_field("currency"), 10**400).errors
        assert coerce_outbound(_field("double"), "9" * 400).errors

    def test_integer_string_parsed(self):
        assert coerce_outbound(_field("integer"), "250").value == 250

    def test_datetime_seconds_precision(self):
        result = coerce_outbound(_field("datetime"), "2024-03-01T10:15:30.123456+00:00")
        assert result.value == "2024-03-01T10:15:30+00:00"

    def test_datetime_from_epoch_seconds(self):
        assert coerce_outbound(_field("datetime"), 86400).value == "1970-01-02T00:00:00+00:00"

    def test_date_is_date_only(self):
        assert coerce_outbound(_field("date"), "2024-03-01T23:00:00+00:00").value == "2024-03-01"

    def test_invalid_datetime_rejected(self):
        assert coerce_outbound(_field("datetime"), "yesterday").errors

    def test_boolean_requires_bool(self):
        assert coerce_outbound(_field("boolean"), True).value is True
        assert coerce_outbound(_field("boolean"), "true").errors

    def test_unsupported_type_skipped_silently(self):
        result = coerce_outbound(_field("subform"), [{"a": 1}])
        assert result.errors == []
        assert result.has_value is False

    def test_unsupported_type_strict_reports_error(self):
        result = coerce_outbound(_field("subform"), [{"a": 1}], strict=True)
        assert len(result.errors) == 1
        assert "subform" in result.errors[0]


class TestCoerceDispatch:
    def test_direction_selects_coercion(self):
        field = _field("integer")
        assert coerce(field, "5", Direction.INCOMING) == 5
        assert coerce(field, "5", Direction.OUTGOING).value == 5
