"""Bidirectional value coercion driven by CRM field data types.

Inbound (CRM -> CDP) coercion normalizes raw API values: numbers arrive as
strings, lookups as nested objects, dates in mixed formats. Outbound
(CDP -> CRM) coercion validates a CDP value against the field definition
and reports every problem as a message instead of raising, so one bad
attribute never aborts a whole batch.

Numeric strings follow leading-number parsing: ``"12abc"`` parses as 12,
``"abc"`` parses as NaN. NaN is returned inbound as-is (not nulled) and
rejected outbound.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.app.sync.schemas import Direction, FieldDefinition

STRING_TYPES = frozenset({"autonumber", "email", "picklist", "text", "textarea", "website"})
FLOAT_TYPES = frozenset({"currency", "double"})
INTEGER_TYPES = frozenset({"integer", "bigint"})
DATE_TYPES = frozenset({"date", "datetime"})
LOOKUP_TYPES = frozenset({"lookup", "ownerlookup"})

OUTBOUND_STRING_TYPES = frozenset({"email", "picklist", "text", "textarea", "website", "lookup"})

# formula.return_type -> data type whose inbound rules apply
_FORMULA_DELEGATES = {
    "decimal": "double",
    "currency": "currency",
    "date": "datetime",
    "datetime": "datetime",
    "string": "text",
    "boolean": "boolean",
}

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")


@dataclass
class OutboundValue:
    """Outcome of coercing one CDP value for a CRM field.

    ``has_value`` is False when the field type is not supported outbound;
    such a field must not appear in the CRM payload at all.
    """

    value: Any = None
    errors: list[str] = field(default_factory=list)
    has_value: bool = True


# ── Parsing Helpers ─────────────────────────────────────────────────────────


def parse_float(text: str) -> float:
    match = _LEADING_FLOAT.match(text)
    if match is None:
        return math.nan
    return float(match.group(0))


def parse_int(text: str) -> int | float:
    match = _LEADING_INT.match(text)
    if match is None:
        return math.nan
    try:
        return int(match.group(0), 10)
    except ValueError:
        # Beyond the interpreter's int string conversion limit
        return math.nan


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value: Any) -> bool:
    """True for numbers representable as a finite float."""
    if not _is_number(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _stringify(value: Any) -> str:
    """Render a scalar the way the CRM API renders it (``true``, ``42``)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_iso(text: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(text.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _from_epoch(value: int | float, per_second: int = 1) -> datetime | None:
    try:
        return datetime.fromtimestamp(value / per_second, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


# ── Inbound (CRM -> CDP) ────────────────────────────────────────────────────


def coerce_inbound(field_def: FieldDefinition, value: Any) -> Any:
    """Translate a raw CRM value into its CDP representation.

    Unsupported data types yield None.
    """
    return _coerce_inbound_as(field_def.data_type, field_def, value)


def _coerce_inbound_as(data_type: str, field_def: FieldDefinition, value: Any) -> Any:
    if data_type in STRING_TYPES:
        if field_def.json_type == "jsonarray":
            return value
        return None if value is None else _stringify(value)

    if data_type in FLOAT_TYPES:
        return parse_float(value) if isinstance(value, str) else value

    if data_type in INTEGER_TYPES:
        return parse_int(value) if isinstance(value, str) else value

    if data_type == "boolean":
        return value

    if data_type in DATE_TYPES:
        parsed: datetime | None
        if isinstance(value, str):
            parsed = parse_iso(value)
        elif _is_number(value):
            parsed = _from_epoch(value, per_second=1000)
        else:
            return value
        return parsed.isoformat(timespec="milliseconds") if parsed else None

    if data_type == "lookup":
        return _project(value, ("id", "name"))

    if data_type == "ownerlookup":
        return _project(value, ("id", "name", "email"))

    if data_type == "multiselectlookup":
        # Only available through the related lists API
        return None

    if data_type == "formula":
        delegate = _FORMULA_DELEGATES.get(field_def.formula.return_type or "")
        if delegate is None:
            return value
        return _coerce_inbound_as(delegate, field_def, value)

    return None


def _project(value: Any, keys: tuple[str, ...]) -> dict[str, Any]:
    source = value if isinstance(value, dict) else {}
    return {key: source.get(key) for key in keys}


# ── Outbound (CDP -> CRM) ───────────────────────────────────────────────────


def coerce_outbound(
    field_def: FieldDefinition,
    value: Any,
    attribute: str | None = None,
    strict: bool = False,
) -> OutboundValue:
    """Validate and convert a CDP value for a CRM field.

    Args:
        field_def: Target CRM field.
        value: CDP attribute value (None when the profile lacks it).
        attribute: CDP attribute path, used in error messages.
        strict: Report unsupported data types as errors instead of skipping them.

    Returns:
        OutboundValue; a non-empty ``errors`` list means the value is unusable.
    """
    attribute_name = (attribute or field_def.api_name).replace("traits_", "", 1)
    data_type = field_def.data_type

    if data_type in OUTBOUND_STRING_TYPES:
        return _outbound_string(field_def, value, attribute_name)

    if data_type in FLOAT_TYPES:
        if value is None:
            return OutboundValue(None)
        number = parse_float(value) if isinstance(value, str) else value
        if not _is_finite_number(number):
            return _error(
                f"Value for attribute '{attribute_name}' mapped to field "
                f"'{field_def.display_label}' is not a finite number."
            )
        return OutboundValue(float(number))

    if data_type in INTEGER_TYPES:
        if value is None:
            return OutboundValue(None)
        number = parse_int(value) if isinstance(value, str) else value
        if not _is_finite_number(number):
            return _error(
                f"Value for attribute '{attribute_name}' mapped to field "
                f"'{field_def.display_label}' is not a finite number."
            )
        if isinstance(number, float) and number.is_integer():
            number = int(number)
        return OutboundValue(number)

    if data_type in DATE_TYPES:
        if value is None:
            return OutboundValue(None)
        parsed: datetime | None = None
        if isinstance(value, str):
            parsed = parse_iso(value)
        elif _is_number(value):
            parsed = _from_epoch(value)
        if parsed is None:
            return _error(
                f"Value for attribute '{attribute_name}' mapped to field "
                f"'{field_def.display_label}' is not a valid {data_type} value."
            )
        if data_type == "date":
            return OutboundValue(parsed.date().isoformat())
        # CRM rejects fractional seconds
        return OutboundValue(parsed.replace(microsecond=0).isoformat())

    if data_type == "boolean":
        if not isinstance(value, bool):
            return _error(
                f"Value for attribute '{attribute_name}' mapped to field "
                f"'{field_def.display_label}' is not a boolean."
            )
        return OutboundValue(value)

    if strict:
        return _error(
            f"Field '{field_def.display_label}' of type '{data_type}' cannot be "
            f"written from attribute '{attribute_name}'."
        )
    return OutboundValue(has_value=False)


def _outbound_string(field_def: FieldDefinition, value: Any, attribute_name: str) -> OutboundValue:
    if value is None:
        return OutboundValue(None)

    text = value if isinstance(value, str) else _stringify(value)

    if field_def.length is not None and len(text) > field_def.length:
        return _error(
            f"Value for attribute '{attribute_name}' exceeds maximum length of "
            f"{field_def.length} for field '{field_def.display_label}'."
        )

    if field_def.data_type == "picklist" and text not in field_def.allowed_values:
        return _error(
            f"Value '{text}' for attribute '{attribute_name}' is not valid for picklist "
            f"field '{field_def.display_label}'. Allowed values are "
            f"{', '.join(field_def.allowed_values)}."
        )

    return OutboundValue(text)


def _error(message: str) -> OutboundValue:
    return OutboundValue(errors=[message])


# ── Entry Point ─────────────────────────────────────────────────────────────


def coerce(
    field_def: FieldDefinition,
    value: Any,
    direction: Direction,
    attribute: str | None = None,
) -> Any | OutboundValue:
    """Coerce ``value`` for ``field_def`` in the given direction.

    Incoming returns the CDP value; outgoing returns an OutboundValue.
    """
    if direction == Direction.INCOMING:
        return coerce_inbound(field_def, value)
    return coerce_outbound(field_def, value, attribute)
