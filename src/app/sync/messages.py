"""Operator-facing messages attached to envelopes, logs and status results."""

from __future__ import annotations

STATUS_SETUP_REQUIRED_NO_MODULES = "Connector setup incomplete: no CRM modules are available."
ERROR_UNHANDLED_GENERIC = "An unhandled error occurred and our engineering team has been notified."

INCOMING_MAPPING_FAILED = (
    "Failed to map CRM record fields to {object_type} attributes. "
    "Please make sure your mapping is correct."
)
OUTGOING_INVALID_DATA = "Invalid data."
OUTGOING_API_REJECTED = "API call rejected."


def skip_not_in_any_segment(object_type: str) -> str:
    return (
        f"CDP {object_type} won't be synchronized since it is not matching "
        "any of the filtered segments."
    )


def batch_skip_filter(object_type: str) -> str:
    return f"CDP {object_type} synchronized in batch operation. Segment filters not applied."


def skip_missing_required_identity(record_id: str) -> str:
    return (
        "One of the required identity fields is not present on the CRM record "
        f"with id '{record_id}'."
    )
