"""Error taxonomy for the sync engine.

Only ConfigurationError is ever raised to callers, and only by the
fetch_records entry guard. Everything else is caught at the orchestrator
boundary and logged. Lock contention is not an error at all.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for sync engine errors."""


class ConfigurationError(SyncError):
    """Unsupported module, object type or fetch type."""


class ValidationError(SyncError):
    """Outbound coercion failures for one CDP profile.

    Mapping never raises this; the orchestrator uses it to report a
    dropped envelope with all collected messages.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class UpstreamError(SyncError):
    """A CRM, cache or CDP call failed."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details
