"""Collaborator interfaces the sync engine is written against.

The raw CRM REST client, the CDP client and the cache backend live outside
the engine. Each is an ABC here so the orchestrator can be wired with
explicit constructor arguments (production clients, or mocks in tests).

All CRM methods return the decoded JSON body and raise UpstreamError on
transport or API failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.app.sync.schemas import CrmRecord, IdentityClaims, NotificationChannel


class CrmClient(ABC):
    """Interface to the CRM REST API.

    Methods:
        get_fields: Field metadata for a module, ``{"fields": [...]}``.
        list_records: One page of records, ``{"data": [...], "info": {...}}``.
        get_specific_record: A single record, ``{"data": [record]}``.
        upsert_records: Bulk upsert, ``{"data": [row, ...]}`` aligned with the request.
        enable_notifications: Register channels, ``{"watch": [...]}``.
        update_notification_details: Renew channels, ``{"watch": [...]}``.
        list_modules: Modules available to the connector, ``{"modules": [...]}``.
    """

    @abstractmethod
    async def get_fields(self, module: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def list_records(
        self,
        module: str,
        page: int,
        per_page: int,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def get_specific_record(self, module: str, record_id: str) -> dict[str, Any]:
        ...

    @abstractmethod
    async def upsert_records(self, module: str, data: list[CrmRecord]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def enable_notifications(self, watch: list[NotificationChannel]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update_notification_details(
        self, watch: list[NotificationChannel]
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def list_modules(self) -> dict[str, Any]:
        ...


class CdpClient(ABC):
    """Interface to the customer data platform."""

    @abstractmethod
    async def write_user(self, claims: IdentityClaims, attributes: dict[str, Any]) -> None:
        """Write attributes to the user identified by ``claims``."""
        ...

    @abstractmethod
    async def write_account(self, claims: IdentityClaims, attributes: dict[str, Any]) -> None:
        """Write attributes to the account identified by ``claims``."""
        ...

    @abstractmethod
    def log_entity(
        self,
        object_type: str,
        claims: IdentityClaims | None,
        event: str,
        **details: Any,
    ) -> None:
        """Record a diagnostic entry on one profile (shown to operators)."""
        ...

    @abstractmethod
    async def update_settings(self, patch: dict[str, Any]) -> None:
        """Persist a partial connector settings update."""
        ...


class DistributedCache(ABC):
    """Key/value cache shared across all connector processes."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        ...

    @abstractmethod
    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Atomically set ``key`` only if absent. Returns True when written."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> int:
        ...
