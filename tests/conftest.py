"""Shared fixtures for sync engine tests.

Provides:
- InMemoryCache: DistributedCache fake with set-if-absent semantics
- Field metadata payloads for the Leads and Accounts modules
- A mocked CRM client (AsyncMock) and CDP client (MagicMock + AsyncMock writes)
- Default connector settings and application config
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.app.config import Settings
from src.app.sync.clients import DistributedCache
from src.app.sync.schemas import (
    AttributeMapping,
    ConnectorSettings,
    FieldDefinition,
    IdentityMapping,
)


class InMemoryCache(DistributedCache):
    """Dict-backed cache; TTLs are recorded but never expire."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any | None:
        return self.values.get(key)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self.values[key] = value
        self.ttls[key] = ttl

    async def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if key in self.values:
            return False
        await self.set(key, value, ttl)
        return True

    async def delete(self, key: str) -> int:
        self.ttls.pop(key, None)
        return 1 if self.values.pop(key, None) is not None else 0


# ── Field Metadata ──────────────────────────────────────────────────────────

LEAD_FIELDS: list[dict[str, Any]] = [
    {"api_name": "Email", "display_label": "Email", "data_type": "email", "length": 100},
    {"api_name": "First_Name", "display_label": "First Name", "data_type": "text", "length": 40},
    {"api_name": "Last_Name", "display_label": "Last Name", "data_type": "text", "length": 80},
    {
        "api_name": "Lead_Status",
        "display_label": "Lead Status",
        "data_type": "picklist",
        "length": 120,
        "pick_list_values": [
            {"display_value": "-None-", "actual_value": "-None-"},
            {"display_value": "Contacted", "actual_value": "Contacted"},
            {"display_value": "Qualified", "actual_value": "Qualified"},
        ],
    },
    {"api_name": "No_of_Employees", "display_label": "No. of Employees", "data_type": "integer", "length": 9},
    {"api_name": "Annual_Revenue", "display_label": "Annual Revenue", "data_type": "currency", "length": 16},
    {"api_name": "Owner", "display_label": "Lead Owner", "data_type": "ownerlookup", "length": 120},
    {"api_name": "Email_Opt_Out", "display_label": "Email Opt Out", "data_type": "boolean"},
    {
        "api_name": "Modified_Time",
        "display_label": "Modified Time",
        "data_type": "datetime",
        "read_only": True,
    },
    {
        "api_name": "Tag",
        "display_label": "Tag",
        "data_type": "text",
        "json_type": "jsonarray",
        "read_only": True,
    },
    {"api_name": "Related", "display_label": "Related", "data_type": "subform"},
]

ACCOUNT_FIELDS: list[dict[str, Any]] = [
    {
        "api_name": "Account_Name",
        "display_label": "Account Name",
        "data_type": "text",
        "length": 200,
        "unique": {"casesensitive": "false"},
    },
    {"api_name": "Website", "display_label": "Website", "data_type": "website", "length": 255},
    {"api_name": "Parent_Account", "display_label": "Parent Account", "data_type": "lookup"},
    {"api_name": "Employees", "display_label": "Employees", "data_type": "integer", "length": 9},
    {"api_name": "Modified_Time", "display_label": "Modified Time", "data_type": "datetime", "read_only": True},
]


@pytest.fixture
def lead_fields() -> list[FieldDefinition]:
    return [FieldDefinition.model_validate(f) for f in LEAD_FIELDS]


@pytest.fixture
def account_fields() -> list[FieldDefinition]:
    return [FieldDefinition.model_validate(f) for f in ACCOUNT_FIELDS]


@pytest.fixture
def connector_settings() -> ConnectorSettings:
    """Settings with lead/contact/account mappings and segment allow-lists."""
    return ConnectorSettings(
        lead_synchronized_segments=["seg-leads"],
        contact_synchronized_segments=["seg-contacts"],
        account_synchronized_segments=["seg-accounts"],
        identity_in_lead=[IdentityMapping(hull="email", service="Email", required=True)],
        identity_in_contact=[IdentityMapping(hull="email", service="Email", required=True)],
        identity_in_account=[IdentityMapping(hull="domain", service="Website", required=False)],
        mapping_in_lead=[
            AttributeMapping(hull="traits_zoho_lead/first_name", service="First_Name", overwrite=True),
            AttributeMapping(hull="traits_zoho_lead/owner", service="Owner", overwrite=False),
        ],
        mapping_out_lead=[
            AttributeMapping(hull="email", service="Email"),
            AttributeMapping(hull="last_name", service="Last_Name"),
        ],
        mapping_out_contact=[
            AttributeMapping(hull="email", service="Email"),
            AttributeMapping(hull="last_name", service="Last_Name"),
        ],
        mapping_in_account=[
            AttributeMapping(hull="zoho/name", service="Account_Name"),
        ],
        mapping_out_account=[
            AttributeMapping(hull="name", service="Account_Name"),
            AttributeMapping(hull="domain", service="Website"),
        ],
    )


@pytest.fixture
def config() -> Settings:
    return Settings(CRM_NOTIFY_URL_BASE="https://sync.example.com")


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def crm() -> AsyncMock:
    """CRM client mock serving lead/account metadata and one empty page."""
    client = AsyncMock()

    async def get_fields(module: str) -> dict[str, Any]:
        return {"fields": ACCOUNT_FIELDS if module == "Accounts" else LEAD_FIELDS}

    client.get_fields.side_effect = get_fields
    client.list_records.return_value = {
        "data": [],
        "info": {"more_records": False, "page": 1, "per_page": 200, "count": 0},
    }
    return client


@pytest.fixture
def cdp() -> MagicMock:
    client = MagicMock()
    client.write_user = AsyncMock()
    client.write_account = AsyncMock()
    client.update_settings = AsyncMock()
    return client
