"""Pydantic schemas for CRM <-> CDP record synchronization.

Defines all structured types flowing through the sync engine:
- Enums: CrmModule, ObjectType, Direction, FetchType, AttributeOperation, EnvelopeOperation
- CRM schema: FieldDefinition, PicklistValue, FormulaInfo, UniqueInfo
- Mapping configuration: AttributeMapping, IdentityMapping, ConnectorSettings
- Mapping results: AttributeValue, OutboundRecord
- Outbound flow: Segment, UserMessage, AccountMessage, OutgoingEnvelope, FilteredEnvelopes
- Notifications: NotificationChannel, NotificationRequest
- Operator surfaces: MetadataOption, FieldsSchema, ConnectorStatus

CRM records and CDP identity claims stay plain dicts; their keys are
defined by the CRM schema and the mapping configuration at runtime.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

CrmRecord = dict[str, Any]
IdentityClaims = dict[str, Any]


# ── Enums ───────────────────────────────────────────────────────────────────


class ObjectType(str, Enum):
    """CDP profile type a CRM module synchronizes with."""

    USER = "user"
    ACCOUNT = "account"


class CrmModule(str, Enum):
    """CRM record collections kept in sync, by their API name."""

    LEADS = "Leads"
    CONTACTS = "Contacts"
    ACCOUNTS = "Accounts"

    @classmethod
    def parse(cls, name: str) -> CrmModule | None:
        """Resolve a route name (``leads``) or API name (``Leads``), else None."""
        for module in cls:
            if name in (module.value, module.value.lower()):
                return module
        return None

    @property
    def route_name(self) -> str:
        return self.value.lower()

    @property
    def object_type(self) -> ObjectType:
        return ObjectType.ACCOUNT if self is CrmModule.ACCOUNTS else ObjectType.USER

    @property
    def attribute_group(self) -> str:
        """CDP attribute group holding this module's synced attributes."""
        return _ATTRIBUTE_GROUPS[self]

    @property
    def anonymous_id_prefix(self) -> str:
        return self.attribute_group.replace("_", "-")

    @property
    def channel_offset(self) -> int:
        """Fixed offset added to the notification channel base id."""
        return _CHANNEL_OFFSETS[self]


_ATTRIBUTE_GROUPS = {
    CrmModule.LEADS: "zoho_lead",
    CrmModule.CONTACTS: "zoho_contact",
    CrmModule.ACCOUNTS: "zoho",
}

_CHANNEL_OFFSETS = {
    CrmModule.LEADS: 1,
    CrmModule.CONTACTS: 2,
    CrmModule.ACCOUNTS: 3,
}


class Direction(str, Enum):
    """Mapping direction relative to the CDP."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"


class FetchType(str, Enum):
    """Bulk fetch mode: everything, or only records modified recently."""

    FULL = "full"
    PARTIAL = "partial"


class AttributeOperation(str, Enum):
    SET = "set"
    SET_IF_NULL = "setIfNull"


class EnvelopeOperation(str, Enum):
    UPSERT = "upsert"
    SKIP = "skip"


# ── CRM Field Schema ────────────────────────────────────────────────────────


class PicklistValue(BaseModel):
    """One allowed value of a picklist field."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    display_value: str | None = None
    actual_value: str


class FormulaInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    return_type: str | None = None


class UniqueInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    casesensitive: str | None = None


class FieldDefinition(BaseModel):
    """CRM-side schema descriptor for one field of a module.

    Built from the CRM field metadata payload; keys the sync engine does
    not use are dropped.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    api_name: str
    display_label: str = ""
    data_type: str
    read_only: bool = False
    length: int | None = None
    pick_list_values: list[PicklistValue] = Field(default_factory=list)
    formula: FormulaInfo = Field(default_factory=FormulaInfo)
    json_type: str | None = None
    unique: UniqueInfo = Field(default_factory=UniqueInfo)

    @property
    def allowed_values(self) -> list[str]:
        return [p.actual_value for p in self.pick_list_values]


# ── Mapping Configuration ───────────────────────────────────────────────────


class AttributeMapping(BaseModel):
    """Pairs a CDP attribute path with a CRM field API name."""

    hull: str | None = None
    service: str | None = None
    overwrite: bool | None = None


class IdentityMapping(BaseModel):
    """Pairs a CDP identity claim with a CRM field API name."""

    hull: str | None = None
    service: str | None = None
    required: bool | None = None


class ConnectorSettings(BaseModel):
    """Versioned per-connector configuration.

    Operations never mutate a settings value in place: ``with_patch``
    returns the next version, and the patch itself is handed to the CDP
    client for persistence.
    """

    model_config = ConfigDict(frozen=True)

    version: int = 0

    lead_synchronized_segments: list[str] = Field(default_factory=list)
    identity_in_lead: list[IdentityMapping] = Field(default_factory=list)
    mapping_in_lead: list[AttributeMapping] = Field(default_factory=list)
    mapping_out_lead: list[AttributeMapping] = Field(default_factory=list)

    contact_synchronized_segments: list[str] = Field(default_factory=list)
    identity_in_contact: list[IdentityMapping] = Field(default_factory=list)
    mapping_in_contact: list[AttributeMapping] = Field(default_factory=list)
    mapping_out_contact: list[AttributeMapping] = Field(default_factory=list)

    account_synchronized_segments: list[str] = Field(default_factory=list)
    identity_in_account: list[IdentityMapping] = Field(default_factory=list)
    mapping_in_account: list[AttributeMapping] = Field(default_factory=list)
    mapping_out_account: list[AttributeMapping] = Field(default_factory=list)

    notifications_channelid_base: int | None = None
    notifications_channelid_lead: str | None = None
    notifications_channelid_contact: str | None = None
    notifications_channelid_account: str | None = None

    batch_users_module: CrmModule = CrmModule.LEADS
    crm_modules: list[str] | None = None

    def identity_mappings(self, module: CrmModule) -> list[IdentityMapping]:
        return getattr(self, f"identity_in_{_SETTINGS_SUFFIX[module]}")

    def inbound_mappings(self, module: CrmModule) -> list[AttributeMapping]:
        return getattr(self, f"mapping_in_{_SETTINGS_SUFFIX[module]}")

    def outbound_mappings(self, module: CrmModule) -> list[AttributeMapping]:
        return getattr(self, f"mapping_out_{_SETTINGS_SUFFIX[module]}")

    def synchronized_segments(self, module: CrmModule) -> list[str]:
        return getattr(self, f"{_SETTINGS_SUFFIX[module]}_synchronized_segments")

    @staticmethod
    def channel_setting(module: CrmModule) -> str:
        """Name of the setting storing the module's notification channel id."""
        return f"notifications_channelid_{_SETTINGS_SUFFIX[module]}"

    def with_patch(self, patch: dict[str, Any]) -> ConnectorSettings:
        """Return the next settings version with ``patch`` applied."""
        data = self.model_dump()
        data.update(patch)
        data["version"] = self.version + 1
        return ConnectorSettings.model_validate(data)


_SETTINGS_SUFFIX = {
    CrmModule.LEADS: "lead",
    CrmModule.CONTACTS: "contact",
    CrmModule.ACCOUNTS: "account",
}


# ── Mapping Results ─────────────────────────────────────────────────────────


class AttributeValue(BaseModel):
    """One CDP attribute write with its overwrite policy."""

    value: Any = None
    operation: AttributeOperation = AttributeOperation.SET


class OutboundRecord(BaseModel):
    """Result of mapping a CDP profile to a CRM record.

    Callers must not submit ``record`` when ``errors`` is non-empty.
    """

    record: CrmRecord = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# ── Outbound Messages ───────────────────────────────────────────────────────


class Segment(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None


class UserMessage(BaseModel):
    """CDP user change notification."""

    model_config = ConfigDict(extra="allow")

    user: dict[str, Any] = Field(default_factory=dict)
    segments: list[Segment] = Field(default_factory=list)


class AccountMessage(BaseModel):
    """CDP account change notification."""

    model_config = ConfigDict(extra="allow")

    account: dict[str, Any] = Field(default_factory=dict)
    account_segments: list[Segment] = Field(default_factory=list)


class OutgoingEnvelope(BaseModel):
    """A CDP message together with the decision on how to push it."""

    message: Union[UserMessage, AccountMessage]
    operation: EnvelopeOperation
    object_type: ObjectType
    target_module: CrmModule | None = None
    mapped_payload: CrmRecord | None = None
    notes: list[str] = Field(default_factory=list)

    @property
    def profile(self) -> dict[str, Any]:
        if isinstance(self.message, AccountMessage):
            return self.message.account
        return self.message.user


class FilteredEnvelopes(BaseModel):
    upserts: list[OutgoingEnvelope] = Field(default_factory=list)
    skips: list[OutgoingEnvelope] = Field(default_factory=list)


# ── Notifications ───────────────────────────────────────────────────────────


class NotificationChannel(BaseModel):
    """CRM-side webhook subscription for one module."""

    channel_id: str
    events: list[str]
    channel_expiry: str
    notify_url: str
    token: str | None = None


class NotificationRequest(BaseModel):
    """Change notification posted by the CRM for a watched module."""

    model_config = ConfigDict(extra="allow")

    module: str
    ids: list[str] = Field(default_factory=list)
    operation: str | None = None
    channel_id: str | None = None
    token: str | None = None


# ── Operator Surfaces ───────────────────────────────────────────────────────


class MetadataOption(BaseModel):
    value: str
    label: str


class FieldsSchema(BaseModel):
    """Field options offered to the mapping configuration UI."""

    ok: bool = True
    error: str | None = None
    options: list[MetadataOption] = Field(default_factory=list)


class ConnectorStatus(BaseModel):
    status: str = "ok"
    messages: list[str] = Field(default_factory=list)
