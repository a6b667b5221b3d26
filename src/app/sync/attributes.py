"""Attribute mapping between CRM records and CDP profiles.

Inbound, each configured mapping reads a CRM field, coerces it and emits a
CDP attribute write; lookup fields fan out into one attribute per projected
key (``owner_id``, ``owner_name``, ``owner_email``). Every inbound set ends
with ``<group>/id`` written as ``setIfNull`` so the first CRM id linked to
a profile is never overwritten.

Outbound, each mapping reads a CDP attribute and validates it against the
CRM field. Errors are collected for the whole profile; the caller decides
whether the record is usable.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.app.sync.coercion import LOOKUP_TYPES, coerce_inbound, coerce_outbound
from src.app.sync.paths import get_path
from src.app.sync.schemas import (
    AttributeMapping,
    AttributeOperation,
    AttributeValue,
    ConnectorSettings,
    CrmModule,
    CrmRecord,
    FieldDefinition,
    ObjectType,
    OutboundRecord,
)

logger = structlog.get_logger(__name__)


def _attribute_name(hull_path: str) -> str:
    return hull_path.replace("traits_", "", 1)


def _operation(mapping: AttributeMapping) -> AttributeOperation:
    if mapping.overwrite is False:
        return AttributeOperation.SET_IF_NULL
    return AttributeOperation.SET


class AttributeMapper:
    """Maps CRM records to CDP attribute sets and CDP profiles to CRM records.

    Args:
        settings: Connector settings holding attribute mappings per module.
        strict_outbound_types: Treat CRM field types that cannot be written
            as validation errors instead of silently leaving them out.
    """

    def __init__(self, settings: ConnectorSettings, strict_outbound_types: bool = False) -> None:
        self._settings = settings
        self._strict = strict_outbound_types

    @staticmethod
    def stored_id_attribute(module: CrmModule) -> str:
        """Profile path holding the CRM id previously synced for ``module``."""
        path = f"{module.attribute_group}/id"
        if module.object_type == ObjectType.USER:
            return f"traits_{path}"
        return path

    def map_inbound(
        self,
        module: str | CrmModule,
        record: CrmRecord,
        fields: list[FieldDefinition],
        mappings: list[AttributeMapping] | None = None,
    ) -> dict[str, AttributeValue] | None:
        """Build the CDP attribute set for a CRM record.

        Returns None for an unsupported module.
        """
        crm_module = module if isinstance(module, CrmModule) else CrmModule.parse(module)
        if crm_module is None:
            logger.warning("attributes.module_unsupported", module=str(module), direction="incoming")
            return None

        if mappings is None:
            mappings = self._settings.inbound_mappings(crm_module)

        fields_by_name = {f.api_name: f for f in fields}
        attributes: dict[str, AttributeValue] = {}

        for mapping in mappings:
            if mapping.hull is None or mapping.service is None:
                continue

            field_def = fields_by_name.get(mapping.service)
            if field_def is None:
                continue

            value = coerce_inbound(field_def, get_path(record, mapping.service))
            operation = _operation(mapping)
            name = _attribute_name(mapping.hull)

            if field_def.data_type in LOOKUP_TYPES:
                for key, part in value.items():
                    attributes[f"{name}_{key}"] = AttributeValue(value=part, operation=operation)
            else:
                attributes[name] = AttributeValue(value=value, operation=operation)

        attributes[f"{crm_module.attribute_group}/id"] = AttributeValue(
            value=record.get("id"),
            operation=AttributeOperation.SET_IF_NULL,
        )
        return attributes

    def map_outbound(
        self,
        module: str | CrmModule,
        profile: dict[str, Any],
        fields: list[FieldDefinition],
        mappings: list[AttributeMapping] | None = None,
    ) -> OutboundRecord:
        """Build the CRM record payload for a CDP profile.

        The record carries ``id`` when the profile was synced before, which
        turns the CRM upsert into an update.
        """
        crm_module = module if isinstance(module, CrmModule) else CrmModule.parse(module)
        if crm_module is None:
            message = f"Unsupported module type '{module}' for mapping a CDP profile to a CRM record."
            logger.warning("attributes.module_unsupported", module=str(module), direction="outgoing")
            return OutboundRecord(errors=[message])

        if mappings is None:
            mappings = self._settings.outbound_mappings(crm_module)

        fields_by_name = {f.api_name: f for f in fields}
        result = OutboundRecord()

        for mapping in mappings:
            if mapping.hull is None or mapping.service is None:
                continue

            field_def = fields_by_name.get(mapping.service)
            if field_def is None:
                continue

            coerced = coerce_outbound(
                field_def,
                get_path(profile, mapping.hull),
                attribute=mapping.hull,
                strict=self._strict,
            )
            if coerced.errors:
                result.errors.extend(coerced.errors)
            elif coerced.has_value:
                result.record[mapping.service] = coerced.value

        stored_id = get_path(profile, self.stored_id_attribute(crm_module))
        if stored_id is not None:
            result.record["id"] = stored_id

        return result
