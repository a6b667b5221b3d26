"""Identity resolution: CRM record -> CDP identity claims.

Identity is the precondition for any inbound write, so resolution is
fail-closed: if a mapping marked ``required`` has no value on the record,
the whole record resolves to no identity rather than a partial one.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.app.sync.coercion import coerce_inbound
from src.app.sync.paths import get_path
from src.app.sync.schemas import (
    ConnectorSettings,
    CrmModule,
    CrmRecord,
    FieldDefinition,
    IdentityClaims,
    IdentityMapping,
)

logger = structlog.get_logger(__name__)


def anonymous_id(module: CrmModule, record_id: Any) -> str:
    """Deterministic anonymous id for a CRM record, e.g. ``zoho-lead:1``."""
    return f"{module.anonymous_id_prefix}:{record_id}"


class IdentityResolver:
    """Builds CDP identity claims from CRM records.

    Args:
        settings: Connector settings holding the identity mappings per module.
    """

    def __init__(self, settings: ConnectorSettings) -> None:
        self._settings = settings

    def resolve(
        self,
        module: str | CrmModule,
        record: CrmRecord,
        fields: list[FieldDefinition],
        mappings: list[IdentityMapping] | None = None,
    ) -> IdentityClaims | None:
        """Resolve identity claims for ``record``, or None.

        Args:
            module: CRM module the record belongs to.
            record: Raw CRM record (always carries ``id``).
            fields: Field definitions of the module.
            mappings: Identity mappings to apply; defaults to the
                connector's configured mappings for the module.

        Returns:
            Claims including ``anonymous_id``, or None when the module is
            unsupported or a required identity value is missing.
        """
        crm_module = module if isinstance(module, CrmModule) else CrmModule.parse(module)
        if crm_module is None:
            logger.warning("identity.module_unsupported", module=str(module))
            return None

        if mappings is None:
            mappings = self._settings.identity_mappings(crm_module)

        fields_by_name = {f.api_name: f for f in fields}
        claims: IdentityClaims = {"anonymous_id": anonymous_id(crm_module, record.get("id"))}

        for mapping in mappings:
            if mapping.hull is None or mapping.service is None:
                continue

            field_def = fields_by_name.get(mapping.service)
            if field_def is None:
                continue

            value = coerce_inbound(field_def, get_path(record, mapping.service))
            if value is None:
                if mapping.required is True:
                    logger.debug(
                        "identity.required_value_missing",
                        module=crm_module.value,
                        record_id=record.get("id"),
                        field=mapping.service,
                    )
                    return None
                continue

            claims[mapping.hull] = value

        return claims
