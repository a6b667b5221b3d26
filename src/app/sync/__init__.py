"""CRM <-> CDP record synchronization engine.

Provides:
- FieldCoercion (coerce, coerce_inbound, coerce_outbound): type-driven value translation
- IdentityResolver: fail-closed CRM record -> CDP identity claims
- AttributeMapper: CRM record <-> CDP attribute mapping in both directions
- SegmentFilter: outbound message classification by segment membership
- SchemaCache: TTL read-through cache for CRM field metadata
- SyncOrchestrator: fetch, webhook, outbound and notification-channel flows

Collaborators (CRM client, CDP client, distributed cache) are injected as
implementations of the ABCs in ``clients``.
"""

from src.app.sync.attributes import AttributeMapper
from src.app.sync.cache import SchemaCache
from src.app.sync.clients import CdpClient, CrmClient, DistributedCache
from src.app.sync.coercion import coerce, coerce_inbound, coerce_outbound
from src.app.sync.errors import ConfigurationError, SyncError, UpstreamError, ValidationError
from src.app.sync.filtering import SegmentFilter
from src.app.sync.identity import IdentityResolver
from src.app.sync.orchestrator import SyncOrchestrator

__all__ = [
    "AttributeMapper",
    "CdpClient",
    "ConfigurationError",
    "CrmClient",
    "DistributedCache",
    "IdentityResolver",
    "SchemaCache",
    "SegmentFilter",
    "SyncError",
    "SyncOrchestrator",
    "UpstreamError",
    "ValidationError",
    "coerce",
    "coerce_inbound",
    "coerce_outbound",
]
