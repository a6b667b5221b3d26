"""Top-level CRM <-> CDP synchronization orchestrator.

Coordinates every sync path of one connector:
- Bulk fetch (CRM -> CDP), paged and guarded by a distributed fetch lock
  so only one run per (connector, module) is ever active
- Webhook handling for near-real-time inbound changes
- Outbound CDP messages: segment filter, outbound mapping, one bulk upsert
  per CRM module, and write-back of the echoed rows
- Notification channel lifecycle (register, renew, reset on failure)
- Metadata listings for the mapping configuration UI

Nothing here is fatal to the process. Every failure is logged with the
correlation key and resolves to a defined result; the only exception
callers see is ConfigurationError from the fetch_records entry guard.

All I/O is awaited sequentially, in message order, with no fan-out.
Bulk upsert responses are matched to requests by array position, so
the order of envelopes must survive from filtering to response zipping.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.app.config import Settings, get_settings
from src.app.sync.attributes import AttributeMapper
from src.app.sync.cache import SchemaCache
from src.app.sync.clients import CdpClient, CrmClient, DistributedCache
from src.app.sync.coercion import parse_iso
from src.app.sync.errors import ConfigurationError, ValidationError
from src.app.sync.filtering import SegmentFilter
from src.app.sync.identity import IdentityResolver
from src.app.sync.messages import (
    ERROR_UNHANDLED_GENERIC,
    INCOMING_MAPPING_FAILED,
    OUTGOING_API_REJECTED,
    OUTGOING_INVALID_DATA,
    STATUS_SETUP_REQUIRED_NO_MODULES,
    skip_missing_required_identity,
)
from src.app.sync.schemas import (
    AccountMessage,
    AttributeValue,
    ConnectorSettings,
    ConnectorStatus,
    CrmModule,
    CrmRecord,
    Direction,
    FetchType,
    FieldDefinition,
    FieldsSchema,
    FilteredEnvelopes,
    IdentityClaims,
    MetadataOption,
    NotificationChannel,
    NotificationRequest,
    ObjectType,
    OutgoingEnvelope,
    UserMessage,
)

logger = structlog.get_logger(__name__)

MODIFIED_TIME_FIELD = "Modified_Time"

# Profile keys the CDP accepts as identity claims
CLAIM_KEYS = ("id", "external_id", "email", "domain", "anonymous_id")

# CRM duplicate-check fields offered for identity mapping in addition to unique fields
_DEFAULT_IDENTITY_FIELDS = {
    (CrmModule.LEADS, Direction.INCOMING): "Email",
    (CrmModule.LEADS, Direction.OUTGOING): "Email",
    (CrmModule.CONTACTS, Direction.INCOMING): "Email",
    (CrmModule.CONTACTS, Direction.OUTGOING): "Email",
    (CrmModule.ACCOUNTS, Direction.INCOMING): "Website",
    (CrmModule.ACCOUNTS, Direction.OUTGOING): "Account_Name",
}


def fetch_lock_key(connector_id: str, module: CrmModule) -> str:
    return f"{connector_id}_fetchlock_{module.route_name}"


def profile_claims(profile: dict[str, Any]) -> IdentityClaims:
    """Identity claims addressing the CDP profile an outbound message came from."""
    return {key: profile[key] for key in CLAIM_KEYS if profile.get(key) is not None}


def _attribute_payload(attributes: dict[str, AttributeValue]) -> dict[str, Any]:
    return {
        name: {"value": attr.value, "operation": attr.operation.value}
        for name, attr in attributes.items()
    }


def _watch_succeeded(response: dict[str, Any]) -> bool:
    watch = response.get("watch") or []
    return bool(watch) and watch[0].get("status") == "success"


class SyncOrchestrator:
    """Coordinates all sync operations of one connector.

    Args:
        connector_id: Connector identifier, used to scope cache keys.
        settings: Current versioned connector settings.
        crm: CRM API client.
        cdp: CDP client for profile writes, diagnostics and settings persistence.
        cache: Distributed cache backing field metadata and fetch locks.
        config: Application settings. Defaults to ``get_settings()``.
        correlation_key: Key attached to every log entry of this unit of work.
        notify_token: Token embedded in the notification callback URL.
    """

    def __init__(
        self,
        connector_id: str,
        settings: ConnectorSettings,
        crm: CrmClient,
        cdp: CdpClient,
        cache: DistributedCache,
        config: Settings | None = None,
        correlation_key: str | None = None,
        notify_token: str = "",
    ) -> None:
        self._connector_id = connector_id
        self._crm = crm
        self._cdp = cdp
        self._cache = cache
        self._config = config or get_settings()
        self._schema_cache = SchemaCache(cache)
        self._notify_token = notify_token
        self._correlation_key = correlation_key or str(uuid.uuid4())
        self._log = logger.bind(
            connector_id=connector_id,
            correlation_key=self._correlation_key,
        )
        self._apply_settings(settings)

    @property
    def settings(self) -> ConnectorSettings:
        return self._settings

    def _apply_settings(self, settings: ConnectorSettings) -> None:
        self._settings = settings
        self._identity = IdentityResolver(settings)
        self._attributes = AttributeMapper(
            settings, strict_outbound_types=self._config.STRICT_OUTBOUND_TYPES
        )
        self._filter = SegmentFilter(settings)

    async def _persist(self, patch: dict[str, Any]) -> None:
        """Persist a settings patch and move to the next settings version."""
        await self._cdp.update_settings(patch)
        self._apply_settings(self._settings.with_patch(patch))

    async def _get_fields(self, module: CrmModule) -> list[FieldDefinition]:
        return await self._schema_cache.get_fields(
            self._connector_id,
            module.route_name,
            lambda: self._crm.get_fields(module.value),
            self._config.FIELDS_CACHE_TTL_SECONDS,
        )

    async def _write(
        self,
        object_type: ObjectType,
        claims: IdentityClaims,
        attributes: dict[str, AttributeValue],
    ) -> None:
        payload = _attribute_payload(attributes)
        if object_type == ObjectType.ACCOUNT:
            await self._cdp.write_account(claims, payload)
        else:
            await self._cdp.write_user(claims, payload)

    # ── Inbound: bulk fetch ─────────────────────────────────────────────────

    async def fetch_records(self, module: str, fetch_type: str | FetchType) -> None:
        """Fetch all (or recently modified) records of ``module`` into the CDP.

        Raises:
            ConfigurationError: ``module`` or ``fetch_type`` is not supported.
                Raised before any I/O; all later errors are logged instead.
        """
        crm_module = CrmModule.parse(module)
        if crm_module is None:
            raise ConfigurationError(
                f"Requested module '{module}' is not supported. Currently supported are "
                f"the following entries: {', '.join(m.route_name for m in CrmModule)}"
            )
        try:
            fetch = FetchType(fetch_type)
        except ValueError:
            raise ConfigurationError(
                f"Requested fetch type '{fetch_type}' is not supported. Currently supported "
                f"are the following entries: {', '.join(t.value for t in FetchType)}"
            ) from None

        lock_key = fetch_lock_key(self._connector_id, crm_module)
        log = self._log.bind(module=crm_module.value, fetch_type=fetch.value)
        acquired = False

        try:
            acquired = await self._cache.add(
                lock_key,
                {"timestamp": datetime.now(timezone.utc).isoformat()},
                self._config.FETCH_LOCK_TTL_SECONDS,
            )
            if not acquired:
                log.info("sync.fetch_locked", lock_key=lock_key)
                return

            log.info("sync.fetch_started")
            fields = await self._get_fields(crm_module)
            processed = await self._fetch_pages(crm_module, fetch, fields)
            log.info("sync.fetch_complete", processed=processed)

        except Exception as exc:
            log.error(
                "sync.fetch_failed",
                error=str(exc),
                details=getattr(exc, "details", None),
                exc_info=True,
            )
        finally:
            if acquired:
                try:
                    await self._cache.delete(lock_key)
                except Exception as exc:
                    log.error("sync.fetch_lock_release_failed", lock_key=lock_key, error=str(exc))

    async def _fetch_pages(
        self,
        module: CrmModule,
        fetch_type: FetchType,
        fields: list[FieldDefinition],
    ) -> int:
        """Page through the module, newest first when the CRM can sort by modification."""
        sortable = any(f.api_name == MODIFIED_TIME_FIELD for f in fields)
        horizon = datetime.now(timezone.utc) - timedelta(
            minutes=self._config.PARTIAL_FETCH_HORIZON_MINUTES
        )
        partial = fetch_type == FetchType.PARTIAL and sortable

        page = 1
        processed = 0
        while True:
            response = await self._crm.list_records(
                module.value,
                page=page,
                per_page=self._config.FETCH_PAGE_SIZE,
                sort_by=MODIFIED_TIME_FIELD if sortable else None,
                sort_order="desc" if sortable else None,
            )
            has_more = bool((response.get("info") or {}).get("more_records", False))

            for record in response.get("data") or []:
                if partial and _modified_before(record, horizon):
                    # Newest-first: every later record is older still
                    has_more = False
                    break
                await self._process_inbound_record(module, record, fields)
                processed += 1

            if not has_more:
                return processed
            page += 1

    async def _process_inbound_record(
        self,
        module: CrmModule,
        record: CrmRecord,
        fields: list[FieldDefinition],
    ) -> bool:
        """Resolve, map and write one CRM record. Returns True if written."""
        object_type = module.object_type.value

        claims = self._identity.resolve(module, record, fields)
        if claims is None:
            self._cdp.log_entity(
                object_type,
                None,
                f"incoming.{object_type}.skip",
                reason=skip_missing_required_identity(str(record.get("id"))),
            )
            return False

        attributes = self._attributes.map_inbound(module, record, fields)
        if attributes is None:
            self._cdp.log_entity(
                object_type,
                claims,
                f"incoming.{object_type}.error",
                message=INCOMING_MAPPING_FAILED.format(object_type=object_type),
            )
            return False

        await self._write(module.object_type, claims, attributes)
        return True

    # ── Inbound: webhook ────────────────────────────────────────────────────

    async def handle_webhook(self, notification: NotificationRequest) -> None:
        """Sync the records named in a CRM change notification."""
        log = self._log.bind(module=notification.module, ids=len(notification.ids))

        crm_module = CrmModule.parse(notification.module)
        if crm_module is None:
            log.warning("sync.webhook_module_unsupported")
            return

        try:
            fields = await self._get_fields(crm_module)
        except Exception as exc:
            log.error("sync.webhook_metadata_failed", error=str(exc), exc_info=True)
            return

        for record_id in notification.ids:
            try:
                response = await self._crm.get_specific_record(crm_module.value, record_id)
                records = response.get("data") or []
                if len(records) != 1:
                    log.error("sync.webhook_record_missing", record_id=record_id, count=len(records))
                    continue
                await self._process_inbound_record(crm_module, records[0], fields)
            except Exception as exc:
                log.error(
                    "sync.webhook_record_failed",
                    record_id=record_id,
                    error=str(exc),
                    details=getattr(exc, "details", None),
                )

    # ── Outbound ────────────────────────────────────────────────────────────

    def _module_enabled(self, module: CrmModule) -> bool:
        modules = self._settings.crm_modules
        return modules is None or module.value in modules

    async def send_user_messages(self, messages: list[UserMessage], is_batch: bool = False) -> None:
        """Push CDP user changes to Leads/Contacts. Never raises."""
        log = self._log.bind(operation="send_user_messages", is_batch=is_batch, count=len(messages))
        try:
            if not (
                self._module_enabled(CrmModule.LEADS) or self._module_enabled(CrmModule.CONTACTS)
            ):
                log.debug("sync.outbound_modules_unavailable")
                return

            filtered = self._filter.filter_user(messages, is_batch)
            await self._send_envelopes(filtered, log)
        except Exception as exc:
            log.error("sync.send_user_messages_failed", error=str(exc), exc_info=True)

    async def send_account_messages(
        self, messages: list[AccountMessage], is_batch: bool = False
    ) -> None:
        """Push CDP account changes to Accounts. Never raises."""
        log = self._log.bind(operation="send_account_messages", is_batch=is_batch, count=len(messages))
        try:
            if not self._module_enabled(CrmModule.ACCOUNTS):
                log.debug("sync.outbound_modules_unavailable")
                return

            filtered = self._filter.filter_account(messages, is_batch)
            await self._send_envelopes(filtered, log)
        except Exception as exc:
            log.error("sync.send_account_messages_failed", error=str(exc), exc_info=True)

    async def _send_envelopes(self, filtered: FilteredEnvelopes, log: Any) -> None:
        for skipped in filtered.skips:
            self._cdp.log_entity(
                skipped.object_type.value,
                profile_claims(skipped.profile),
                f"outgoing.{skipped.object_type.value}.skip",
                reason=" ".join(skipped.notes),
            )

        targets = [m for m in CrmModule if any(e.target_module is m for e in filtered.upserts)]
        if not targets:
            log.debug("sync.outbound_noop", skipped=len(filtered.skips))
            return

        fields_by_module = {module: await self._get_fields(module) for module in targets}

        for module in targets:
            envelopes = [e for e in filtered.upserts if e.target_module is module]
            await self._submit_module(module, envelopes, fields_by_module[module], log)

    async def _submit_module(
        self,
        module: CrmModule,
        envelopes: list[OutgoingEnvelope],
        fields: list[FieldDefinition],
        log: Any,
    ) -> None:
        """Map, bulk upsert and write back one module's envelopes."""
        object_type = module.object_type.value
        ready: list[OutgoingEnvelope] = []

        for envelope in envelopes:
            mapped = self._attributes.map_outbound(module, envelope.profile, fields)
            if not mapped.ok:
                invalid = ValidationError(mapped.errors)
                self._cdp.log_entity(
                    object_type,
                    profile_claims(envelope.profile),
                    f"outgoing.{object_type}.error",
                    message=OUTGOING_INVALID_DATA,
                    errors=invalid.errors,
                )
                log.warning("sync.outbound_invalid", module=module.value, error=str(invalid))
                continue
            envelope.mapped_payload = mapped.record
            ready.append(envelope)

        if not ready:
            return

        try:
            response = await self._crm.upsert_records(
                module.value, [e.mapped_payload or {} for e in ready]
            )
        except Exception as exc:
            log.error(
                "sync.upsert_failed",
                module=module.value,
                records=len(ready),
                error=str(exc),
                details=getattr(exc, "details", None),
            )
            return

        rows = response.get("data") or []
        if len(rows) != len(ready):
            log.warning(
                "sync.upsert_response_mismatch",
                module=module.value,
                sent=len(ready),
                received=len(rows),
            )

        written = 0
        for envelope, row in zip(ready, rows):
            claims = profile_claims(envelope.profile)
            if row.get("status") != "success":
                self._cdp.log_entity(
                    object_type,
                    claims,
                    f"outgoing.{object_type}.error",
                    message=OUTGOING_API_REJECTED,
                    details=row,
                )
                continue

            try:
                attributes = self._attributes.map_inbound(module, row.get("details") or {}, fields)
                if attributes is not None:
                    await self._write(module.object_type, claims, attributes)
                self._cdp.log_entity(
                    object_type,
                    claims,
                    f"outgoing.{object_type}.success",
                    module=module.value,
                    action=row.get("action"),
                )
                written += 1
            except Exception as exc:
                log.error("sync.writeback_failed", module=module.value, error=str(exc))

        log.info("sync.upsert_complete", module=module.value, sent=len(ready), written=written)

    # ── Metadata ────────────────────────────────────────────────────────────

    async def _metadata_fields(self, object_type: str) -> tuple[CrmModule, list[FieldDefinition]]:
        crm_module = CrmModule.parse(object_type)
        if crm_module is None:
            raise ConfigurationError(f"Object type '{object_type}' is not supported.")
        return crm_module, await self._get_fields(crm_module)

    def _metadata_failed(self, object_type: str, exc: Exception) -> FieldsSchema:
        self._log.error("sync.metadata_failed", object_type=object_type, error=str(exc))
        return FieldsSchema(ok=False, error=str(exc) or ERROR_UNHANDLED_GENERIC)

    async def list_metadata(self, object_type: str, direction: str) -> FieldsSchema:
        """Fields available for attribute mapping in ``direction``."""
        try:
            _, fields = await self._metadata_fields(object_type)
        except Exception as exc:
            return self._metadata_failed(object_type, exc)

        outgoing = direction == Direction.OUTGOING
        return FieldsSchema(
            options=[
                MetadataOption(value=f.api_name, label=f.display_label)
                for f in fields
                if f.data_type != "subform" and not (outgoing and f.read_only)
            ]
        )

    async def list_metadata_identity(self, object_type: str, direction: str) -> FieldsSchema:
        """Fields usable as identity claims in ``direction``."""
        try:
            crm_module, fields = await self._metadata_fields(object_type)
        except Exception as exc:
            return self._metadata_failed(object_type, exc)

        outgoing = direction == Direction.OUTGOING
        options = [
            MetadataOption(value=f.api_name, label=f.display_label)
            for f in fields
            if f.unique.casesensitive is not None and not (outgoing and f.read_only)
        ]

        default_name = _DEFAULT_IDENTITY_FIELDS[
            (crm_module, Direction.OUTGOING if outgoing else Direction.INCOMING)
        ]
        default_field = next((f for f in fields if f.api_name == default_name), None)
        if default_field is not None and all(o.value != default_name for o in options):
            options.append(
                MetadataOption(value=default_field.api_name, label=default_field.display_label)
            )
        return FieldsSchema(options=options)

    # ── Notification Channels ───────────────────────────────────────────────

    def _channel(self, module: CrmModule, channel_id: str) -> NotificationChannel:
        expiry = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(
            hours=self._config.NOTIFICATION_CHANNEL_EXPIRY_HOURS
        )
        return NotificationChannel(
            channel_id=channel_id,
            events=[f"{module.value}.all"],
            channel_expiry=expiry.isoformat(),
            notify_url=f"{self._config.CRM_NOTIFY_URL_BASE}/notifications?token={self._notify_token}",
            token=self._connector_id,
        )

    async def ensure_notifications(self, modules: list[str] | None = None) -> ConnectorSettings:
        """Register or renew the notification channel of each module.

        Args:
            modules: CRM module API names available to the connector; when
                given, channels are only maintained for these.

        Returns:
            The settings version after all channel id changes.
        """
        base = self._settings.notifications_channelid_base or self._config.NOTIFICATION_CHANNEL_BASE

        for module in CrmModule:
            if modules is not None and module.value not in modules:
                continue

            setting = ConnectorSettings.channel_setting(module)
            channel_id = getattr(self._settings, setting)
            if channel_id is None:
                await self._register_channel(module, str(base + module.channel_offset), setting)
            else:
                await self._renew_channel(module, channel_id, setting)

        return self._settings

    async def _register_channel(self, module: CrmModule, channel_id: str, setting: str) -> None:
        log = self._log.bind(module=module.value, channel_id=channel_id)
        try:
            response = await self._crm.enable_notifications([self._channel(module, channel_id)])
        except Exception as exc:
            log.error("sync.notifications_enable_failed", error=str(exc), details=getattr(exc, "details", None))
            return

        if not _watch_succeeded(response):
            log.error("sync.notifications_enable_failed", details=response)
            return

        await self._persist({setting: channel_id})
        log.info("sync.notifications_enabled")

    async def _renew_channel(self, module: CrmModule, channel_id: str, setting: str) -> None:
        log = self._log.bind(module=module.value, channel_id=channel_id)
        try:
            response = await self._crm.update_notification_details(
                [self._channel(module, channel_id)]
            )
            renewed = _watch_succeeded(response)
        except Exception as exc:
            log.warning("sync.notifications_renew_error", error=str(exc))
            renewed = False

        if renewed:
            log.debug("sync.notifications_renewed")
            return

        # Next run registers a fresh channel
        await self._persist({setting: None})
        log.warning("sync.notifications_reset")

    # ── Connector Status ────────────────────────────────────────────────────

    async def refresh_connector_status(self) -> ConnectorStatus:
        """Refresh the known CRM modules and keep notification channels alive."""
        status = ConnectorStatus()
        try:
            response = await self._crm.list_modules()
            module_names = [
                m["api_name"] for m in response.get("modules") or [] if m.get("api_name")
            ]
            await self._persist({"crm_modules": module_names})

            if not any(m.value in module_names for m in CrmModule):
                status.status = "setupRequired"
                status.messages.append(STATUS_SETUP_REQUIRED_NO_MODULES)
                return status

            await self.ensure_notifications(module_names)
        except Exception as exc:
            self._log.error("sync.connector_status_failed", error=str(exc), exc_info=True)
            status.status = "error"
            status.messages.append(str(exc) or ERROR_UNHANDLED_GENERIC)

        return status


def _modified_before(record: CrmRecord, horizon: datetime) -> bool:
    modified = record.get(MODIFIED_TIME_FIELD)
    if not isinstance(modified, str):
        return False
    parsed = parse_iso(modified)
    return parsed is not None and parsed < horizon
