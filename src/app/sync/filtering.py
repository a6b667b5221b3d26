"""Segment-based filtering of outbound CDP change messages.

Decides per message whether it is pushed to the CRM and into which
module. Users in a lead allow-listed segment go to Leads even if they are
also in a contact allow-listed segment. Batch operations are explicit
operator requests, so they bypass the segment filters entirely.
"""

from __future__ import annotations

from collections.abc import Iterable

from src.app.sync.messages import batch_skip_filter, skip_not_in_any_segment
from src.app.sync.schemas import (
    AccountMessage,
    ConnectorSettings,
    CrmModule,
    EnvelopeOperation,
    FilteredEnvelopes,
    ObjectType,
    OutgoingEnvelope,
    Segment,
    UserMessage,
)


def is_in_any_segment(actual: Iterable[Segment], allowed: Iterable[str]) -> bool:
    """True if any of ``actual`` segment ids is in ``allowed``."""
    allowed_ids = set(allowed)
    return any(segment.id in allowed_ids for segment in actual)


class SegmentFilter:
    """Classifies outbound messages into upserts and skips.

    Args:
        settings: Connector settings holding segment allow-lists and the
            batch users module.
    """

    def __init__(self, settings: ConnectorSettings) -> None:
        self._settings = settings

    def filter_user(self, messages: list[UserMessage], is_batch: bool = False) -> FilteredEnvelopes:
        result = FilteredEnvelopes()
        lead_segments = self._settings.synchronized_segments(CrmModule.LEADS)
        contact_segments = self._settings.synchronized_segments(CrmModule.CONTACTS)

        for message in messages:
            if is_batch:
                result.upserts.append(
                    _upsert(
                        message,
                        ObjectType.USER,
                        self._settings.batch_users_module,
                        notes=[batch_skip_filter(ObjectType.USER.value)],
                    )
                )
            elif is_in_any_segment(message.segments, lead_segments):
                result.upserts.append(_upsert(message, ObjectType.USER, CrmModule.LEADS))
            elif is_in_any_segment(message.segments, contact_segments):
                result.upserts.append(_upsert(message, ObjectType.USER, CrmModule.CONTACTS))
            else:
                result.skips.append(_skip(message, ObjectType.USER))

        return result

    def filter_account(
        self, messages: list[AccountMessage], is_batch: bool = False
    ) -> FilteredEnvelopes:
        result = FilteredEnvelopes()
        account_segments = self._settings.synchronized_segments(CrmModule.ACCOUNTS)

        for message in messages:
            if is_batch:
                result.upserts.append(
                    _upsert(
                        message,
                        ObjectType.ACCOUNT,
                        CrmModule.ACCOUNTS,
                        notes=[batch_skip_filter(ObjectType.ACCOUNT.value)],
                    )
                )
            elif is_in_any_segment(message.account_segments, account_segments):
                result.upserts.append(_upsert(message, ObjectType.ACCOUNT, CrmModule.ACCOUNTS))
            else:
                result.skips.append(_skip(message, ObjectType.ACCOUNT))

        return result


def _upsert(
    message: UserMessage | AccountMessage,
    object_type: ObjectType,
    module: CrmModule,
    notes: list[str] | None = None,
) -> OutgoingEnvelope:
    return OutgoingEnvelope(
        message=message,
        operation=EnvelopeOperation.UPSERT,
        object_type=object_type,
        target_module=module,
        notes=notes or [],
    )


def _skip(message: UserMessage | AccountMessage, object_type: ObjectType) -> OutgoingEnvelope:
    return OutgoingEnvelope(
        message=message,
        operation=EnvelopeOperation.SKIP,
        object_type=object_type,
        notes=[skip_not_in_any_segment(object_type.value)],
    )
