"""Delivery status reconciliation for outbound messages."""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatsync.domain.chat_aggregate import propagate_status
from chatsync.domain.models import ProcessingResult
from chatsync.infra.repositories import messages_repository
from chatsync.whapi import fields


def apply_status(cur: PgCursor, channel_id: str, item: dict[str, Any]) -> ProcessingResult:
    """Apply one status/ack item.

    Status only moves forward (pending < sent < delivered < read); `failed`
    wins over anything but itself. The rank check runs inside the UPDATE so
    concurrent out-of-order events cannot downgrade a message.
    """
    wa_message_id = fields.message_id(item)
    if not wa_message_id:
        return ProcessingResult.skip("Missing message ID in status event")

    raw = item.get("status")
    if raw is None:
        raw = item.get("ack")
    new_status = fields.map_message_status(raw)
    if new_status is None:
        return ProcessingResult.ignored("Unknown status value")

    updated = messages_repository.update_status_if_progression(
        cur,
        channel_id=channel_id,
        wa_message_id=wa_message_id,
        status=new_status,
    )

    chat_updated = False
    if updated is not None:
        _, chat_id, created_at = updated
        chat_updated = propagate_status(
            cur,
            chat_id=chat_id,
            message_created_at=created_at,
            status=new_status,
        )

    return ProcessingResult(
        success=True,
        action="status_updated",
        details={
            "wa_message_id": wa_message_id,
            "new_status": new_status,
            "updated": updated is not None,
            "chat_updated": chat_updated,
        },
    )
