"""Channel-level and chat-level events, plus phone-number discovery."""

from __future__ import annotations

from typing import Any

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from chatsync.domain.collaborators import Collaborators
from chatsync.domain.models import Channel, ProcessingResult
from chatsync.infra.db import txn
from chatsync.infra.repositories import channels_repository, chats_repository
from chatsync.infra.tokens import TokenDecryptionError
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import safe_log_context
from chatsync.whapi import fields

logger = get_logger(__name__)


def apply_channel_status(cur: PgCursor, channel: Channel, item: dict[str, Any]) -> ProcessingResult:
    raw = fields.channel_state(item)
    status = fields.map_channel_status(raw)
    if status is None:
        return ProcessingResult.ignored("Unmapped channel state")

    channels_repository.update_status(cur, channel.id, status)
    logger.info(
        "channel status updated",
        extra={"extra_fields": safe_log_context(channel_id=channel.id, status=status)},
    )
    return ProcessingResult(
        success=True,
        action="channel_status_updated",
        details={"status": status, "previous_status": channel.status},
    )


def apply_chat_event(cur: PgCursor, channel_id: str, item: dict[str, Any]) -> ProcessingResult:
    """Apply an archive toggle; other chat updates are acknowledged only."""
    wa_chat_id = fields.first(item.get("id"), fields.chat_id(item))
    if not wa_chat_id:
        return ProcessingResult.skip("Missing chat ID in chat event")

    archived = fields.archive_flag(item)
    if archived is None:
        return ProcessingResult.ignored("No supported chat change")

    updated = chats_repository.set_archived(
        cur,
        channel_id=channel_id,
        wa_chat_id=wa_chat_id,
        archived=archived,
    )
    return ProcessingResult(
        success=True,
        action="chat_archived",
        details={"archived": archived, "updated": updated > 0},
    )


def _phone_from_settings(channel: Channel, collaborators: Collaborators) -> str | None:
    token = collaborators.token_provider.get_token(channel.id)
    if not token:
        return None
    settings = collaborators.client_factory(token).get_settings()
    if not settings:
        return None
    return fields.phone_from_wa_id(fields.first(settings.get("wid"), settings.get("phone")))


def learn_channel_phone(
    channel: Channel,
    item: dict[str, Any],
    collaborators: Collaborators,
    conn: PgConnection | None = None,
) -> str | None:
    """Persist the channel's own phone number the first time traffic reveals it.

    Runs in its own transactions and never raises: the message being
    processed must not depend on this.

    Returns:
        The phone number stored by this call, or None.
    """
    try:
        with txn(conn) as cur:
            if channels_repository.get_phone_number(cur, channel.id):
                return None

        phone = fields.phone_from_wa_id(fields.channel_wa_id(item))
        if phone is None:
            phone = _phone_from_settings(channel, collaborators)
        if phone is None:
            return None

        with txn(conn) as cur:
            stored = channels_repository.set_phone_number_if_missing(cur, channel.id, phone)
    except (psycopg2.Error, RuntimeError, TokenDecryptionError) as e:
        logger.warning(
            "channel phone discovery failed",
            extra={"extra_fields": safe_log_context(channel_id=channel.id, error=type(e).__name__)},
        )
        return None

    if not stored:
        return None
    logger.info(
        "channel phone number learned",
        extra={"extra_fields": safe_log_context(channel_id=channel.id)},
    )
    return phone
