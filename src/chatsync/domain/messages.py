"""Message ingestion: one provider message item to one messages row.

Each item is handled on its own. Chat resolution and the message write run
in separate short transactions so no transaction stays open across
provider HTTP calls made while resolving media.
"""

from __future__ import annotations

from typing import Any

import psycopg2
from psycopg2.extensions import connection as PgConnection

from chatsync.bots.router import BotMessage
from chatsync.domain.channels import learn_channel_phone
from chatsync.domain.chat_aggregate import record_message
from chatsync.domain.collaborators import Collaborators
from chatsync.domain.media import resolve_media
from chatsync.domain.models import MEDIA_MESSAGE_TYPES, Channel, Chat, ProcessingResult, ResolvedMedia
from chatsync.infra.db import txn
from chatsync.infra.repositories import chats_repository, messages_repository
from chatsync.infra.time import from_unix, utc_now
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import id_prefix, safe_log_context
from chatsync.whapi import fields

logger = get_logger(__name__)

DEFAULT_OUTBOUND_STATUS = "sent"


def _outbound_status(item: dict[str, Any]) -> str:
    raw = item.get("status")
    if raw is None:
        raw = item.get("ack")
    return fields.map_message_status(raw) or DEFAULT_OUTBOUND_STATUS


def build_message_record(
    channel: Channel,
    chat: Chat,
    item: dict[str, Any],
    media: ResolvedMedia | None,
) -> dict[str, Any]:
    """Column values for messages_repository.upsert_message()."""
    direction = fields.direction(item)
    sent_at = from_unix(item.get("timestamp"))
    return {
        "workspace_id": channel.workspace_id,
        "channel_id": channel.id,
        "chat_id": chat.id,
        "wa_message_id": fields.message_id(item),
        "direction": direction,
        "message_type": fields.message_type(item),
        "text": fields.text_content(item),
        "media_url": media.url if media else None,
        "storage_path": media.storage_path if media else None,
        "media_metadata": media.metadata.to_dict() if media else None,
        "is_view_once": fields.is_view_once(item),
        "status": _outbound_status(item) if direction == "outbound" else None,
        "sender_wa_id": fields.sender_id(item),
        "sender_name": fields.sender_name(item),
        "created_at": sent_at or utc_now(),
        "has_timestamp": sent_at is not None,
    }


def _route_to_bot(
    channel: Channel,
    chat: Chat,
    record: dict[str, Any],
    collaborators: Collaborators,
) -> None:
    message = BotMessage(
        channel_id=channel.id,
        workspace_id=channel.workspace_id,
        chat_id=chat.id,
        wa_message_id=record["wa_message_id"],
        text=record["text"],
        message_type=record["message_type"],
        contact_id=record["sender_wa_id"] or chat.wa_chat_id,
        timestamp=record["created_at"],
    )
    try:
        collaborators.bot_router.route(message)
    except Exception as e:
        logger.warning(
            "bot routing failed",
            extra={
                "extra_fields": safe_log_context(
                    wa_message_id=id_prefix(message.wa_message_id),
                    error=type(e).__name__,
                )
            },
        )


def ingest_message(
    channel: Channel,
    item: dict[str, Any],
    collaborators: Collaborators,
    conn: PgConnection | None = None,
) -> ProcessingResult:
    """Upsert one message item and fold it into its chat.

    Missing ids are skipped; a datastore error fails this item only.
    """
    wa_message_id = fields.message_id(item)
    if not wa_message_id:
        return ProcessingResult.skip("Missing message ID")

    learn_channel_phone(channel, item, collaborators, conn)

    wa_chat_id = fields.chat_id(item)
    if not wa_chat_id:
        return ProcessingResult.skip("Missing chat ID")

    message_type = fields.message_type(item)
    direction = fields.direction(item)

    try:
        with txn(conn) as cur:
            chat = chats_repository.get_or_create_chat(cur, channel, wa_chat_id, item)

        media = None
        if message_type in MEDIA_MESSAGE_TYPES:
            media = resolve_media(
                item,
                message_type,
                channel.id,
                channel.workspace_id,
                collaborators,
                ephemeral=direction == "inbound" and fields.is_view_once(item),
            )

        record = build_message_record(channel, chat, item, media)
        with txn(conn) as cur:
            message_id, inserted, stored_status, created_at = messages_repository.upsert_message(cur, record)
            record["created_at"] = created_at
            record_message(
                cur,
                chat_id=chat.id,
                text=record["text"],
                message_type=message_type,
                timestamp=created_at,
                direction=direction,
                status=stored_status,
                is_new=inserted,
            )
    except (psycopg2.Error, ValueError) as e:
        logger.error(
            "message upsert failed",
            extra={
                "extra_fields": safe_log_context(
                    wa_message_id=id_prefix(wa_message_id),
                    error=type(e).__name__,
                )
            },
        )
        return ProcessingResult.failure(str(e).strip() or type(e).__name__)

    logger.info(
        "message upserted",
        extra={
            "extra_fields": safe_log_context(
                wa_message_id=id_prefix(wa_message_id),
                direction=direction,
                message_type=message_type,
                inserted=inserted,
                has_media=media is not None,
            )
        },
    )

    if direction == "inbound" and message_type == "text" and record["text"]:
        _route_to_bot(channel, chat, record, collaborators)

    return ProcessingResult(
        success=True,
        action="message_upserted",
        details={
            "message_id": message_id,
            "chat_id": chat.id,
            "wa_message_id": wa_message_id,
            "direction": direction,
            "type": message_type,
            "inserted": inserted,
            "has_media": media is not None,
        },
    )
