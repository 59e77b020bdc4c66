"""Chats repository - chat resolution and aggregate columns.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatsync.domain.models import Channel, Chat
from chatsync.whapi import fields

_CHAT_COLUMNS = "id, channel_id, wa_chat_id, is_group, display_name, last_message_at"


def _row_to_chat(row: tuple[Any, ...]) -> Chat:
    return Chat(
        id=str(row[0]),
        channel_id=str(row[1]),
        wa_chat_id=row[2],
        is_group=bool(row[3]),
        display_name=row[4],
        last_message_at=row[5],
    )


def get_chat_by_wa_id(cur: PgCursor, channel_id: str, wa_chat_id: str) -> Chat | None:
    cur.execute(
        f"SELECT {_CHAT_COLUMNS} FROM chats WHERE channel_id = %s AND wa_chat_id = %s",
        (channel_id, wa_chat_id),
    )
    row = cur.fetchone()
    return _row_to_chat(row) if row else None


def _refresh_contact_info(cur: PgCursor, chat: Chat, item: dict[str, Any]) -> None:
    """Prefer a real sender name over a phone-number placeholder."""
    updates: dict[str, Any] = {}

    name = fields.sender_name(item)
    if name and not chat.is_group and (not chat.display_name or chat.display_name.startswith("+")):
        updates["display_name"] = name

    if chat.is_group:
        participants = fields.group_info(item).get("participants")
        if participants:
            updates["group_participants"] = json.dumps(participants)

    if not updates:
        return

    assignments = ", ".join(
        f"{col} = %({col})s::jsonb" if col == "group_participants" else f"{col} = %({col})s"
        for col in updates
    )
    cur.execute(
        f"UPDATE chats SET {assignments}, updated_at = now() WHERE id = %(chat_id)s",
        {**updates, "chat_id": chat.id},
    )


def get_or_create_chat(
    cur: PgCursor,
    channel: Channel,
    wa_chat_id: str,
    item: dict[str, Any],
) -> Chat:
    """Return the chat for (channel, wa_chat_id), creating it on first sight.

    Concurrent first deliveries converge on a single row via ON CONFLICT.
    New chats start with last_message_at NULL so the first message always
    passes the freshness check.
    """
    existing = get_chat_by_wa_id(cur, channel.id, wa_chat_id)
    if existing is not None:
        _refresh_contact_info(cur, existing, item)
        return existing

    is_group = fields.is_group_chat(wa_chat_id, item)
    if is_group:
        group = fields.group_info(item)
        display_name = group.get("name") or "Unknown Group"
        phone_number = None
        participants = group.get("participants")
    else:
        phone_number = fields.phone_from_wa_id(wa_chat_id)
        display_name = fields.sender_name(item) or phone_number or wa_chat_id
        participants = None

    cur.execute(
        f"""
        INSERT INTO chats (
            workspace_id, channel_id, wa_chat_id, is_group, display_name,
            phone_number, group_participants, unread_count, is_archived
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, 0, false)
        ON CONFLICT (channel_id, wa_chat_id) DO UPDATE
        SET updated_at = now()
        RETURNING {_CHAT_COLUMNS}
        """,
        (
            channel.workspace_id,
            channel.id,
            wa_chat_id,
            is_group,
            display_name,
            phone_number,
            json.dumps(participants) if participants else None,
        ),
    )
    return _row_to_chat(cur.fetchone())


def update_last_message(
    cur: PgCursor,
    *,
    chat_id: str,
    preview: str | None,
    timestamp: datetime,
    direction: str,
    status: str | None,
    increment_unread: bool,
    tolerance: timedelta,
) -> bool:
    """Bump unread and, if the message is not stale, the last-message columns.

    The freshness comparison and the write happen in one statement against
    the locked row. last_message_at never moves backwards, even for a
    message accepted inside the tolerance window.

    Returns:
        True if the last-message columns were overwritten.
    """
    cur.execute(
        """
        WITH target AS (
            SELECT id,
                   (last_message_at IS NULL
                    OR %(ts)s >= last_message_at - %(tolerance)s) AS fresh
            FROM chats
            WHERE id = %(chat_id)s
            FOR UPDATE
        )
        UPDATE chats c
        SET unread_count = c.unread_count + %(increment)s,
            last_message_at = CASE WHEN target.fresh
                THEN GREATEST(c.last_message_at, %(ts)s) ELSE c.last_message_at END,
            last_message_preview = CASE WHEN target.fresh
                THEN COALESCE(%(preview)s, c.last_message_preview) ELSE c.last_message_preview END,
            last_message_direction = CASE WHEN target.fresh
                THEN %(direction)s ELSE c.last_message_direction END,
            last_message_status = CASE WHEN target.fresh
                THEN %(status)s ELSE c.last_message_status END,
            updated_at = now()
        FROM target
        WHERE c.id = target.id
        RETURNING target.fresh
        """,
        {
            "chat_id": chat_id,
            "ts": timestamp,
            "tolerance": tolerance,
            "increment": 1 if increment_unread else 0,
            "preview": preview,
            "direction": direction,
            "status": status,
        },
    )
    row = cur.fetchone()
    return bool(row and row[0])


def mark_chat_as_read(cur: PgCursor, chat_id: str) -> None:
    cur.execute(
        "UPDATE chats SET unread_count = 0, updated_at = now() WHERE id = %s",
        (chat_id,),
    )


def get_last_message_at(cur: PgCursor, chat_id: str) -> datetime | None:
    cur.execute("SELECT last_message_at FROM chats WHERE id = %s", (chat_id,))
    row = cur.fetchone()
    return row[0] if row else None


def set_last_message_status(cur: PgCursor, chat_id: str, status: str) -> None:
    cur.execute(
        "UPDATE chats SET last_message_status = %s, updated_at = now() WHERE id = %s",
        (status, chat_id),
    )


def set_archived(cur: PgCursor, *, channel_id: str, wa_chat_id: str, archived: bool) -> int:
    cur.execute(
        """
        UPDATE chats SET is_archived = %s, updated_at = now()
        WHERE channel_id = %s AND wa_chat_id = %s
        """,
        (archived, channel_id, wa_chat_id),
    )
    return cur.rowcount
