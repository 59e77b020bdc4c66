"""Messages repository - idempotent upsert and guarded in-place updates.

Uses raw SQL with psycopg2 (no ORM). Every write is keyed on
(channel_id, wa_message_id); cross-delivery ordering is enforced by the
predicates below, never by read-then-write in application code.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatsync.domain.models import STATUS_RANK, TERMINAL_STATUS


def _rank_sql(expr: str) -> str:
    whens = " ".join(f"WHEN '{status}' THEN {rank}" for status, rank in STATUS_RANK.items())
    return f"(CASE {expr} {whens} ELSE -1 END)"


def status_progression_sql(current: str, new: str) -> str:
    """SQL predicate mirroring domain.models.is_status_progression()."""
    return (
        f"({new} IS NOT NULL AND ("
        f"{current} IS NULL"
        f" OR ({new} = '{TERMINAL_STATUS}' AND {current} <> '{TERMINAL_STATUS}')"
        f" OR ({new} <> '{TERMINAL_STATUS}' AND {current} <> '{TERMINAL_STATUS}'"
        f" AND {_rank_sql(current)} < {_rank_sql(new)})"
        f"))"
    )


_UPSERT_SQL = f"""
    INSERT INTO messages (
        workspace_id, channel_id, chat_id, wa_message_id, direction,
        message_type, text, media_url, storage_path, media_metadata,
        is_view_once, status, sender_wa_id, sender_name, created_at
    )
    VALUES (
        %(workspace_id)s, %(channel_id)s, %(chat_id)s, %(wa_message_id)s, %(direction)s,
        %(message_type)s, %(text)s, %(media_url)s, %(storage_path)s, %(media_metadata)s::jsonb,
        %(is_view_once)s, %(status)s, %(sender_wa_id)s, %(sender_name)s, %(created_at)s
    )
    ON CONFLICT (channel_id, wa_message_id) DO UPDATE SET
        chat_id = EXCLUDED.chat_id,
        direction = EXCLUDED.direction,
        message_type = EXCLUDED.message_type,
        text = CASE WHEN messages.edited_at IS NOT NULL THEN messages.text ELSE EXCLUDED.text END,
        media_url = CASE
            WHEN messages.storage_path IS NOT NULL AND EXCLUDED.storage_path IS NULL THEN messages.media_url
            ELSE COALESCE(EXCLUDED.media_url, messages.media_url)
        END,
        media_metadata = CASE
            WHEN messages.storage_path IS NOT NULL AND EXCLUDED.storage_path IS NULL THEN messages.media_metadata
            ELSE COALESCE(EXCLUDED.media_metadata, messages.media_metadata)
        END,
        storage_path = COALESCE(EXCLUDED.storage_path, messages.storage_path),
        is_view_once = EXCLUDED.is_view_once,
        status = CASE
            WHEN {status_progression_sql("messages.status", "EXCLUDED.status")} THEN EXCLUDED.status
            ELSE messages.status
        END,
        sender_wa_id = EXCLUDED.sender_wa_id,
        sender_name = EXCLUDED.sender_name,
        created_at = CASE WHEN %(has_timestamp)s THEN EXCLUDED.created_at ELSE messages.created_at END,
        updated_at = now()
    RETURNING id, (xmax = 0) AS inserted, status, created_at
"""


def upsert_message(cur: PgCursor, record: dict[str, Any]) -> tuple[str, bool, str | None, datetime]:
    """Insert or update a message by (channel_id, wa_message_id).

    On conflict, state owned by later events survives the redelivery:
    status only moves forward, edited text is kept, and persisted media is
    not replaced by a provider link.

    Args:
        cur: Database cursor (within transaction).
        record: Column values; `media_metadata` as a dict or None. Without
            `has_timestamp` the stored created_at is kept on conflict.

    Returns:
        Tuple of (message_id, inserted, status, created_at). `inserted` is
        False on redelivery; `status` and `created_at` are the stored values
        after conflict resolution.
    """
    params = dict(record)
    metadata = params.get("media_metadata")
    params["media_metadata"] = json.dumps(metadata) if metadata else None
    params.setdefault("has_timestamp", False)

    cur.execute(_UPSERT_SQL, params)
    row = cur.fetchone()
    return (str(row[0]), bool(row[1]), row[2], row[3])


def update_status_if_progression(
    cur: PgCursor,
    *,
    channel_id: str,
    wa_message_id: str,
    status: str,
) -> tuple[str, str, datetime] | None:
    """Advance an outbound message's status in one conditional statement.

    Returns:
        (message_id, chat_id, created_at) when a row changed, else None
        (unknown message, inbound message, or not a progression).
    """
    cur.execute(
        f"""
        UPDATE messages
        SET status = %(status)s, updated_at = now()
        WHERE channel_id = %(channel_id)s
          AND wa_message_id = %(wa_message_id)s
          AND direction = 'outbound'
          AND {status_progression_sql("status", "%(status)s::text")}
        RETURNING id, chat_id, created_at
        """,
        {"status": status, "channel_id": channel_id, "wa_message_id": wa_message_id},
    )
    row = cur.fetchone()
    if row is None:
        return None
    return (str(row[0]), str(row[1]), row[2])


def apply_edit(
    cur: PgCursor,
    *,
    channel_id: str,
    wa_message_id: str,
    text: str,
    edited_at: datetime,
) -> int:
    """Replace message text. Returns number of rows updated (0 or 1)."""
    cur.execute(
        """
        UPDATE messages
        SET text = %s, edited_at = %s, updated_at = now()
        WHERE channel_id = %s AND wa_message_id = %s
        """,
        (text, edited_at, channel_id, wa_message_id),
    )
    return cur.rowcount


def soft_delete(
    cur: PgCursor,
    *,
    channel_id: str,
    wa_message_id: str,
    deleted_at: datetime,
) -> int:
    """Set deleted_at once. Returns 0 if unknown or already deleted."""
    cur.execute(
        """
        UPDATE messages
        SET deleted_at = %s, updated_at = now()
        WHERE channel_id = %s AND wa_message_id = %s AND deleted_at IS NULL
        """,
        (deleted_at, channel_id, wa_message_id),
    )
    return cur.rowcount
