"""Channels repository - webhook lookup, learned phone number, status.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from chatsync.domain.models import Channel


def get_channel_with_secret(cur: PgCursor, channel_id: str) -> tuple[Channel, str | None] | None:
    """Load a channel and its webhook secret for request verification."""
    cur.execute(
        "SELECT id, workspace_id, status, webhook_secret FROM channels WHERE id = %s",
        (channel_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    channel = Channel(id=str(row[0]), workspace_id=str(row[1]), status=row[2])
    return channel, row[3]


def get_phone_number(cur: PgCursor, channel_id: str) -> str | None:
    cur.execute("SELECT phone_number FROM channels WHERE id = %s", (channel_id,))
    row = cur.fetchone()
    return row[0] if row else None


def set_phone_number_if_missing(cur: PgCursor, channel_id: str, phone_number: str) -> bool:
    """Record the channel's own number (and mark it active) only once.

    Returns:
        True if this call stored the number.
    """
    cur.execute(
        """
        UPDATE channels
        SET phone_number = %s, status = 'active', updated_at = now()
        WHERE id = %s AND phone_number IS NULL
        """,
        (phone_number, channel_id),
    )
    return cur.rowcount > 0


def update_status(cur: PgCursor, channel_id: str, status: str) -> int:
    cur.execute(
        "UPDATE channels SET status = %s, updated_at = now() WHERE id = %s",
        (status, channel_id),
    )
    return cur.rowcount
