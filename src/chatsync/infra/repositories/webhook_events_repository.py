"""Webhook event log - raw deliveries kept for debugging and replay.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def record_webhook_event(
    cur: PgCursor,
    *,
    channel_id: str,
    event_type: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
) -> int:
    """Store a raw delivery. Returns the event row id."""
    cur.execute(
        """
        INSERT INTO webhook_events (channel_id, event_type, payload, correlation_id)
        VALUES (%s, %s, %s::jsonb, %s)
        RETURNING id
        """,
        (channel_id, event_type, json.dumps(payload), correlation_id),
    )
    return cur.fetchone()[0]


def mark_webhook_event_processed(
    cur: PgCursor,
    event_id: int,
    *,
    action: str,
    error: str | None,
) -> None:
    cur.execute(
        """
        UPDATE webhook_events
        SET processed_at = now(), action = %s, error = %s
        WHERE id = %s
        """,
        (action, error, event_id),
    )
