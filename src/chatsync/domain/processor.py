"""Webhook event processor - single entry point for Whapi deliveries.

Raw payload -> CanonicalEvent -> per-kind handler. Every item of a batch
runs in its own transaction; one failing item never aborts its siblings.
"""

from __future__ import annotations

from typing import Any, Callable

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from chatsync.domain.channels import apply_channel_status, apply_chat_event
from chatsync.domain.collaborators import Collaborators
from chatsync.domain.edits import apply_action_item, apply_delete_item, apply_edit_item
from chatsync.domain.messages import ingest_message
from chatsync.domain.models import BatchOutcome, Channel, ProcessingResult
from chatsync.domain.statuses import apply_status
from chatsync.infra.db import txn
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import safe_log_context
from chatsync.whapi import fields
from chatsync.whapi.models import CanonicalEvent
from chatsync.whapi.normalizer import normalize

logger = get_logger(__name__)

ItemHandler = Callable[[PgCursor, dict[str, Any]], ProcessingResult]


def _in_txn(conn: PgConnection | None, handler: ItemHandler, item: dict[str, Any]) -> ProcessingResult:
    try:
        with txn(conn) as cur:
            return handler(cur, item)
    except (psycopg2.Error, ValueError) as e:
        logger.error(
            "item write failed",
            extra={"extra_fields": safe_log_context(error=type(e).__name__)},
        )
        return ProcessingResult.failure(str(e).strip() or type(e).__name__)


def _run_batch(
    action: str,
    event: CanonicalEvent,
    conn: PgConnection | None,
    handler: ItemHandler,
) -> ProcessingResult:
    outcome = BatchOutcome(action=action)
    for item in event.items:
        outcome.add(_in_txn(conn, handler, item))
    return outcome.to_result()


def _process_messages(
    channel: Channel,
    event: CanonicalEvent,
    collaborators: Collaborators,
    conn: PgConnection | None,
) -> ProcessingResult:
    outcome = BatchOutcome(action="process_messages")
    for item in event.items:
        outcome.add(ingest_message(channel, item, collaborators, conn))
    return outcome.to_result()


def _process_actions(
    channel: Channel,
    event: CanonicalEvent,
    collaborators: Collaborators,
    conn: PgConnection | None,
) -> ProcessingResult:
    """Action envelopes are applied; ordinary messages in the batch are ingested."""
    outcome = BatchOutcome(action="process_actions")
    for item in event.items:
        if fields.action_envelope(item) is not None:
            outcome.add(_in_txn(conn, lambda cur, i: apply_action_item(cur, channel.id, i), item))
        else:
            outcome.add(ingest_message(channel, item, collaborators, conn))
    return outcome.to_result()


def dispatch(
    channel: Channel,
    event: CanonicalEvent,
    collaborators: Collaborators,
    conn: PgConnection | None = None,
) -> ProcessingResult:
    if event.kind == "message":
        return _process_messages(channel, event, collaborators, conn)
    if event.kind == "action":
        return _process_actions(channel, event, collaborators, conn)
    if event.kind == "status":
        return _run_batch("process_statuses", event, conn, lambda cur, i: apply_status(cur, channel.id, i))
    if event.kind == "edit":
        return _run_batch("process_edits", event, conn, lambda cur, i: apply_edit_item(cur, channel.id, i))
    if event.kind == "delete":
        return _run_batch("process_deletes", event, conn, lambda cur, i: apply_delete_item(cur, channel.id, i))
    if event.kind == "chat":
        return _run_batch("process_chats", event, conn, lambda cur, i: apply_chat_event(cur, channel.id, i))
    if event.kind == "channel_status":
        return _run_batch(
            "process_channel_status", event, conn, lambda cur, i: apply_channel_status(cur, channel, i)
        )
    return ProcessingResult.ignored(f"Unhandled event type: {event.event_type}")


def process_webhook_event(
    channel: Channel,
    payload: Any,
    *,
    collaborators: Collaborators | None = None,
    conn: PgConnection | None = None,
) -> ProcessingResult:
    """Process one webhook delivery for `channel`.

    Unknown event types are a successful no-op and anything unexpected
    during dispatch becomes a failed result.

    Args:
        channel: Channel resolved (and authenticated) by the HTTP layer.
        payload: Parsed JSON body.
        collaborators: External capabilities; production defaults if None.
        conn: Optional connection; a new one per transaction if None.

    Raises:
        InvalidPayloadError: If payload is not a JSON object.
    """
    event = normalize(payload)
    collaborators = collaborators or Collaborators()

    logger.info(
        "webhook event normalized",
        extra={
            "extra_fields": safe_log_context(
                channel_id=channel.id,
                kind=event.kind,
                event_type=event.event_type,
                method=event.method,
                items=len(event.items),
            )
        },
    )

    try:
        result = dispatch(channel, event, collaborators, conn)
    except Exception as e:
        logger.exception(
            "webhook processing failed",
            extra={"extra_fields": safe_log_context(channel_id=channel.id, kind=event.kind)},
        )
        return ProcessingResult.failure(str(e) or type(e).__name__)

    logger.info(
        "webhook event processed",
        extra={
            "extra_fields": safe_log_context(
                channel_id=channel.id,
                action=result.action,
                success=result.success,
            )
        },
    )
    return result
