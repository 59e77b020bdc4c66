"""Edits and deletes, whether sent as dedicated events or action envelopes.

Both entry paths end in the same two writes. A delete only sets deleted_at
when it is still NULL, so a redelivered delete leaves the first timestamp.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from chatsync.domain.models import ProcessingResult
from chatsync.infra.repositories import messages_repository
from chatsync.infra.time import utc_now
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import id_prefix, safe_log_context
from chatsync.whapi import fields

logger = get_logger(__name__)

EDIT_ACTIONS = frozenset({"edit"})
DELETE_ACTIONS = frozenset({"revoke", "delete"})


def edit_message(
    cur: PgCursor,
    channel_id: str,
    target: str | None,
    text: str | None,
    *,
    action: str = "message_edited",
) -> ProcessingResult:
    if not target:
        return ProcessingResult.skip("Missing target message ID for edit")
    if not text:
        return ProcessingResult.skip("Missing edited content")

    updated = messages_repository.apply_edit(
        cur,
        channel_id=channel_id,
        wa_message_id=target,
        text=text,
        edited_at=utc_now(),
    )
    logger.info(
        "message edit applied",
        extra={"extra_fields": safe_log_context(wa_message_id=id_prefix(target), updated=updated > 0)},
    )
    return ProcessingResult(
        success=True,
        action=action,
        details={"wa_message_id": target, "updated": updated > 0},
    )


def delete_message(
    cur: PgCursor,
    channel_id: str,
    target: str | None,
    *,
    action: str = "message_deleted",
) -> ProcessingResult:
    if not target:
        return ProcessingResult.skip("Missing target message ID for delete")

    updated = messages_repository.soft_delete(
        cur,
        channel_id=channel_id,
        wa_message_id=target,
        deleted_at=utc_now(),
    )
    logger.info(
        "message delete applied",
        extra={"extra_fields": safe_log_context(wa_message_id=id_prefix(target), updated=updated > 0)},
    )
    return ProcessingResult(
        success=True,
        action=action,
        details={"wa_message_id": target, "updated": updated > 0},
    )


def apply_edit_item(cur: PgCursor, channel_id: str, item: dict[str, Any]) -> ProcessingResult:
    return edit_message(cur, channel_id, fields.edit_target(item), fields.edited_text(item))


def apply_delete_item(cur: PgCursor, channel_id: str, item: dict[str, Any]) -> ProcessingResult:
    return delete_message(cur, channel_id, fields.edit_target(item))


def apply_action_item(cur: PgCursor, channel_id: str, item: dict[str, Any]) -> ProcessingResult:
    """Apply an action envelope (`type: action`) carrying an edit or revoke."""
    action = fields.action_envelope(item)
    if action is None:
        return ProcessingResult.skip("Item is not an action envelope")

    action_type = str(action.get("type") or "").lower()
    target = action.get("target")
    if action_type in EDIT_ACTIONS:
        return edit_message(
            cur,
            channel_id,
            target,
            fields.action_edited_text(action),
            action="message_edited_via_action",
        )
    if action_type in DELETE_ACTIONS:
        return delete_message(cur, channel_id, target, action="message_deleted_via_action")
    return ProcessingResult.ignored(f"Unsupported action type: {action_type or 'none'}")
