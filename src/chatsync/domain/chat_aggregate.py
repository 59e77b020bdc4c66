"""Chat aggregate maintenance: last-message preview, unread counter, status.

Deliveries arrive out of order, so every update is guarded by a timestamp
comparison instead of trusting arrival order.
"""

from datetime import datetime, timedelta

from psycopg2.extensions import cursor as PgCursor

from chatsync.infra.repositories import chats_repository

# A message this much older than the stored last message still counts as
# "the latest" (clock skew, queueing jitter).
FRESHNESS_TOLERANCE = timedelta(seconds=5)

# Status events propagate to the chat only for the message the chat shows.
SAME_MESSAGE_TOLERANCE = timedelta(seconds=1)

PREVIEW_MAX_LENGTH = 100


def preview_for(text: str | None, message_type: str) -> str | None:
    if text:
        if len(text) <= PREVIEW_MAX_LENGTH:
            return text
        return text[: PREVIEW_MAX_LENGTH - 3] + "..."
    if message_type != "text":
        return f"[{message_type}]"
    return None


def record_message(
    cur: PgCursor,
    *,
    chat_id: str,
    text: str | None,
    message_type: str,
    timestamp: datetime,
    direction: str,
    status: str | None,
    is_new: bool,
) -> bool:
    """Fold a freshly upserted message into its chat.

    Inbound messages seen for the first time bump the unread counter.
    Outbound messages mark the chat read: someone on our side is active in
    the thread.

    Returns:
        True if the chat now shows this message as its last one.
    """
    shown = chats_repository.update_last_message(
        cur,
        chat_id=chat_id,
        preview=preview_for(text, message_type),
        timestamp=timestamp,
        direction=direction,
        status=status,
        increment_unread=direction == "inbound" and is_new,
        tolerance=FRESHNESS_TOLERANCE,
    )
    if direction == "outbound":
        chats_repository.mark_chat_as_read(cur, chat_id)
    return shown


def is_same_message_time(a: datetime, b: datetime, tolerance: timedelta = SAME_MESSAGE_TOLERANCE) -> bool:
    return abs(a - b) < tolerance


def propagate_status(
    cur: PgCursor,
    *,
    chat_id: str,
    message_created_at: datetime,
    status: str,
) -> bool:
    """Copy a message status onto the chat if it is the chat's last message.

    Returns:
        True if the chat's last_message_status was updated.
    """
    last_message_at = chats_repository.get_last_message_at(cur, chat_id)
    if last_message_at is None or not is_same_message_time(last_message_at, message_created_at):
        return False
    chats_repository.set_last_message_status(cur, chat_id, status)
    return True
