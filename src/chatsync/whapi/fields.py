"""Field extraction for Whapi message items.

Whapi payloads are duck-typed: the same concept shows up under several
synonym keys depending on event type and API version. Every lookup of a
raw item field lives here so the processing code works with plain values.
"""

from __future__ import annotations

import re
from typing import Any

from chatsync.domain.models import ChannelStatus, Direction, MediaMetadata, MessageStatus, ResolvedMedia

# Media-object keys in specificity order.
MEDIA_OBJECT_KEYS = ("image", "video", "audio", "voice", "ptt", "document", "sticker")

_TYPE_ALIASES = {
    "ptt": "voice",
    "file": "document",
    "vcard": "contact",
}

_WA_ID_SUFFIX = re.compile(r"@(c\.us|s\.whatsapp\.net|g\.us)$")

_ACK_CODES: dict[int, MessageStatus] = {
    0: "pending",
    1: "sent",
    2: "delivered",
    3: "read",
    4: "read",  # played (audio)
}

_STATUS_WORDS: dict[str, MessageStatus] = {
    "pending": "pending",
    "clock": "pending",
    "sent": "sent",
    "server": "sent",
    "delivered": "delivered",
    "device": "delivered",
    "read": "read",
    "seen": "read",
    "played": "read",
    "failed": "failed",
    "error": "failed",
}

_CHANNEL_STATES: dict[str, ChannelStatus] = {
    "connected": "active",
    "open": "active",
    "ready": "active",
    "loading": "active",
    "connecting": "active",
    "disconnected": "disconnected",
    "closed": "disconnected",
    "qr": "needs_reauth",
    "scan": "needs_reauth",
    "stop": "stopped",
    "stopped": "stopped",
    "sync_error": "sync_error",
}


def first(*values: Any) -> Any:
    """Return the first truthy value, or None."""
    for value in values:
        if value:
            return value
    return None


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _without_nul(value: Any) -> Any:
    # Postgres text columns reject NUL.
    if isinstance(value, str):
        return value.replace("\x00", "") or None
    return value


def message_id(item: dict[str, Any]) -> str | None:
    return first(item.get("id"), item.get("message_id"), item.get("messageId"))


def is_from_me(item: dict[str, Any]) -> bool:
    value = item.get("from_me")
    if value is None:
        value = item.get("fromMe")
    return bool(value)


def direction(item: dict[str, Any]) -> Direction:
    return "outbound" if is_from_me(item) else "inbound"


def chat_id(item: dict[str, Any]) -> str | None:
    """Provider chat id; for 1:1 chats falls back to the remote party."""
    explicit = first(item.get("chat_id"), item.get("chatId"))
    if explicit:
        return explicit
    return item.get("to") if is_from_me(item) else item.get("from")


def channel_wa_id(item: dict[str, Any]) -> str | None:
    """The channel's own WhatsApp id, when the item reveals it."""
    return item.get("from") if is_from_me(item) else item.get("to")


def is_view_once(item: dict[str, Any]) -> bool:
    return bool(first(item.get("is_view_once"), item.get("viewOnce"), item.get("view_once")))


def message_type(item: dict[str, Any]) -> str:
    """Classify the message type.

    An explicit `type` wins; otherwise presence of type-specific keys decides,
    text-like fields first and voice/ptt ahead of generic audio.
    """
    explicit = item.get("type")
    if isinstance(explicit, str) and explicit:
        lowered = explicit.lower()
        return _TYPE_ALIASES.get(lowered, lowered)

    if item.get("text") or item.get("body"):
        return "text"
    if item.get("image"):
        return "image"
    if item.get("video"):
        return "video"
    if item.get("ptt") or item.get("voice"):
        return "voice"
    if item.get("audio"):
        return "audio"
    if item.get("document") or item.get("file"):
        return "document"
    if item.get("sticker"):
        return "sticker"
    if item.get("location"):
        return "location"
    if item.get("contact") or item.get("vcard"):
        return "contact"
    return "text"


def text_content(item: dict[str, Any]) -> str | None:
    text = item.get("text")
    body = text.get("body") if isinstance(text, dict) else text
    return _without_nul(first(
        body if isinstance(body, str) else None,
        item.get("body"),
        item.get("caption"),
        _obj(item.get("image")).get("caption"),
        _obj(item.get("video")).get("caption"),
        _obj(item.get("document")).get("caption"),
    ))


def sender_id(item: dict[str, Any]) -> str | None:
    return first(item.get("from"), _obj(item.get("sender")).get("id"))


def sender_name(item: dict[str, Any]) -> str | None:
    sender = _obj(item.get("sender"))
    return _without_nul(first(
        sender.get("name"),
        sender.get("pushname"),
        item.get("from_name"),
        item.get("pushname"),
        item.get("notifyName"),
    ))


def media_object(item: dict[str, Any]) -> dict[str, Any] | None:
    """The type-specific media dict (image/video/...), if any."""
    for key in MEDIA_OBJECT_KEYS:
        value = item.get(key)
        if isinstance(value, dict) and value:
            return value
    return None


def media_id(item: dict[str, Any]) -> str | None:
    return _obj(media_object(item)).get("id")


def metadata_from_object(obj: dict[str, Any] | None) -> MediaMetadata:
    """Read attachment metadata from a media dict or a /media response."""
    obj = _obj(obj)
    file_obj = _obj(obj.get("file"))
    return MediaMetadata(
        mime_type=first(obj.get("mime_type"), obj.get("mimetype"), file_obj.get("mime_type")),
        size=first(obj.get("file_size"), obj.get("size"), obj.get("filesize")),
        filename=first(obj.get("filename"), obj.get("file_name")),
        width=obj.get("width"),
        height=obj.get("height"),
        duration=first(obj.get("seconds"), obj.get("duration")),
        id=obj.get("id"),
    )


def link_from_object(obj: dict[str, Any] | None) -> str | None:
    obj = _obj(obj)
    file_obj = _obj(obj.get("file"))
    return first(
        obj.get("link"),
        obj.get("url"),
        obj.get("media_url"),
        obj.get("file_url"),
        file_obj.get("link"),
        file_obj.get("url"),
    )


def direct_media(item: dict[str, Any]) -> ResolvedMedia | None:
    """Media link inlined in the item itself (no provider round-trip)."""
    generic = _obj(item.get("media"))
    url = first(generic.get("url"), generic.get("link"))
    if url:
        return ResolvedMedia(url=url, metadata=metadata_from_object(generic))

    if item.get("mediaUrl"):
        return ResolvedMedia(
            url=item["mediaUrl"],
            metadata=MediaMetadata(mime_type=first(item.get("mime_type"), item.get("mimetype"))),
        )

    obj = media_object(item)
    url = link_from_object(obj)
    if url:
        return ResolvedMedia(url=url, metadata=metadata_from_object(obj))

    if is_view_once(item):
        nested = first(
            _obj(item.get("viewOnceMessage")).get("image"),
            _obj(item.get("viewOnceMessage")).get("video"),
            _obj(item.get("ephemeral")).get("image"),
            _obj(item.get("ephemeral")).get("video"),
        )
        url = link_from_object(nested)
        if url:
            return ResolvedMedia(
                url=url,
                metadata=metadata_from_object(nested).with_defaults(MediaMetadata(is_view_once=True)),
            )

    return None


def map_message_status(raw: Any) -> MessageStatus | None:
    """Map a Whapi status string or numeric ack to our status enum."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return _ACK_CODES.get(raw)
    return _STATUS_WORDS.get(str(raw).strip().lower())


def map_channel_status(raw: Any) -> ChannelStatus | None:
    if not raw:
        return None
    return _CHANNEL_STATES.get(str(raw).strip().lower())


def phone_from_wa_id(wa_id: str | None) -> str | None:
    """`5511999999999@s.whatsapp.net` -> `+5511999999999`."""
    if not wa_id:
        return None
    cleaned = _WA_ID_SUFFIX.sub("", wa_id)
    if cleaned.isdigit():
        return f"+{cleaned}"
    return cleaned or None


def is_group_chat(wa_chat_id: str, item: dict[str, Any]) -> bool:
    chat = _obj(item.get("chat"))
    if item.get("is_group") or item.get("isGroup"):
        return True
    if chat.get("is_group") or chat.get("isGroup"):
        return True
    if item.get("group"):
        return True
    return wa_chat_id.endswith("@g.us")


def group_info(item: dict[str, Any]) -> dict[str, Any]:
    return first(_obj(item.get("group")), _obj(item.get("chat"))) or {}


def action_envelope(item: dict[str, Any]) -> dict[str, Any] | None:
    """The `action` dict of an action-wrapped item (edit/revoke), if any."""
    if item.get("type") != "action":
        return None
    action = item.get("action")
    return action if isinstance(action, dict) else None


def edited_text(item: dict[str, Any]) -> str | None:
    """New body carried by a direct edit item."""
    after = _obj(item.get("after_update"))
    source = after or item
    text = source.get("text")
    return _without_nul(first(
        source.get("body"),
        text.get("body") if isinstance(text, dict) else None,
        text if isinstance(text, str) else None,
        source.get("newBody"),
        source.get("caption"),
    ))


def edit_target(item: dict[str, Any]) -> str | None:
    return first(message_id(item), message_id(_obj(item.get("after_update"))))


def channel_state(item: dict[str, Any]) -> Any:
    """Raw connectivity state of a channel status/health event."""
    health_status = _obj(_obj(item.get("health")).get("status"))
    return first(item.get("status"), item.get("state"), health_status.get("text"))


def archive_flag(item: dict[str, Any]) -> bool | None:
    """Archive toggle of a chat update, or None if the item carries none."""
    for key in ("archive", "isArchived", "is_archived"):
        value = item.get(key)
        if isinstance(value, bool):
            return value
    return None


def action_edited_text(action: dict[str, Any]) -> str | None:
    content = _obj(action.get("edited_content"))
    text = content.get("text")
    return _without_nul(first(
        content.get("body"),
        text.get("body") if isinstance(text, dict) else None,
        text if isinstance(text, str) else None,
        content.get("caption"),
    ))
