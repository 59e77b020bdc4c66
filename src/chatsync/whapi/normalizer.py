"""Classify raw Whapi webhook payloads into a CanonicalEvent."""

from __future__ import annotations

from typing import Any

from .fields import action_envelope
from .models import CanonicalEvent, EventKind, Method


class InvalidPayloadError(Exception):
    """Raised when the payload is not a JSON object."""


_KIND_BY_TYPE: dict[str, EventKind] = {
    "message": "message",
    "messages": "message",
    "message.status": "status",
    "status.message": "status",
    "ack": "status",
    "acks": "status",
    "statuses": "status",
    "message.edit": "edit",
    "message.revoked": "delete",
    "message.delete": "delete",
    "chat": "chat",
    "chats": "chat",
    "channel.status": "channel_status",
    "status": "channel_status",
    "health": "channel_status",
}

# Where each kind carries its item list.
_ITEM_KEYS: dict[EventKind, tuple[str, ...]] = {
    "message": ("messages",),
    "action": ("messages",),
    "edit": ("messages_updates", "messages"),
    "delete": ("messages_removed", "messages"),
    "status": ("statuses", "acks"),
    "chat": ("chats_updates", "chats"),
    "channel_status": (),
    "unknown": (),
}

_METHODS = {"post", "patch", "put", "delete"}


def _event_type_and_method(payload: dict[str, Any]) -> tuple[str | None, str | None]:
    """Read (type, method) from the nested `event` object or the top level."""
    event = payload.get("event")
    if isinstance(event, dict) and event.get("type"):
        return str(event["type"]), event.get("method") or event.get("event")
    if isinstance(event, str) and event:
        return event, payload.get("method")
    if payload.get("type"):
        return str(payload["type"]), payload.get("method")
    return None, None


def _method(raw: Any) -> Method | None:
    if not isinstance(raw, str):
        return None
    lowered = raw.lower()
    return lowered if lowered in _METHODS else None  # type: ignore[return-value]


def _items(payload: dict[str, Any], kind: EventKind) -> tuple[dict[str, Any], ...]:
    for key in _ITEM_KEYS[kind]:
        value = payload.get(key)
        if isinstance(value, list) and value:
            return tuple(v for v in value if isinstance(v, dict))

    data = payload.get("data")
    if isinstance(data, dict):
        return (data,)
    if isinstance(data, list):
        return tuple(v for v in data if isinstance(v, dict))
    return (payload,)


def _has_action_items(payload: dict[str, Any]) -> bool:
    messages = payload.get("messages")
    if not isinstance(messages, list):
        return False
    return any(isinstance(m, dict) and action_envelope(m) is not None for m in messages)


def normalize(payload: Any) -> CanonicalEvent:
    """Classify a webhook payload.

    Priority:
    1. HTTP-verb hints on message events: patch/put -> edit, delete -> delete
    2. Any `messages` entry that is an action envelope -> action
    3. Declared event type (nested `event` object, string `event`, or `type`)
    4. No declared type: treated as a message batch

    A declared but unrecognized type yields kind "unknown"; callers answer
    that with a successful no-op.

    Raises:
        InvalidPayloadError: If payload is not a dict.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("payload must be a JSON object")

    event_type, raw_method = _event_type_and_method(payload)
    method = _method(raw_method)
    lowered = event_type.lower() if event_type else None

    kind: EventKind
    if lowered in ("message", "messages") and method in ("patch", "put"):
        kind = "edit"
    elif lowered in ("message", "messages") and method == "delete":
        kind = "delete"
    elif _has_action_items(payload):
        kind = "action"
    elif lowered is None:
        kind = "message"
    else:
        kind = _KIND_BY_TYPE.get(lowered, "unknown")

    items = () if kind == "unknown" else _items(payload, kind)
    return CanonicalEvent(
        kind=kind,
        event_type=event_type or "unknown",
        method=method,
        items=items,
    )
