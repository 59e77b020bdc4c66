"""Canonical webhook event model."""

from dataclasses import dataclass, field
from typing import Any, Literal

EventKind = Literal[
    "message",
    "status",
    "edit",
    "delete",
    "action",
    "chat",
    "channel_status",
    "unknown",
]

Method = Literal["post", "patch", "put", "delete"]


@dataclass(frozen=True)
class CanonicalEvent:
    """Normalized form of one webhook delivery.

    `items` are the provider's per-message (or per-status, per-chat) dicts.
    Field-level interpretation of an item happens in `chatsync.whapi.fields`.
    """

    kind: EventKind
    event_type: str
    method: Method | None = None
    items: tuple[dict[str, Any], ...] = field(default_factory=tuple)
