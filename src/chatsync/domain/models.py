"""Domain records shared by the processing steps."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Literal

Direction = Literal["inbound", "outbound"]

MessageStatus = Literal["pending", "sent", "delivered", "read", "failed"]

ChannelStatus = Literal[
    "pending_auth",
    "active",
    "needs_reauth",
    "sync_error",
    "degraded",
    "stopped",
    "disconnected",
]

MEDIA_MESSAGE_TYPES = frozenset({"image", "video", "audio", "voice", "document", "sticker"})


@dataclass(frozen=True)
class Channel:
    """A connected messaging account, as resolved by the HTTP layer."""

    id: str
    workspace_id: str
    status: str


@dataclass(frozen=True)
class Chat:
    id: str
    channel_id: str
    wa_chat_id: str
    is_group: bool
    display_name: str | None
    last_message_at: datetime | None


@dataclass(frozen=True)
class MediaMetadata:
    """Attachment metadata stored in messages.media_metadata (JSONB)."""

    mime_type: str | None = None
    size: int | None = None
    filename: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    id: str | None = None
    stored: bool | None = None
    is_view_once: bool | None = None
    original_url: str | None = None

    def with_defaults(self, other: MediaMetadata | None) -> MediaMetadata:
        """Fill fields still unset here from `other`."""
        if other is None:
            return self
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None and getattr(other, f.name) is not None
        }
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class ResolvedMedia:
    url: str
    metadata: MediaMetadata
    storage_path: str | None = None


@dataclass
class ProcessingResult:
    """Outcome of one event (or one item inside a batch)."""

    success: bool
    action: str
    details: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def skip(cls, error: str) -> ProcessingResult:
        return cls(success=False, action="skip", error=error)

    @classmethod
    def failure(cls, error: str) -> ProcessingResult:
        return cls(success=False, action="error", error=error)

    @classmethod
    def ignored(cls, reason: str) -> ProcessingResult:
        return cls(success=True, action="ignored", details={"reason": reason})

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "action": self.action}
        if self.details is not None:
            out["details"] = self.details
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class BatchOutcome:
    """Collects per-item results for a batch event."""

    action: str
    results: list[ProcessingResult] = field(default_factory=list)

    def add(self, result: ProcessingResult) -> None:
        self.results.append(result)

    def to_result(self) -> ProcessingResult:
        succeeded = sum(1 for r in self.results if r.success)
        failed = len(self.results) - succeeded
        return ProcessingResult(
            success=failed == 0,
            action=self.action,
            details={
                "total": len(self.results),
                "success": succeeded,
                "failed": failed,
                "results": [r.to_dict() for r in self.results],
            },
        )


# Delivery progression. `failed` sits outside the order: it may replace any
# status except itself, and nothing replaces it.
STATUS_RANK: dict[str, int] = {
    "pending": 0,
    "sent": 1,
    "delivered": 2,
    "read": 3,
}

TERMINAL_STATUS = "failed"


def is_status_progression(current: str | None, new: str) -> bool:
    """Whether moving a message from `current` to `new` is allowed."""
    if current is None:
        return True
    if current == TERMINAL_STATUS:
        return False
    if new == TERMINAL_STATUS:
        return True
    return STATUS_RANK.get(current, -1) < STATUS_RANK.get(new, -1)
