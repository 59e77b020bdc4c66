"""Shared test helpers (plain functions and stubs, not fixtures)."""

from __future__ import annotations

from typing import Any

from chatsync.bots.router import BotMessage, BotRoutingResult
from chatsync.domain.collaborators import Collaborators
from chatsync.domain.models import Channel
from chatsync.whapi.client import DownloadedMedia

TEST_CHANNEL = Channel(id="chan-test", workspace_id="ws-test", status="active")


class StubTokenProvider:
    def __init__(self, token: str | None = "tok-123", error: Exception | None = None):
        self.token = token
        self.error = error
        self.calls: list[str] = []

    def get_token(self, channel_id: str) -> str | None:
        self.calls.append(channel_id)
        if self.error is not None:
            raise self.error
        return self.token


class StubWhapiClient:
    """Answers from canned dicts; records calls."""

    def __init__(
        self,
        media_info: dict[str, Any] | None = None,
        message: dict[str, Any] | None = None,
        settings: dict[str, Any] | None = None,
        download: DownloadedMedia | dict[str, Any] | None = None,
    ):
        self.media_info = media_info
        self.message = message
        self.settings = settings
        self.download = download
        self.calls: list[tuple[str, str | None]] = []

    def get_media_info(self, media_id):
        self.calls.append(("media_info", media_id))
        return self.media_info

    def get_message(self, wa_message_id):
        self.calls.append(("message", wa_message_id))
        return self.message

    def get_settings(self):
        self.calls.append(("settings", None))
        return self.settings

    def download_media(self, media_id):
        self.calls.append(("download", media_id))
        return self.download


class RecordingStorage:
    def __init__(self, base_url: str = "https://cdn.test"):
        self.base_url = base_url
        self.uploads: list[tuple[str, bytes, str]] = []

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.uploads.append((path, data, content_type))
        return f"{self.base_url}/{path}"


class RecordingBotRouter:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.messages: list[BotMessage] = []

    def route(self, message: BotMessage) -> BotRoutingResult:
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return BotRoutingResult(handled=False)


def make_collaborators(
    client: StubWhapiClient | None = None,
    storage: RecordingStorage | None = None,
    token_provider: StubTokenProvider | None = None,
    fetched: DownloadedMedia | None = None,
    bot_router: RecordingBotRouter | None = None,
) -> Collaborators:
    client = client or StubWhapiClient()
    storage = storage or RecordingStorage()
    return Collaborators(
        token_provider=token_provider or StubTokenProvider(),
        storage_factory=lambda: storage,
        client_factory=lambda token: client,
        fetch_url=lambda url: fetched,
        bot_router=bot_router or RecordingBotRouter(),
    )
