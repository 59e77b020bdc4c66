"""External capabilities the processor depends on.

Bundled so the HTTP layer wires production implementations once and tests
pass stubs, without module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from chatsync.bots.router import BotRouter, HttpBotRouter
from chatsync.infra.object_storage import MediaStorage, get_media_storage
from chatsync.infra.tokens import DatabaseTokenProvider, TokenProvider
from chatsync.whapi.client import DownloadedMedia, WhapiClient, download_url


@dataclass
class Collaborators:
    token_provider: TokenProvider = field(default_factory=DatabaseTokenProvider)
    storage_factory: Callable[[], MediaStorage] = get_media_storage
    client_factory: Callable[[str], WhapiClient] = WhapiClient
    fetch_url: Callable[[str], DownloadedMedia | None] = download_url
    bot_router: BotRouter = field(default_factory=HttpBotRouter)
