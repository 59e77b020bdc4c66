"""Best-effort hand-off of inbound text messages to the reply bot.

The bot service decides per channel whether to answer, draft, or just
observe; this side only delivers the message context. Routing is disabled
when BOT_ROUTER_URL is not configured.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Protocol

import requests

from chatsync.observability.correlation import CORRELATION_ID_HEADER, get_correlation_id
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

BOT_ROUTER_TIMEOUT = float(os.environ.get("BOT_ROUTER_TIMEOUT", "5"))


@dataclass(frozen=True)
class BotMessage:
    channel_id: str
    workspace_id: str
    chat_id: str
    wa_message_id: str
    text: str
    message_type: str
    contact_id: str
    timestamp: datetime

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(frozen=True)
class BotRoutingResult:
    handled: bool
    response: dict[str, Any] | None = None


class BotRouter(Protocol):
    def route(self, message: BotMessage) -> BotRoutingResult:
        """Deliver the message to the bot if the channel has one configured."""
        ...


class HttpBotRouter:
    """POSTs message context to the bot service at BOT_ROUTER_URL."""

    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        self._url = url if url is not None else os.environ.get("BOT_ROUTER_URL", "")
        self._timeout = timeout if timeout is not None else BOT_ROUTER_TIMEOUT

    def route(self, message: BotMessage) -> BotRoutingResult:
        """Raises requests.RequestException on transport or HTTP errors."""
        if not self._url:
            return BotRoutingResult(handled=False)

        response = requests.post(
            self._url,
            json=message.to_payload(),
            headers={CORRELATION_ID_HEADER: get_correlation_id()},
            timeout=self._timeout,
        )
        response.raise_for_status()

        body = response.json() if response.content else {}
        if not isinstance(body, dict):
            body = {}
        handled = bool(body.get("handled"))
        logger.info(
            "bot routing completed",
            extra={
                "extra_fields": safe_log_context(
                    wa_message_id=id_prefix(message.wa_message_id),
                    handled=handled,
                    bot_action=_response_action(body) if handled else None,
                )
            },
        )
        response_body = body.get("response")
        return BotRoutingResult(
            handled=handled,
            response=response_body if isinstance(response_body, dict) else None,
        )


def _response_action(body: dict[str, Any]) -> Any:
    response = body.get("response")
    return response.get("action") if isinstance(response, dict) else None
