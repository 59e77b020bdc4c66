"""Whapi.cloud HTTP client for the lookups the processor needs.

Every call has a bounded timeout. Failures are logged and returned as None:
callers treat "no answer" and "error" the same way and fall back.

Security: the bearer token is never logged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import requests

from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

WHAPI_BASE_URL = os.environ.get("WHAPI_BASE_URL", "https://gate.whapi.cloud")
HTTP_TIMEOUT = float(os.environ.get("WHAPI_HTTP_TIMEOUT", "15"))


@dataclass(frozen=True)
class DownloadedMedia:
    content: bytes
    content_type: str


def _is_json(response: requests.Response) -> bool:
    return "application/json" in response.headers.get("Content-Type", "")


def _content_type(response: requests.Response) -> str:
    raw = response.headers.get("Content-Type") or "application/octet-stream"
    return raw.split(";")[0].strip() or "application/octet-stream"


class WhapiClient:
    """Thin wrapper around the Whapi REST endpoints used during ingestion."""

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._token = token
        self._base_url = (base_url or WHAPI_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else HTTP_TIMEOUT
        self._session = session or requests.Session()

    def _get(self, path: str, accept: str) -> requests.Response | None:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": accept,
        }
        try:
            response = self._session.get(url, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning(
                "whapi request failed",
                extra={"extra_fields": safe_log_context(path=path.split("/")[1], error_type=type(e).__name__)},
            )
            return None

        if not response.ok:
            logger.info(
                "whapi request returned error status",
                extra={"extra_fields": safe_log_context(path=path.split("/")[1], status=response.status_code)},
            )
            return None
        return response

    def _get_json(self, path: str) -> dict[str, Any] | None:
        response = self._get(path, "application/json")
        if response is None:
            return None
        try:
            data = response.json()
        except ValueError:
            logger.info(
                "whapi response is not JSON",
                extra={"extra_fields": safe_log_context(path=path.split("/")[1])},
            )
            return None
        return data if isinstance(data, dict) else None

    def get_media_info(self, media_id: str) -> dict[str, Any] | None:
        """GET /media/{id} asking for the JSON description (link, mime...)."""
        return self._get_json(f"/media/{media_id}")

    def get_message(self, wa_message_id: str) -> dict[str, Any] | None:
        """GET /messages/{id}: the detailed message view."""
        return self._get_json(f"/messages/{wa_message_id}")

    def get_settings(self) -> dict[str, Any] | None:
        """GET /settings: channel settings, including `wid` (own WhatsApp id)."""
        return self._get_json("/settings")

    def download_media(self, media_id: str) -> DownloadedMedia | dict[str, Any] | None:
        """GET /media/{id} asking for the raw bytes.

        The endpoint sometimes answers with the JSON description instead of
        the file; that dict is returned as-is for the caller to inspect.
        """
        response = self._get(f"/media/{media_id}", "*/*")
        if response is None:
            return None
        if _is_json(response):
            try:
                data = response.json()
            except ValueError:
                return None
            return data if isinstance(data, dict) else None
        if not response.content:
            return None
        logger.info(
            "whapi media downloaded",
            extra={"extra_fields": safe_log_context(media_id=id_prefix(media_id), size=len(response.content))},
        )
        return DownloadedMedia(content=response.content, content_type=_content_type(response))


def download_url(
    url: str,
    timeout: float | None = None,
    session: requests.Session | None = None,
) -> DownloadedMedia | None:
    """Fetch bytes from a provider-hosted media link (no auth header)."""
    http = session or requests
    try:
        response = http.get(url, headers={"Accept": "*/*"}, timeout=timeout or HTTP_TIMEOUT)
    except requests.RequestException as e:
        logger.warning(
            "media link download failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return None
    if not response.ok or not response.content:
        logger.info(
            "media link download returned nothing",
            extra={"extra_fields": safe_log_context(status=response.status_code)},
        )
        return None
    return DownloadedMedia(content=response.content, content_type=_content_type(response))
