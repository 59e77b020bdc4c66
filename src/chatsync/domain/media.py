"""Media resolution for attachment messages.

Strategies run in order and stop at the first that yields a link:

1. Link inlined in the webhook item
2. GET /media/{media_id} JSON description
3. GET /messages/{message_id}, then inline extraction on the detailed view
4. Download the bytes and persist them to object storage

View-once media gets one more step: a provider link that was not persisted
by strategy 4 is downloaded and stored before returning, because those
links expire shortly after delivery.

No strategy raises: provider, token or storage failures mean "not resolved"
and the message is stored without media.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from functools import cached_property
from typing import Any, Callable

import psycopg2

from chatsync.domain.collaborators import Collaborators
from chatsync.domain.models import MediaMetadata, ResolvedMedia
from chatsync.infra.object_storage import MediaStorage, ObjectStorageError
from chatsync.infra.tokens import TokenDecryptionError
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import id_prefix, safe_log_context
from chatsync.whapi import fields
from chatsync.whapi.client import DownloadedMedia, WhapiClient

logger = get_logger(__name__)

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/amr": ".amr",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")

GENERIC_CONTENT_TYPE = "application/octet-stream"


def extension_for(mime_type: str | None) -> str:
    return _MIME_EXTENSIONS.get((mime_type or "").lower(), "")


def _storage_key(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value)


@dataclass
class MediaLookup:
    """Inputs for one resolution, with lazily created provider client."""

    item: dict[str, Any]
    message_type: str
    channel_id: str
    workspace_id: str
    collaborators: Collaborators

    @property
    def wa_message_id(self) -> str | None:
        return fields.message_id(self.item)

    @property
    def media_id(self) -> str | None:
        return fields.media_id(self.item)

    @property
    def media_object(self) -> dict[str, Any] | None:
        return fields.media_object(self.item)

    @cached_property
    def client(self) -> WhapiClient | None:
        try:
            token = self.collaborators.token_provider.get_token(self.channel_id)
        except (RuntimeError, TokenDecryptionError, psycopg2.Error) as e:
            logger.warning(
                "provider token unavailable for media fetch",
                extra={"extra_fields": safe_log_context(channel_id=self.channel_id, error_type=type(e).__name__)},
            )
            return None
        if not token:
            return None
        return self.collaborators.client_factory(token)

    @cached_property
    def storage(self) -> MediaStorage | None:
        try:
            return self.collaborators.storage_factory()
        except (RuntimeError, ValueError) as e:
            logger.warning(
                "media storage unavailable",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return None


Strategy = Callable[[MediaLookup], ResolvedMedia | None]


def from_payload(lookup: MediaLookup) -> ResolvedMedia | None:
    return fields.direct_media(lookup.item)


def from_media_info(lookup: MediaLookup) -> ResolvedMedia | None:
    media_id = lookup.media_id
    if not media_id or lookup.client is None:
        return None

    info = lookup.client.get_media_info(media_id)
    url = fields.link_from_object(info)
    if not url:
        return None

    metadata = (
        fields.metadata_from_object(info)
        .with_defaults(fields.metadata_from_object(lookup.media_object))
        .with_defaults(MediaMetadata(id=media_id))
    )
    return ResolvedMedia(url=url, metadata=metadata)


def from_full_message(lookup: MediaLookup) -> ResolvedMedia | None:
    wa_message_id = lookup.wa_message_id
    if not wa_message_id or lookup.client is None:
        return None

    detailed = lookup.client.get_message(wa_message_id)
    if not detailed:
        return None
    return fields.direct_media(detailed)


def download_and_store(lookup: MediaLookup) -> ResolvedMedia | None:
    media_id = lookup.media_id
    if not media_id or lookup.client is None:
        return None

    downloaded = lookup.client.download_media(media_id)
    if downloaded is None:
        return None

    payload_metadata = fields.metadata_from_object(lookup.media_object)

    if isinstance(downloaded, dict):
        # Endpoint answered with the JSON description after all
        url = fields.link_from_object(downloaded)
        if not url:
            return None
        metadata = (
            fields.metadata_from_object(downloaded)
            .with_defaults(payload_metadata)
            .with_defaults(MediaMetadata(id=media_id))
        )
        return ResolvedMedia(url=url, metadata=metadata)

    ext = extension_for(downloaded.content_type)
    path = f"workspaces/{lookup.workspace_id}/{lookup.message_type}/{_storage_key(media_id)}{ext}"
    public_url = _upload(lookup, path, downloaded)
    if public_url is None:
        return None

    metadata = MediaMetadata(
        mime_type=downloaded.content_type,
        size=len(downloaded.content),
        filename=payload_metadata.filename or f"{media_id}{ext}",
        id=media_id,
        stored=True,
    ).with_defaults(payload_metadata)
    return ResolvedMedia(url=public_url, metadata=metadata, storage_path=path)


STRATEGIES: tuple[Strategy, ...] = (
    from_payload,
    from_media_info,
    from_full_message,
    download_and_store,
)


def _upload(lookup: MediaLookup, path: str, media: DownloadedMedia) -> str | None:
    if lookup.storage is None:
        return None
    try:
        return lookup.storage.upload(path, media.content, media.content_type)
    except ObjectStorageError:
        return None


def persist_ephemeral(lookup: MediaLookup, resolved: ResolvedMedia) -> ResolvedMedia | None:
    """Copy a soon-to-expire provider link into object storage."""
    downloaded = lookup.collaborators.fetch_url(resolved.url)
    if downloaded is None:
        return None

    content_type = downloaded.content_type
    if content_type == GENERIC_CONTENT_TYPE and resolved.metadata.mime_type:
        content_type = resolved.metadata.mime_type
        downloaded = replace(downloaded, content_type=content_type)

    key = _storage_key(lookup.wa_message_id or lookup.media_id or "unknown")
    path = f"workspaces/{lookup.workspace_id}/viewonce/{key}{extension_for(content_type)}"
    public_url = _upload(lookup, path, downloaded)
    if public_url is None:
        return None

    metadata = replace(
        resolved.metadata,
        mime_type=content_type,
        size=len(downloaded.content),
        stored=True,
        is_view_once=True,
        original_url=resolved.url,
    )
    return ResolvedMedia(url=public_url, metadata=metadata, storage_path=path)


def resolve_media(
    item: dict[str, Any],
    message_type: str,
    channel_id: str,
    workspace_id: str,
    collaborators: Collaborators,
    *,
    ephemeral: bool = False,
    strategies: tuple[Strategy, ...] = STRATEGIES,
) -> ResolvedMedia | None:
    """Resolve a usable media link for a message item.

    Returns:
        ResolvedMedia, or None when every strategy came up empty.
    """
    lookup = MediaLookup(
        item=item,
        message_type=message_type,
        channel_id=channel_id,
        workspace_id=workspace_id,
        collaborators=collaborators,
    )

    resolved: ResolvedMedia | None = None
    for strategy in strategies:
        resolved = strategy(lookup)
        if resolved is not None:
            logger.info(
                "media resolved",
                extra={
                    "extra_fields": safe_log_context(
                        wa_message_id=id_prefix(lookup.wa_message_id),
                        strategy=strategy.__name__,
                        stored=resolved.storage_path is not None,
                    )
                },
            )
            break

    if resolved is None:
        logger.info(
            "media unresolved",
            extra={"extra_fields": safe_log_context(wa_message_id=id_prefix(lookup.wa_message_id))},
        )
        return None

    if ephemeral and not resolved.storage_path:
        persisted = persist_ephemeral(lookup, resolved)
        if persisted is not None:
            return persisted
        logger.warning(
            "view-once media could not be persisted",
            extra={"extra_fields": safe_log_context(wa_message_id=id_prefix(lookup.wa_message_id))},
        )

    return resolved
