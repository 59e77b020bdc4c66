"""S3-compatible object storage for persisted media."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Protocol

import boto3

from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import safe_log_context

logger = get_logger(__name__)


class ObjectStorageError(Exception):
    """Generic object storage failure."""


class MediaStorage(Protocol):
    """Storage interface used by the media resolver."""

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes at path (overwriting) and return the public URL."""
        ...


class S3MediaStorage:
    """S3/MinIO/R2-backed media storage."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None,
        access_key: str | None,
        secret_key: str | None,
        region: str,
        public_base_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url
        if client is not None:
            self.client = client
            return
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{path}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{path}"

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except Exception as exc:
            logger.warning(
                "media upload failed",
                extra={
                    "extra_fields": safe_log_context(
                        bucket=self.bucket_name,
                        size=len(data),
                        error_type=type(exc).__name__,
                    )
                },
            )
            raise ObjectStorageError("Failed to upload object") from exc
        return self.public_url(path)


@lru_cache(maxsize=1)
def get_media_storage() -> S3MediaStorage:
    """Storage configured from environment variables."""
    return S3MediaStorage(
        bucket_name=os.environ.get("MEDIA_BUCKET", "media"),
        endpoint_url=os.environ.get("S3_ENDPOINT_URL") or None,
        access_key=os.environ.get("S3_ACCESS_KEY") or None,
        secret_key=os.environ.get("S3_SECRET_KEY") or None,
        region=os.environ.get("S3_REGION", "us-east-1"),
        public_base_url=os.environ.get("MEDIA_PUBLIC_BASE_URL") or None,
    )
