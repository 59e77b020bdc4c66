"""Whapi webhook routes.

The channel id travels in the path; the per-channel secret in the `secret`
query parameter or the X-Webhook-Secret header. Once a delivery is
authenticated and parsed the endpoint always answers 200, so the provider
does not retry events this service has already seen; the outcome is in the
response body and in the webhook_events log.
"""

import hmac
import time
from typing import Any

import psycopg2
from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from chatsync.domain.collaborators import Collaborators
from chatsync.domain.models import Channel, ProcessingResult
from chatsync.domain.processor import process_webhook_event
from chatsync.infra.db import txn
from chatsync.infra.repositories.channels_repository import get_channel_with_secret
from chatsync.infra.repositories.webhook_events_repository import (
    mark_webhook_event_processed,
    record_webhook_event,
)
from chatsync.observability.correlation import get_correlation_id
from chatsync.observability.logging import get_logger
from chatsync.observability.redaction import safe_log_context
from chatsync.whapi.normalizer import InvalidPayloadError, normalize

router = APIRouter(prefix="/webhooks/whapi", tags=["webhooks"])

logger = get_logger(__name__)

_collaborators: Collaborators | None = None


def _get_collaborators() -> Collaborators:
    """Get processor collaborators (allows test injection)."""
    global _collaborators
    if _collaborators is None:
        _collaborators = Collaborators()
    return _collaborators


def _authenticate(channel_id: str, provided: str | None) -> Channel | Response:
    """Resolve the channel and check its webhook secret (fail-closed)."""
    correlation_id = get_correlation_id()
    try:
        with txn() as cur:
            found = get_channel_with_secret(cur, channel_id)
    except (psycopg2.Error, RuntimeError):
        logger.exception(
            "channel lookup failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, channel_id=channel_id)},
        )
        return Response(status_code=500, content="channel lookup failed")

    if found is None:
        logger.warning(
            "webhook for unknown channel",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, channel_id=channel_id)},
        )
        return Response(status_code=404, content="channel not found")

    channel, expected = found
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        logger.warning(
            "whapi webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, channel_id=channel_id)},
        )
        return Response(status_code=401, content="unauthorized")

    return channel


def _record_event(channel_id: str, event_type: str, payload: dict[str, Any]) -> int | None:
    try:
        with txn() as cur:
            return record_webhook_event(
                cur,
                channel_id=channel_id,
                event_type=event_type,
                payload=payload,
                correlation_id=get_correlation_id() or None,
            )
    except psycopg2.Error:
        logger.warning(
            "webhook event not recorded",
            extra={"extra_fields": safe_log_context(channel_id=channel_id)},
        )
        return None


def _mark_processed(event_id: int | None, result: ProcessingResult) -> None:
    if event_id is None:
        return
    try:
        with txn() as cur:
            mark_webhook_event_processed(cur, event_id, action=result.action, error=result.error)
    except psycopg2.Error:
        logger.warning(
            "webhook event not marked processed",
            extra={"extra_fields": safe_log_context(event_id=event_id)},
        )


def _process(channel: Channel, event_type: str, payload: dict[str, Any]) -> ProcessingResult:
    event_id = _record_event(channel.id, event_type, payload)
    result = process_webhook_event(channel, payload, collaborators=_get_collaborators())
    _mark_processed(event_id, result)
    return result


@router.post("/{channel_id}")
async def whapi_webhook(
    channel_id: str,
    request: Request,
    secret: str | None = Query(None),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive one Whapi webhook delivery.

    Returns:
        200 with the processing outcome once authenticated and parsed.
        400 Bad Request if the body is not a JSON object.
        401 Unauthorized if the secret is missing or wrong.
        404 Not Found if the channel does not exist.
    """
    correlation_id = get_correlation_id()
    started = time.monotonic()

    authenticated = await run_in_threadpool(_authenticate, channel_id, secret or x_webhook_secret)
    if isinstance(authenticated, Response):
        return authenticated
    channel = authenticated

    try:
        payload = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        event = normalize(payload)
    except InvalidPayloadError:
        logger.warning(
            "invalid whapi payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, channel_id=channel_id)},
        )
        return Response(status_code=400, content="invalid payload shape")

    logger.info(
        "whapi webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                channel_id=channel_id,
                event_type=event.event_type,
                kind=event.kind,
            )
        },
    )

    result = await run_in_threadpool(_process, channel, event.event_type, payload)

    body = {
        "success": result.success,
        "channel_id": channel.id,
        "event_type": event.event_type,
        "action": result.action,
        "details": result.details,
        "processing_time_ms": int((time.monotonic() - started) * 1000),
    }
    if result.error is not None:
        body["error"] = result.error
    return JSONResponse(status_code=200, content=body)


@router.get("/{channel_id}")
async def whapi_webhook_check(
    channel_id: str,
    secret: str | None = Query(None),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Configuration check used when registering the webhook URL."""
    authenticated = await run_in_threadpool(_authenticate, channel_id, secret or x_webhook_secret)
    if isinstance(authenticated, Response):
        return authenticated
    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "channel_id": authenticated.id,
            "channel_status": authenticated.status,
        },
    )
