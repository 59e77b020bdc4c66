"""Tests for the Whapi webhook endpoint (database access mocked)."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from fastapi.testclient import TestClient

import chatsync.api.routes.webhooks_whapi as webhook_module
from chatsync.api.factory import create_app
from chatsync.domain.models import Channel, ProcessingResult

CHANNEL = Channel(id="chan-1", workspace_id="ws-1", status="active")
SECRET = "s3cret-webhook"

TEXT_PAYLOAD = {
    "event": {"type": "messages", "event": "post"},
    "messages": [{"id": "m1", "chat_id": "c1", "from_me": False, "text": {"body": "hi"}}],
}


@contextmanager
def _fake_txn(conn=None):
    yield MagicMock()


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def channel_lookup():
    with patch.object(webhook_module, "txn", _fake_txn), \
         patch.object(webhook_module, "get_channel_with_secret", return_value=(CHANNEL, SECRET)) as lookup:
        yield lookup


@pytest.fixture
def event_log():
    with patch.object(webhook_module, "record_webhook_event", return_value=77) as record, \
         patch.object(webhook_module, "mark_webhook_event_processed") as mark:
        yield MagicMock(record=record, mark=mark)


@pytest.fixture
def processor():
    result = ProcessingResult(success=True, action="process_messages", details={"total": 1})
    with patch.object(webhook_module, "process_webhook_event", return_value=result) as process, \
         patch.object(webhook_module, "_collaborators", MagicMock()):
        yield process


class TestAuthentication:
    def test_missing_secret_401(self, client, channel_lookup, processor):
        response = client.post("/webhooks/whapi/chan-1", json=TEXT_PAYLOAD)
        assert response.status_code == 401
        processor.assert_not_called()

    def test_wrong_secret_401(self, client, channel_lookup, processor):
        response = client.post("/webhooks/whapi/chan-1?secret=nope", json=TEXT_PAYLOAD)
        assert response.status_code == 401

    def test_channel_without_secret_is_rejected(self, client, channel_lookup, processor):
        channel_lookup.return_value = (CHANNEL, None)
        response = client.post("/webhooks/whapi/chan-1?secret=anything", json=TEXT_PAYLOAD)
        assert response.status_code == 401

    def test_unknown_channel_404(self, client, channel_lookup, processor):
        channel_lookup.return_value = None
        response = client.post(f"/webhooks/whapi/nope?secret={SECRET}", json=TEXT_PAYLOAD)
        assert response.status_code == 404

    def test_lookup_failure_500(self, client, channel_lookup, processor):
        channel_lookup.side_effect = psycopg2.OperationalError("down")
        response = client.post(f"/webhooks/whapi/chan-1?secret={SECRET}", json=TEXT_PAYLOAD)
        assert response.status_code == 500


class TestDelivery:
    def test_processes_with_query_secret(self, client, channel_lookup, event_log, processor):
        response = client.post(f"/webhooks/whapi/chan-1?secret={SECRET}", json=TEXT_PAYLOAD)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["channel_id"] == "chan-1"
        assert body["event_type"] == "messages"
        assert body["action"] == "process_messages"
        assert body["details"] == {"total": 1}
        assert isinstance(body["processing_time_ms"], int)

        assert processor.call_args.args == (CHANNEL, TEXT_PAYLOAD)
        assert event_log.record.call_args.kwargs["event_type"] == "messages"
        assert event_log.mark.call_args.args[1] == 77
        assert event_log.mark.call_args.kwargs == {"action": "process_messages", "error": None}

    def test_header_secret(self, client, channel_lookup, event_log, processor):
        response = client.post(
            "/webhooks/whapi/chan-1", json=TEXT_PAYLOAD, headers={"X-Webhook-Secret": SECRET}
        )
        assert response.status_code == 200

    def test_failed_processing_still_200(self, client, channel_lookup, event_log, processor):
        processor.return_value = ProcessingResult.failure("db down")
        response = client.post(f"/webhooks/whapi/chan-1?secret={SECRET}", json=TEXT_PAYLOAD)
        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["error"] == "db down"
        assert event_log.mark.call_args.kwargs["error"] == "db down"

    def test_event_log_failure_does_not_block(self, client, channel_lookup, event_log, processor):
        event_log.record.side_effect = psycopg2.OperationalError("log table locked")
        response = client.post(f"/webhooks/whapi/chan-1?secret={SECRET}", json=TEXT_PAYLOAD)
        assert response.status_code == 200
        event_log.mark.assert_not_called()

    def test_invalid_json_400(self, client, channel_lookup, processor):
        response = client.post(
            f"/webhooks/whapi/chan-1?secret={SECRET}",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        processor.assert_not_called()

    def test_non_object_json_400(self, client, channel_lookup, processor):
        response = client.post(f"/webhooks/whapi/chan-1?secret={SECRET}", json=[1, 2])
        assert response.status_code == 400


class TestCheckEndpoint:
    def test_ok(self, client, channel_lookup):
        response = client.get(f"/webhooks/whapi/chan-1?secret={SECRET}")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "channel_id": "chan-1", "channel_status": "active"}

    def test_unauthorized(self, client, channel_lookup):
        assert client.get("/webhooks/whapi/chan-1?secret=bad").status_code == 401
