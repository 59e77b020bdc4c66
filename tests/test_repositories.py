"""Tests for repository SQL helpers with a mocked cursor."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from chatsync.domain.models import Channel
from chatsync.infra.repositories import chats_repository, messages_repository

CHANNEL = Channel(id="chan-1", workspace_id="ws-1", status="active")
TS = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestMessagesRepository:
    def test_upsert_serializes_metadata(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("uuid-1", True, "sent", TS)
        record = {"wa_message_id": "m1", "media_metadata": {"mime_type": "image/png"}}

        assert messages_repository.upsert_message(cur, record) == ("uuid-1", True, "sent", TS)
        sql, params = cur.execute.call_args.args
        assert "ON CONFLICT (channel_id, wa_message_id)" in sql
        assert json.loads(params["media_metadata"]) == {"mime_type": "image/png"}
        assert record["media_metadata"] == {"mime_type": "image/png"}

    def test_upsert_empty_metadata_is_null(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("uuid-1", False, None, TS)
        messages_repository.upsert_message(cur, {"media_metadata": {}})
        assert cur.execute.call_args.args[1]["media_metadata"] is None

    def test_upsert_keeps_creation_time_without_timestamp(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("uuid-1", False, None, TS)
        messages_repository.upsert_message(cur, {"media_metadata": None})
        sql, params = cur.execute.call_args.args
        assert "WHEN %(has_timestamp)s THEN EXCLUDED.created_at ELSE messages.created_at" in sql
        assert params["has_timestamp"] is False

    def test_status_update_is_conditional(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        result = messages_repository.update_status_if_progression(
            cur, channel_id="chan-1", wa_message_id="m1", status="read"
        )
        assert result is None
        sql = cur.execute.call_args.args[0]
        assert "direction = 'outbound'" in sql
        assert "'failed'" in sql
        assert "WHEN 'delivered' THEN 2" in sql

    def test_soft_delete_guards_on_null(self):
        cur = MagicMock()
        cur.rowcount = 0
        assert messages_repository.soft_delete(cur, channel_id="c", wa_message_id="m", deleted_at=TS) == 0
        assert "deleted_at IS NULL" in cur.execute.call_args.args[0]


class TestChatsRepository:
    def test_existing_chat_gets_better_name(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("chat-1", "chan-1", "5511@s.whatsapp.net", False, "+5511", None)

        chat = chats_repository.get_or_create_chat(
            cur, CHANNEL, "5511@s.whatsapp.net", {"sender": {"name": "Ana"}}
        )

        assert chat.id == "chat-1"
        update_sql, params = cur.execute.call_args.args
        assert update_sql.startswith("UPDATE chats SET display_name")
        assert params == {"display_name": "Ana", "chat_id": "chat-1"}

    def test_new_direct_chat_uses_phone_placeholder(self):
        cur = MagicMock()
        cur.fetchone.side_effect = [None, ("chat-2", "chan-1", "5511@s.whatsapp.net", False, "+5511", None)]

        chat = chats_repository.get_or_create_chat(cur, CHANNEL, "5511@s.whatsapp.net", {})

        assert chat.display_name == "+5511"
        insert_sql, params = cur.execute.call_args.args
        assert "ON CONFLICT (channel_id, wa_chat_id)" in insert_sql
        assert params[:6] == ("ws-1", "chan-1", "5511@s.whatsapp.net", False, "+5511", "+5511")

    def test_new_group_chat(self):
        cur = MagicMock()
        cur.fetchone.side_effect = [None, ("chat-3", "chan-1", "123@g.us", True, "Team", None)]
        item = {"group": {"name": "Team", "participants": ["a", "b"]}}

        chats_repository.get_or_create_chat(cur, CHANNEL, "123@g.us", item)

        params = cur.execute.call_args.args[1]
        assert params[3] is True
        assert params[4] == "Team"
        assert params[5] is None
        assert json.loads(params[6]) == ["a", "b"]

    def test_update_last_message_params(self):
        cur = MagicMock()
        cur.fetchone.return_value = (True,)
        shown = chats_repository.update_last_message(
            cur,
            chat_id="chat-1",
            preview="hi",
            timestamp=TS,
            direction="inbound",
            status=None,
            increment_unread=True,
            tolerance=timedelta(seconds=5),
        )
        assert shown is True
        sql, params = cur.execute.call_args.args
        assert "FOR UPDATE" in sql
        assert "GREATEST(c.last_message_at, %(ts)s)" in sql
        assert params["increment"] == 1
        assert params["tolerance"] == timedelta(seconds=5)

    def test_update_last_message_missing_chat(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        assert chats_repository.update_last_message(
            cur,
            chat_id="gone",
            preview=None,
            timestamp=TS,
            direction="outbound",
            status="sent",
            increment_unread=False,
            tolerance=timedelta(seconds=5),
        ) is False
