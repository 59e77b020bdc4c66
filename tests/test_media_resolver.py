"""Tests for media resolution strategies (stub client and storage)."""

import psycopg2

from chatsync.domain.media import extension_for, resolve_media
from chatsync.infra.object_storage import ObjectStorageError
from chatsync.infra.tokens import TokenDecryptionError
from chatsync.whapi.client import DownloadedMedia

from helpers import RecordingStorage, StubTokenProvider, StubWhapiClient, make_collaborators

IMAGE_ITEM = {"id": "wa-1", "type": "image", "image": {"id": "media-1", "mime_type": "image/jpeg", "width": 640}}


def _resolve(item, collaborators, **kwargs):
    return resolve_media(item, "image", "chan-1", "ws-1", collaborators, **kwargs)


class TestStrategyOrder:
    def test_direct_link_needs_no_provider_call(self):
        client = StubWhapiClient()
        item = {"id": "wa-1", "image": {"id": "media-1", "link": "https://whapi/img.jpg"}}
        resolved = _resolve(item, make_collaborators(client=client))
        assert resolved.url == "https://whapi/img.jpg"
        assert client.calls == []

    def test_media_info_preferred_over_download(self):
        client = StubWhapiClient(
            media_info={"link": "https://whapi/media-1", "file_size": 1234},
            download=DownloadedMedia(content=b"bytes", content_type="image/jpeg"),
        )
        resolved = _resolve(IMAGE_ITEM, make_collaborators(client=client))
        assert resolved.url == "https://whapi/media-1"
        assert resolved.storage_path is None
        assert resolved.metadata.size == 1234
        assert resolved.metadata.mime_type == "image/jpeg"
        assert resolved.metadata.width == 640
        assert resolved.metadata.id == "media-1"
        assert client.calls == [("media_info", "media-1")]

    def test_full_message_used_when_media_info_empty(self):
        client = StubWhapiClient(
            media_info=None,
            message={"id": "wa-1", "image": {"link": "https://whapi/detailed.jpg"}},
        )
        resolved = _resolve(IMAGE_ITEM, make_collaborators(client=client))
        assert resolved.url == "https://whapi/detailed.jpg"
        assert client.calls == [("media_info", "media-1"), ("message", "wa-1")]

    def test_download_and_store_as_last_resort(self):
        storage = RecordingStorage()
        client = StubWhapiClient(download=DownloadedMedia(content=b"\x89PNG", content_type="image/png"))
        resolved = _resolve(IMAGE_ITEM, make_collaborators(client=client, storage=storage))

        assert resolved.storage_path == "workspaces/ws-1/image/media-1.png"
        assert resolved.url == "https://cdn.test/workspaces/ws-1/image/media-1.png"
        assert resolved.metadata.stored is True
        assert resolved.metadata.size == 4
        assert resolved.metadata.mime_type == "image/png"
        assert storage.uploads == [("workspaces/ws-1/image/media-1.png", b"\x89PNG", "image/png")]

    def test_download_answering_json_description(self):
        client = StubWhapiClient(download={"link": "https://whapi/late.jpg"})
        resolved = _resolve(IMAGE_ITEM, make_collaborators(client=client))
        assert resolved.url == "https://whapi/late.jpg"
        assert resolved.storage_path is None


class TestFailures:
    def test_nothing_resolves(self):
        assert _resolve(IMAGE_ITEM, make_collaborators(client=StubWhapiClient())) is None

    def test_no_token_skips_provider_strategies(self):
        client = StubWhapiClient(media_info={"link": "https://whapi/x"})
        collaborators = make_collaborators(client=client, token_provider=StubTokenProvider(token=None))
        assert _resolve(IMAGE_ITEM, collaborators) is None
        assert client.calls == []

    def test_token_errors_are_absorbed(self):
        for error in (TokenDecryptionError("bad"), RuntimeError("no key"), psycopg2.OperationalError("down")):
            provider = StubTokenProvider(error=error)
            assert _resolve(IMAGE_ITEM, make_collaborators(token_provider=provider)) is None
            assert len(provider.calls) == 1

    def test_storage_failure_is_absorbed(self):
        class FailingStorage(RecordingStorage):
            def upload(self, path, data, content_type):
                raise ObjectStorageError("boom")

        client = StubWhapiClient(download=DownloadedMedia(content=b"x", content_type="image/jpeg"))
        collaborators = make_collaborators(client=client, storage=FailingStorage())
        assert _resolve(IMAGE_ITEM, collaborators) is None


class TestViewOnce:
    def test_provider_link_is_persisted(self):
        storage = RecordingStorage()
        item = {"id": "wa-vo", "view_once": True, "image": {"id": "media-9", "link": "https://whapi/vo.jpg"}}
        collaborators = make_collaborators(
            storage=storage,
            fetched=DownloadedMedia(content=b"img", content_type="application/octet-stream"),
        )
        item["image"]["mime_type"] = "image/jpeg"

        resolved = _resolve(item, collaborators, ephemeral=True)

        assert resolved.storage_path == "workspaces/ws-1/viewonce/wa-vo.jpg"
        assert resolved.metadata.original_url == "https://whapi/vo.jpg"
        assert resolved.metadata.is_view_once is True
        assert resolved.metadata.mime_type == "image/jpeg"
        assert storage.uploads[0][2] == "image/jpeg"

    def test_falls_back_to_provider_link_when_fetch_fails(self):
        item = {"id": "wa-vo", "image": {"link": "https://whapi/vo.jpg"}}
        resolved = _resolve(item, make_collaborators(fetched=None), ephemeral=True)
        assert resolved.url == "https://whapi/vo.jpg"
        assert resolved.storage_path is None

    def test_not_forced_when_not_ephemeral(self):
        storage = RecordingStorage()
        item = {"id": "wa-1", "image": {"link": "https://whapi/a.jpg"}}
        collaborators = make_collaborators(
            storage=storage, fetched=DownloadedMedia(content=b"img", content_type="image/jpeg")
        )
        resolved = _resolve(item, collaborators)
        assert resolved.storage_path is None
        assert storage.uploads == []


def test_extension_for():
    assert extension_for("image/jpeg") == ".jpg"
    assert extension_for("AUDIO/OGG") == ".ogg"
    assert extension_for("application/x-unknown") == ""
    assert extension_for(None) == ""
