"""Shared pytest fixtures for chatsync tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_cached_factories():
    """Clear lru_cache'd factories so env changes in one test don't leak."""
    from chatsync.infra.object_storage import get_media_storage

    get_media_storage.cache_clear()
    yield
    get_media_storage.cache_clear()
