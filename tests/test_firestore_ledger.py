# test_firestore_ledger.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions

from vibesync.clients.firestore import FirestoreLedger, translate_error
from vibesync.core.cache import LedgerCache
from vibesync.core.models import (
    HistoryEntry,
    Source,
    SyncError,
    SyncErrorKind,
    SyncRecord,
    UserProfile,
)
from vibesync.core.transcoder import to_document

RECORD = SyncRecord(history=[HistoryEntry(video_id="v1", watched_at=5)],
                    settings={"dataCollectionEnabled": True}, last_synced_at=9)


def _snapshot(data=None):
    snapshot = MagicMock()
    snapshot.exists = data is not None
    snapshot.to_dict.return_value = data
    return snapshot


@pytest.fixture
def doc():
    doc = MagicMock()
    doc.get = AsyncMock(return_value=_snapshot())
    doc.set = AsyncMock()
    doc.delete = AsyncMock()
    return doc


@pytest.fixture
def client(doc):
    client = MagicMock()
    client.collection.return_value.document.return_value = doc
    return client


@pytest.fixture
def cache(tmp_path):
    return LedgerCache(tmp_path / "cache.json")


@pytest.fixture
def ledger(client, cache):
    return FirestoreLedger(client, cache)


@pytest.mark.asyncio
async def test_server_read_populates_cache(ledger, doc, client, cache):
    doc.get.return_value = _snapshot(to_document(RECORD))

    record = await ledger.get("u1")

    assert record == RECORD
    client.collection.assert_called_with("user_sync_data")
    client.collection.return_value.document.assert_called_with("u1")
    assert cache.get("user_sync_data/u1") == to_document(RECORD)
    assert await ledger.get("u1", Source.CACHE) == RECORD


@pytest.mark.asyncio
async def test_missing_document_returns_none_and_clears_cache(ledger, cache):
    cache.put("user_sync_data/u1", to_document(RECORD))

    assert await ledger.get("u1") is None
    assert cache.get("user_sync_data/u1") is None


@pytest.mark.asyncio
async def test_cache_read_never_touches_server(ledger, doc):
    assert await ledger.get("u1", Source.CACHE) is None
    doc.get.assert_not_called()


@pytest.mark.asyncio
async def test_malformed_server_document_is_parse_failure(ledger, doc):
    doc.get.return_value = _snapshot({"watchHistory": "broken"})

    with pytest.raises(SyncError) as exc_info:
        await ledger.get("u1")
    assert exc_info.value.kind is SyncErrorKind.PARSE_FAILURE


@pytest.mark.asyncio
async def test_set_passes_merge_flag(ledger, doc, cache):
    await ledger.set("u1", RECORD, merge_fields=True)

    doc.set.assert_awaited_once_with(to_document(RECORD), merge=True)
    assert cache.get("user_sync_data/u1") == to_document(RECORD)


@pytest.mark.asyncio
async def test_merge_write_updates_cached_fields(ledger, cache):
    cache.put("user_sync_data/u1", {"extra": 1, "lastSyncTimestamp": 0})

    await ledger.set("u1", RECORD, merge_fields=True)

    cached = cache.get("user_sync_data/u1")
    assert cached["extra"] == 1
    assert cached["lastSyncTimestamp"] == 9


@pytest.mark.asyncio
async def test_replace_write_overwrites_cache(ledger, cache):
    cache.put("user_sync_data/u1", {"extra": 1})

    await ledger.set("u1", RECORD, merge_fields=False)

    assert "extra" not in cache.get("user_sync_data/u1")


@pytest.mark.asyncio
async def test_failed_write_leaves_cache_alone(ledger, doc, cache):
    doc.set.side_effect = api_exceptions.ServiceUnavailable("down")

    with pytest.raises(SyncError) as exc_info:
        await ledger.set("u1", RECORD)

    assert exc_info.value.kind is SyncErrorKind.SERVICE_UNAVAILABLE
    assert cache.get("user_sync_data/u1") is None


@pytest.mark.asyncio
async def test_delete_clears_cache(ledger, doc, cache):
    cache.put("user_sync_data/u1", to_document(RECORD))

    await ledger.delete("u1")

    doc.delete.assert_awaited_once()
    assert cache.get("user_sync_data/u1") is None


@pytest.mark.asyncio
async def test_profile_round_trip(ledger, doc, client):
    profile = UserProfile(uid="u1", display_name="Ann", sync_enabled=True)

    await ledger.set_profile("u1", profile)
    doc.get.return_value = _snapshot(doc.set.await_args.args[0])

    assert await ledger.get_profile("u1") == profile
    client.collection.assert_called_with("user_profiles")


@pytest.mark.asyncio
async def test_missing_profile(ledger):
    assert await ledger.get_profile("u1") is None


@pytest.mark.asyncio
async def test_delete_profile(ledger, doc):
    await ledger.delete_profile("u1")
    doc.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_permission_denied_is_translated(ledger, doc):
    doc.get.side_effect = api_exceptions.PermissionDenied("missing rules")

    with pytest.raises(SyncError) as exc_info:
        await ledger.get("u1")

    assert exc_info.value.kind is SyncErrorKind.PERMISSION_DENIED
    assert isinstance(exc_info.value.__cause__, api_exceptions.PermissionDenied)


@pytest.mark.parametrize("exc, kind", [
    (api_exceptions.PermissionDenied("x"), SyncErrorKind.PERMISSION_DENIED),
    (api_exceptions.Unauthenticated("x"), SyncErrorKind.AUTH_EXPIRED),
    (auth_exceptions.RefreshError("x"), SyncErrorKind.AUTH_EXPIRED),
    (api_exceptions.ServiceUnavailable("x"), SyncErrorKind.SERVICE_UNAVAILABLE),
    (api_exceptions.DeadlineExceeded("x"), SyncErrorKind.SERVICE_UNAVAILABLE),
    (api_exceptions.TooManyRequests("x"), SyncErrorKind.SERVICE_UNAVAILABLE),
    (api_exceptions.InternalServerError("x"), SyncErrorKind.SERVICE_UNAVAILABLE),
    (auth_exceptions.TransportError("x"), SyncErrorKind.SERVICE_UNAVAILABLE),
    (api_exceptions.NotFound("x"), SyncErrorKind.UNKNOWN),
    (api_exceptions.InvalidArgument("x"), SyncErrorKind.UNKNOWN),
])
def test_translate_error(exc, kind):
    assert translate_error(exc, "get doc").kind is kind
