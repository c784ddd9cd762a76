"""
Record Transcoder

Converts between the Local Data Store's domain records, the syncable
SyncRecord, and the document shape persisted in the remote ledger.

Wire shape (one document per account):
    watchHistory[], favorites[], playlists[], settings{}, lastSyncTimestamp
Favorites reuse the history entry shape and carry addedAt in watchTimestamp.
"""

import logging
from typing import TYPE_CHECKING, Any

from vibesync.core.models import (
    FavoriteEntry,
    FavoriteItem,
    HistoryEntry,
    PlaylistEntry,
    SyncError,
    SyncErrorKind,
    SyncRecord,
    UserPlaylist,
    UserProfile,
    Video,
    VideoRef,
    WatchHistoryItem,
)

if TYPE_CHECKING:
    from vibesync.core.sync_engine import LocalDataStore

logger = logging.getLogger(__name__)

COMPLETION_THRESHOLD = 0.9

# wire key -> local setting key
SETTING_KEYS = {
    "dataCollectionEnabled": "data_collection_enabled",
    "weeklySummaryEnabled": "weekly_summary_enabled",
}


# --- Local domain <-> syncable ---

def history_to_entry(item: WatchHistoryItem) -> HistoryEntry:
    return HistoryEntry(
        video_id=item.video_id,
        title=item.title,
        channel_title=item.channel_title,
        thumbnail_url=item.thumbnail,
        duration=item.duration,
        watched_at=item.watched_at,
        watch_duration=item.watch_duration,
        watch_position=item.watch_progress,
    )


def entry_to_history(entry: HistoryEntry, existing: WatchHistoryItem | None = None) -> WatchHistoryItem:
    """Rebuild a local history item, keeping local-only fields from `existing`."""
    return WatchHistoryItem(
        video_id=entry.video_id,
        title=entry.title,
        thumbnail=entry.thumbnail_url,
        channel_title=entry.channel_title,
        channel_id=existing.channel_id if existing else "",
        duration=entry.duration,
        watched_at=entry.watched_at,
        watch_progress=entry.watch_position,
        watch_duration=entry.watch_duration,
        is_completed=existing.is_completed if existing else entry.watch_position >= COMPLETION_THRESHOLD,
    )


def favorite_to_entry(item: FavoriteItem) -> FavoriteEntry:
    return FavoriteEntry(
        video_id=item.video_id,
        title=item.title,
        channel_title=item.channel_title,
        thumbnail_url=item.thumbnail,
        duration=item.duration,
        added_at=item.added_at,
    )


def entry_to_favorite(entry: FavoriteEntry, existing: FavoriteItem | None = None) -> FavoriteItem:
    return FavoriteItem(
        video_id=entry.video_id,
        title=entry.title,
        thumbnail=entry.thumbnail_url,
        channel_title=entry.channel_title,
        channel_id=existing.channel_id if existing else "",
        duration=entry.duration,
        added_at=entry.added_at,
        category=existing.category if existing else "default",
    )


def video_to_ref(video: Video) -> VideoRef:
    return VideoRef(
        video_id=video.video_id,
        title=video.title,
        channel_title=video.channel_title,
        thumbnail_url=video.thumbnail,
        duration=video.duration,
    )


def ref_to_video(ref: VideoRef, existing: Video | None = None) -> Video:
    return Video(
        video_id=ref.video_id,
        title=ref.title,
        thumbnail=ref.thumbnail_url,
        channel_title=ref.channel_title,
        channel_id=existing.channel_id if existing else "",
        duration=ref.duration,
        description=existing.description if existing else "",
    )


def playlist_to_entry(playlist: UserPlaylist) -> PlaylistEntry:
    return PlaylistEntry(
        id=playlist.id,
        name=playlist.name,
        description=playlist.description,
        videos=[video_to_ref(v) for v in playlist.videos],
        created_at=playlist.created_at,
        updated_at=playlist.updated_at,
    )


def entry_to_playlist(entry: PlaylistEntry, existing: UserPlaylist | None = None) -> UserPlaylist:
    known = {v.video_id: v for v in existing.videos} if existing else {}
    return UserPlaylist(
        id=entry.id,
        name=entry.name,
        description=entry.description,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        videos=[ref_to_video(ref, known.get(ref.video_id)) for ref in entry.videos],
        is_public=existing.is_public if existing else False,
        thumbnail_url=existing.thumbnail_url if existing else "",
    )


def build_record(store: "LocalDataStore", timestamp: int = 0) -> SyncRecord:
    """Materialize a SyncRecord from the current local store contents."""
    settings = {}
    for wire_key, local_key in SETTING_KEYS.items():
        value = store.get_setting_value(local_key)
        if value is not None:
            settings[wire_key] = value

    return SyncRecord(
        history=[history_to_entry(i) for i in store.get_history()],
        favorites=[favorite_to_entry(i) for i in store.get_favorites()],
        playlists=[playlist_to_entry(p) for p in store.get_playlists()],
        settings=settings,
        last_synced_at=timestamp,
    )


def apply_record(store: "LocalDataStore", record: SyncRecord) -> None:
    """Write a merged record into the local store, keeping fields the wire shape lacks."""
    logger.debug(f"Applying record: {len(record.history)} history, "
                 f"{len(record.favorites)} favorites, {len(record.playlists)} playlists")

    history = {(i.video_id, i.watched_at): i for i in store.get_history()}
    store.set_history([entry_to_history(e, history.get(e.key)) for e in record.history])

    favorites = {i.video_id: i for i in store.get_favorites()}
    store.set_favorites([entry_to_favorite(e, favorites.get(e.key)) for e in record.favorites])

    playlists = {p.id: p for p in store.get_playlists()}
    store.set_playlists([entry_to_playlist(e, playlists.get(e.id)) for e in record.playlists])

    for wire_key, value in record.settings.items():
        local_key = SETTING_KEYS.get(wire_key)
        if local_key is None:
            logger.debug(f"Skipping unknown setting: {wire_key}")
            continue
        store.set_setting_value(local_key, value)


# --- Syncable <-> document ---

def _video_doc(video_id: str, title: str, channel_title: str, thumbnail_url: str,
               duration: str, timestamp: int = 0, watch_duration: int = 0,
               watch_position: float = 0.0) -> dict:
    return {
        "videoId": video_id,
        "title": title,
        "channelTitle": channel_title,
        "thumbnailUrl": thumbnail_url,
        "duration": duration,
        "watchTimestamp": timestamp,
        "watchDuration": watch_duration,
        "watchPosition": watch_position,
    }


def to_document(record: SyncRecord) -> dict:
    return {
        "watchHistory": [
            _video_doc(e.video_id, e.title, e.channel_title, e.thumbnail_url, e.duration,
                       e.watched_at, e.watch_duration, e.watch_position)
            for e in record.history
        ],
        "favorites": [
            _video_doc(e.video_id, e.title, e.channel_title, e.thumbnail_url, e.duration, e.added_at)
            for e in record.favorites
        ],
        "playlists": [
            {
                "id": p.id,
                "name": p.name,
                "description": p.description,
                "videos": [
                    _video_doc(v.video_id, v.title, v.channel_title, v.thumbnail_url, v.duration)
                    for v in p.videos
                ],
                "createdAt": p.created_at,
                "updatedAt": p.updated_at,
            }
            for p in record.playlists
        ],
        "settings": dict(record.settings),
        "lastSyncTimestamp": record.last_synced_at,
    }


def _fail(message: str) -> SyncError:
    return SyncError(SyncErrorKind.PARSE_FAILURE, message)


def _str(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _fail(f"Field '{key}' is not a string: {value!r}")
    return value


def _int(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(f"Field '{key}' is not a number: {value!r}")
    return int(value)


def _float(data: dict, key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _fail(f"Field '{key}' is not a number: {value!r}")
    return float(value)


def _dicts(data: dict, key: str) -> list[dict]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise _fail(f"Field '{key}' is not a list")
    for item in value:
        if not isinstance(item, dict):
            raise _fail(f"Entry in '{key}' is not an object: {item!r}")
    return value


def _history_from_doc(d: dict) -> HistoryEntry:
    return HistoryEntry(
        video_id=_str(d, "videoId"),
        title=_str(d, "title"),
        channel_title=_str(d, "channelTitle"),
        thumbnail_url=_str(d, "thumbnailUrl"),
        duration=_str(d, "duration"),
        watched_at=_int(d, "watchTimestamp"),
        watch_duration=_int(d, "watchDuration"),
        watch_position=_float(d, "watchPosition"),
    )


def _favorite_from_doc(d: dict) -> FavoriteEntry:
    return FavoriteEntry(
        video_id=_str(d, "videoId"),
        title=_str(d, "title"),
        channel_title=_str(d, "channelTitle"),
        thumbnail_url=_str(d, "thumbnailUrl"),
        duration=_str(d, "duration"),
        added_at=_int(d, "watchTimestamp"),
    )


def _ref_from_doc(d: dict) -> VideoRef:
    return VideoRef(
        video_id=_str(d, "videoId"),
        title=_str(d, "title"),
        channel_title=_str(d, "channelTitle"),
        thumbnail_url=_str(d, "thumbnailUrl"),
        duration=_str(d, "duration"),
    )


def _playlist_from_doc(d: dict) -> PlaylistEntry:
    return PlaylistEntry(
        id=_str(d, "id"),
        name=_str(d, "name"),
        description=_str(d, "description"),
        videos=[_ref_from_doc(v) for v in _dicts(d, "videos")],
        created_at=_int(d, "createdAt"),
        updated_at=_int(d, "updatedAt"),
    )


def _settings_from_doc(data: dict) -> dict:
    value = data.get("settings")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _fail("Field 'settings' is not an object")

    settings = {}
    for key, item in value.items():
        if item is None:
            continue
        if not isinstance(item, (bool, int, float, str)):
            raise _fail(f"Setting '{key}' is not a primitive: {item!r}")
        settings[str(key)] = item
    return settings


def from_document(data: Any) -> SyncRecord:
    """Parse a ledger document. Raises SyncError(PARSE_FAILURE) on malformed input."""
    if not isinstance(data, dict):
        raise _fail(f"Document is not an object: {type(data).__name__}")

    return SyncRecord(
        history=[_history_from_doc(d) for d in _dicts(data, "watchHistory")],
        favorites=[_favorite_from_doc(d) for d in _dicts(data, "favorites")],
        playlists=[_playlist_from_doc(d) for d in _dicts(data, "playlists")],
        settings=_settings_from_doc(data),
        last_synced_at=_int(data, "lastSyncTimestamp"),
    )


def profile_to_document(profile: UserProfile) -> dict:
    return {
        "uid": profile.uid,
        "displayName": profile.display_name,
        "email": profile.email,
        "photoUrl": profile.photo_url,
        "syncEnabled": profile.sync_enabled,
        "createdAt": profile.created_at,
        "lastUpdated": profile.last_updated,
    }


def profile_from_document(data: Any) -> UserProfile:
    if not isinstance(data, dict):
        raise _fail(f"Profile is not an object: {type(data).__name__}")

    photo_url = data.get("photoUrl")
    if photo_url is not None and not isinstance(photo_url, str):
        raise _fail(f"Field 'photoUrl' is not a string: {photo_url!r}")

    return UserProfile(
        uid=_str(data, "uid"),
        display_name=_str(data, "displayName"),
        email=_str(data, "email"),
        photo_url=photo_url,
        sync_enabled=bool(data.get("syncEnabled", False)),
        created_at=_int(data, "createdAt"),
        last_updated=_int(data, "lastUpdated"),
    )
