"""
Merge Resolver

Reconciles the device's record with the cloud record. Pure and deterministic:
it never reads the clock or touches I/O.

Rules (applied per field)
-------------------------
- history:   local ++ remote, dedupe on (video_id, watched_at) keeping the first
             occurrence, newest first, capped at MAX_HISTORY_ITEMS
- favorites: local ++ remote, dedupe on video_id keeping the first occurrence,
             newest first, capped at MAX_FAVORITES; a local copy cut by the cap
             yields to its remote copy
- playlists: every local playlist, plus remote playlists whose id is unknown locally
- settings:  shallow merge, local value wins on shared keys

Local wins every tie. Only the history/favorites union is symmetric, and only up to
that tie-break.
"""

from typing import Callable, Hashable, Iterable, TypeVar

from vibesync.core.models import (
    MAX_FAVORITES,
    MAX_HISTORY_ITEMS,
    FavoriteEntry,
    HistoryEntry,
    PlaylistEntry,
    SyncRecord,
)

T = TypeVar('T')

PLAYLIST_RESOLUTIONS = ("local", "newest")


def _dedupe(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Keep the first item seen for each key, preserving order."""
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


def merge_history(local: list[HistoryEntry], remote: list[HistoryEntry]) -> list[HistoryEntry]:
    unique = _dedupe(local + remote, lambda e: e.key)
    # sort is stable with reverse=True, so equal timestamps keep local-first order
    unique.sort(key=lambda e: e.watched_at, reverse=True)
    return unique[:MAX_HISTORY_ITEMS]


def merge_favorites(local: list[FavoriteEntry], remote: list[FavoriteEntry]) -> list[FavoriteEntry]:
    """
    Union favorites by video_id, newest first, capped at MAX_FAVORITES.

    The local copy of a shared favorite wins while it fits under the cap. A local
    copy cut by the cap gives way to the remote copy, which then competes for a
    slot on its own added_at. This repeats until no cut local copy has a remote twin,
    so merging the result with the same remote again changes nothing.
    """
    items = local + remote
    first_local: dict[str, int] = {}
    first_remote: dict[str, int] = {}
    for i, entry in enumerate(items):
        (first_local if i < len(local) else first_remote).setdefault(entry.key, i)

    chosen = {**first_remote, **first_local}
    while True:
        # index breaks ties, so equal timestamps keep local-first order
        ranked = sorted(chosen.values(), key=lambda i: (-items[i].added_at, i))
        fallbacks = [i for i in ranked[MAX_FAVORITES:]
                     if i < len(local) and items[i].key in first_remote]
        if not fallbacks:
            return [items[i] for i in ranked[:MAX_FAVORITES]]
        for i in fallbacks:
            chosen[items[i].key] = first_remote[items[i].key]


def merge_playlists(local: list[PlaylistEntry], remote: list[PlaylistEntry],
                    resolution: str = "local") -> list[PlaylistEntry]:
    """
    Union playlists by id.

    With resolution "local" a local playlist is never replaced. With "newest" a
    remote playlist replaces the local one in place when its updated_at is
    strictly greater.
    """
    if resolution not in PLAYLIST_RESOLUTIONS:
        raise ValueError(f"Unknown playlist resolution: {resolution}")

    merged = _dedupe(local, lambda p: p.id)
    index = {p.id: i for i, p in enumerate(merged)}

    for playlist in _dedupe(remote, lambda p: p.id):
        pos = index.get(playlist.id)
        if pos is None:
            index[playlist.id] = len(merged)
            merged.append(playlist)
        elif resolution == "newest" and playlist.updated_at > merged[pos].updated_at:
            merged[pos] = playlist

    return merged


def merge(local: SyncRecord, remote: SyncRecord, playlist_resolution: str = "local") -> SyncRecord:
    """Merge two records into one valid, sorted, cap-respecting record."""
    return SyncRecord(
        history=merge_history(local.history, remote.history),
        favorites=merge_favorites(local.favorites, remote.favorites),
        playlists=merge_playlists(local.playlists, remote.playlists, playlist_resolution),
        settings={**remote.settings, **local.settings},
        last_synced_at=max(local.last_synced_at, remote.last_synced_at),
    )
