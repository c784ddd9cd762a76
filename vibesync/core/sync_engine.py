"""
Sync Engine

Reconciles the device's engagement data (history, favorites, playlists,
settings) with the account's document in the remote ledger.

Bidirectional sync
------------------
1. Download the remote record (server read with retries, cache fallback)
2. Build the local record from the Local Data Store
3. Merge (pure, local wins ties)
4. Apply the merged record to the Local Data Store
5. Upload the merged record with field-level merge

A failed download leaves the local store untouched. A failed upload leaves the
local store merged and the cloud stale; the next sync repairs it.

Every public operation takes a per-account lock, so operations for one
account never interleave within a process.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Protocol

from vibesync.core.merge import merge
from vibesync.core.models import (
    FavoriteItem,
    SettingValue,
    Source,
    SyncError,
    SyncErrorKind,
    SyncRecord,
    SyncResult,
    SyncStatus,
    UserPlaylist,
    UserProfile,
    WatchHistoryItem,
)
from vibesync.core.retry import RetryController, classify
from vibesync.core.transcoder import apply_record, build_record

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_timestamp"
DEFAULT_DISPLAY_NAME = "VibeTube User"
DISPLAY_FETCH_ATTEMPTS = 2


class LocalDataStore(Protocol):
    def get_history(self) -> list[WatchHistoryItem]: ...
    def set_history(self, items: list[WatchHistoryItem]) -> None: ...
    def get_favorites(self) -> list[FavoriteItem]: ...
    def set_favorites(self, items: list[FavoriteItem]) -> None: ...
    def get_playlists(self) -> list[UserPlaylist]: ...
    def set_playlists(self, playlists: list[UserPlaylist]) -> None: ...
    def get_setting_value(self, key: str) -> SettingValue | None: ...
    def set_setting_value(self, key: str, value: SettingValue) -> None: ...
    def has_consent(self) -> bool: ...


class Identity(Protocol):
    uid: str
    email: str
    display_name: str
    is_anonymous: bool

    async def refresh_token(self, force_refresh: bool = False) -> str: ...


class IdentityProvider(Protocol):
    def current(self) -> Identity | None: ...


class NetworkMonitor(Protocol):
    def is_connected(self) -> bool: ...


class RemoteLedger(Protocol):
    async def get(self, account_key: str, source: Source = Source.SERVER) -> SyncRecord | None: ...
    async def set(self, account_key: str, record: SyncRecord, merge_fields: bool = False) -> None: ...
    async def delete(self, account_key: str) -> None: ...
    async def get_profile(self, account_key: str) -> UserProfile | None: ...
    async def set_profile(self, account_key: str, profile: UserProfile) -> None: ...
    async def delete_profile(self, account_key: str) -> None: ...


class SyncEngine:
    """Orchestrates upload, download, bidirectional sync and deletion for one device."""

    def __init__(self, store: LocalDataStore, identity: IdentityProvider,
                 network: NetworkMonitor, ledger: RemoteLedger,
                 retry: RetryController | None = None,
                 playlist_resolution: str = "local",
                 clock: Callable[[], float] = time.time):
        self._store = store
        self._identity = identity
        self._network = network
        self._ledger = ledger
        self._retry = retry or RetryController()
        self._playlist_resolution = playlist_resolution
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _now(self) -> int:
        return int(self._clock() * 1000)

    def _lock(self, account_key: str) -> asyncio.Lock:
        return self._locks.setdefault(account_key, asyncio.Lock())

    def _require_identity(self, consent: bool = False) -> Identity:
        """Synchronous precondition checks; nothing here touches the network."""
        user = self._identity.current()
        if user is None:
            raise SyncError(SyncErrorKind.NOT_SIGNED_IN, "User not signed in")
        if user.is_anonymous:
            raise SyncError(SyncErrorKind.ANONYMOUS_IDENTITY, "Anonymous users cannot sync data")
        if consent and not self._store.has_consent():
            raise SyncError(SyncErrorKind.CONSENT_REQUIRED, "User consent required for sync")
        return user

    async def _verify_token(self, user: Identity) -> None:
        try:
            token = await user.refresh_token(False)
        except Exception as e:
            raise classify(e)
        logger.debug(f"User authenticated with token: {token[:8]}...")

    async def _is_connected(self) -> bool:
        return await asyncio.to_thread(self._network.is_connected)

    # --- upload ---

    async def upload(self, record: SyncRecord | None = None) -> SyncResult[SyncRecord]:
        """Write the local record (or `record`) to the ledger with field-level merge."""
        try:
            user = self._require_identity(consent=True)
        except SyncError as e:
            logger.warning(f"Upload refused: {e.message}")
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            return await self._upload(user, record)

    async def _upload(self, user: Identity, record: SyncRecord | None = None) -> SyncResult[SyncRecord]:
        try:
            await self._verify_token(user)
            if record is None:
                record = build_record(self._store, self._now())

            logger.info(f"Uploading data for user: {user.uid}")
            await self._ledger.set(user.uid, record, merge_fields=True)
        except Exception as e:
            error = classify(e)
            logger.error(f"Upload failed ({error.kind.value}): {error.message}")
            return SyncResult.failure(error)

        logger.info("User data uploaded successfully")
        return SyncResult.ok(record)

    # --- download ---

    async def download(self) -> SyncResult[SyncRecord]:
        """Fetch the account's record; never mutates local state."""
        try:
            user = self._require_identity()
        except SyncError as e:
            logger.warning(f"Download refused: {e.message}")
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            return await self._download(user, self._retry)

    async def _download(self, user: Identity, retry: RetryController) -> SyncResult[SyncRecord]:
        try:
            await self._verify_token(user)
        except SyncError as e:
            if not e.retryable:
                logger.error(f"Failed to verify token: {e.message}")
                return SyncResult.failure(e)
            logger.warning(f"Token refresh unreachable ({e.message}), trying cached data")
            return await self._read_cache(user.uid)

        if not await self._is_connected():
            logger.warning("No network connection, trying cached data")
            return await self._read_cache(user.uid)

        logger.debug(f"Fetching data for user: {user.uid}")
        result = await retry.run(lambda: self._ledger.get(user.uid, Source.SERVER),
                                 f"download {user.uid}")
        if not result.success:
            if result.error.retryable:
                logger.warning("Server unreachable after retries, trying cached data")
                return await self._read_cache(user.uid)
            return result

        if result.value is not None:
            logger.info("User data downloaded successfully")
            return result

        logger.info("No user data found in cloud, creating new document")
        empty = SyncRecord.empty(self._now())
        try:
            await self._ledger.set(user.uid, empty, merge_fields=False)
        except Exception as e:
            error = classify(e)
            logger.error(f"Failed to create cloud document ({error.kind.value}): {error.message}")
            return SyncResult.failure(error)
        return SyncResult.ok(empty)

    async def _read_cache(self, account_key: str) -> SyncResult[SyncRecord]:
        """Serve from the ledger's cache tier. Absent data is an empty record, not an error."""
        try:
            record = await self._ledger.get(account_key, Source.CACHE)
        except Exception as e:
            error = classify(e)
            logger.error(f"Failed to get cached data: {error.message}")
            if error.kind is SyncErrorKind.PARSE_FAILURE:
                return SyncResult.failure(error)
            return SyncResult.failure(SyncError(SyncErrorKind.SERVICE_UNAVAILABLE,
                                                f"Cache read failed: {error.message}"))

        if record is None:
            logger.info("No cached data available")
            return SyncResult.ok(SyncRecord.empty())

        logger.info("Using cached user data")
        return SyncResult.ok(record)

    # --- bidirectional ---

    async def sync_bidirectional(self) -> SyncResult[SyncRecord]:
        """Download, merge, apply locally, then upload the merged record."""
        try:
            user = self._require_identity(consent=True)
        except SyncError as e:
            logger.warning(f"Sync refused: {e.message}")
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            start = time.time()
            logger.info("=" * 50)
            logger.info(f"Starting sync for user: {user.uid}")

            remote = await self._download(user, self._retry)
            if not remote.success:
                logger.error(f"Sync aborted, download failed: {remote.error.message}")
                return remote

            try:
                local = build_record(self._store, self._last_synced_at())
                merged = merge(local, remote.value, self._playlist_resolution).stamped(self._now())
                logger.info(f"Merged: {len(merged.history)} history, {len(merged.favorites)} favorites, "
                            f"{len(merged.playlists)} playlists, {len(merged.settings)} settings")
                apply_record(self._store, merged)
            except Exception as e:
                error = classify(e)
                logger.error(f"Sync failed while merging ({error.kind.value}): {error.message}")
                return SyncResult.failure(error)

            uploaded = await self._upload(user, merged)
            if not uploaded.success:
                logger.warning("Local data merged but cloud upload failed; next sync will retry")
                return uploaded

            try:
                self._store.set_setting_value(LAST_SYNC_KEY, merged.last_synced_at)
            except Exception as e:
                logger.warning(f"Failed to record sync time: {e}")
            logger.info(f"Completed in {time.time() - start:.1f}s")
            logger.info("=" * 50)
            return SyncResult.ok(merged)

    def _last_synced_at(self) -> int:
        value = self._store.get_setting_value(LAST_SYNC_KEY)
        if isinstance(value, bool) or not isinstance(value, int):
            return 0
        return value

    # --- deletion ---

    async def delete_remote(self) -> SyncResult[None]:
        """Delete the account's cloud record and profile. Local data is untouched."""
        try:
            user = self._require_identity()
        except SyncError as e:
            logger.warning(f"Delete refused: {e.message}")
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            try:
                await self._verify_token(user)
                await self._ledger.delete(user.uid)
                await self._ledger.delete_profile(user.uid)
            except Exception as e:
                error = classify(e)
                logger.error(f"Failed to delete cloud data ({error.kind.value}): {error.message}")
                return SyncResult.failure(error)

            logger.info(f"Cloud data deleted successfully for user: {user.uid}")
            return SyncResult.ok()

    # --- status and display ---

    def is_sync_enabled(self) -> bool:
        try:
            self._require_identity(consent=True)
        except SyncError:
            return False
        return True

    async def get_status(self) -> SyncStatus:
        user = self._identity.current()
        signed_in = user is not None and not user.is_anonymous

        authenticated = False
        if signed_in:
            try:
                await self._verify_token(user)
                authenticated = True
            except SyncError as e:
                logger.warning(f"Token check failed: {e.message}")

        last = self._last_synced_at()
        return SyncStatus(
            signed_in=signed_in,
            email=user.email if user else "",
            authenticated=authenticated,
            has_consent=self._store.has_consent(),
            network_connected=await self._is_connected(),
            sync_enabled=self.is_sync_enabled(),
            last_synced_at=last or None,
        )

    async def fetch_for_display(self) -> SyncResult[SyncRecord]:
        """Download with two attempts, falling back to cache on any non-auth failure."""
        try:
            user = self._require_identity()
        except SyncError as e:
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            result = await self._download(user, self._retry.with_attempts(DISPLAY_FETCH_ATTEMPTS))
            if result.success or result.error.permanent:
                return result

            logger.warning(f"Download failed ({result.error.kind.value}), using cached data as fallback")
            cached = await self._read_cache(user.uid)
            return cached if cached.success else result

    # --- profile ---

    async def get_profile(self) -> SyncResult[UserProfile]:
        try:
            user = self._require_identity()
        except SyncError as e:
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            return await self._get_profile(user)

    async def _get_profile(self, user: Identity) -> SyncResult[UserProfile]:
        try:
            profile = await self._ledger.get_profile(user.uid)
            if profile is None:
                now = self._now()
                profile = UserProfile(
                    uid=user.uid,
                    display_name=user.display_name or DEFAULT_DISPLAY_NAME,
                    email=user.email,
                    sync_enabled=True,
                    created_at=now,
                    last_updated=now,
                )
                await self._ledger.set_profile(user.uid, profile)
                logger.info(f"Created profile for user: {user.uid}")
        except Exception as e:
            error = classify(e)
            logger.error(f"Failed to get user profile: {error.message}")
            return SyncResult.failure(error)
        return SyncResult.ok(profile)

    async def set_sync_enabled(self, enabled: bool) -> SyncResult[UserProfile]:
        try:
            user = self._require_identity()
        except SyncError as e:
            return SyncResult.failure(e)

        async with self._lock(user.uid):
            current = await self._get_profile(user)
            if not current.success:
                return current

            profile = replace(current.value, sync_enabled=enabled, last_updated=self._now())
            try:
                await self._ledger.set_profile(user.uid, profile)
            except Exception as e:
                error = classify(e)
                logger.error(f"Failed to update sync setting: {error.message}")
                return SyncResult.failure(error)
            return SyncResult.ok(profile)
