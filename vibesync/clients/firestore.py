"""
Firestore Remote Ledger

One document per account in `user_sync_data`, one profile document per account
in `user_profiles`. The Python client keeps no offline cache of its own, so
every successful server read and write is mirrored into a LedgerCache; reads
with Source.CACHE are served from it.
"""

import logging
from typing import Awaitable, Callable, TypeVar

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore

from vibesync.core.cache import LedgerCache
from vibesync.core.models import Source, SyncError, SyncErrorKind, SyncRecord, UserProfile
from vibesync.core.transcoder import (
    from_document,
    profile_from_document,
    profile_to_document,
    to_document,
)

logger = logging.getLogger(__name__)

COLLECTION_USER_DATA = "user_sync_data"
COLLECTION_USER_PROFILES = "user_profiles"

T = TypeVar('T')

_UNAVAILABLE = (
    api_exceptions.ServiceUnavailable,
    api_exceptions.DeadlineExceeded,
    api_exceptions.TooManyRequests,
    api_exceptions.InternalServerError,
    api_exceptions.RetryError,
)


def translate_error(exc: Exception, name: str) -> SyncError:
    """Classify a Google client exception."""
    if isinstance(exc, api_exceptions.PermissionDenied):
        return SyncError(SyncErrorKind.PERMISSION_DENIED,
                         f"Permission denied on {name}. Please check your account permissions.")
    if isinstance(exc, (api_exceptions.Unauthenticated, auth_exceptions.RefreshError)):
        return SyncError(SyncErrorKind.AUTH_EXPIRED,
                         f"Authentication expired on {name}. Please sign in again.")
    if isinstance(exc, _UNAVAILABLE + (auth_exceptions.TransportError,)):
        return SyncError(SyncErrorKind.SERVICE_UNAVAILABLE, f"Firestore unavailable on {name}: {exc}")
    return SyncError(SyncErrorKind.UNKNOWN, f"Firestore error on {name}: {exc}")


class FirestoreLedger:
    """Remote ledger backed by a Firestore AsyncClient and a local snapshot cache."""

    def __init__(self, client: firestore.AsyncClient, cache: LedgerCache,
                 collection: str = COLLECTION_USER_DATA,
                 profile_collection: str = COLLECTION_USER_PROFILES):
        self._client = client
        self._cache = cache
        self._collection = collection
        self._profile_collection = profile_collection

    def _doc(self, collection: str, key: str):
        return self._client.collection(collection).document(key)

    async def _call(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        try:
            return await operation()
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            error = translate_error(e, name)
            logger.error(f"{error.kind.value}: {error.message}")
            raise error from e

    async def get(self, account_key: str, source: Source = Source.SERVER) -> SyncRecord | None:
        path = f"{self._collection}/{account_key}"

        if source is Source.CACHE:
            data = self._cache.get(path)
            if data is None:
                return None
            logger.debug(f"Serving {path} from cache")
            return from_document(data)

        snapshot = await self._call(lambda: self._doc(self._collection, account_key).get(),
                                    f"get {path}")
        if not snapshot.exists:
            self._cache.discard(path)
            self._cache.save()
            return None

        record = from_document(snapshot.to_dict())
        self._cache.put(path, to_document(record))
        self._cache.save()
        return record

    async def set(self, account_key: str, record: SyncRecord, merge_fields: bool = False) -> None:
        path = f"{self._collection}/{account_key}"
        data = to_document(record)

        await self._call(lambda: self._doc(self._collection, account_key).set(data, merge=merge_fields),
                         f"set {path}")
        if merge_fields:
            self._cache.update(path, data)
        else:
            self._cache.put(path, data)
        self._cache.save()

    async def delete(self, account_key: str) -> None:
        path = f"{self._collection}/{account_key}"
        await self._call(lambda: self._doc(self._collection, account_key).delete(), f"delete {path}")
        self._cache.discard(path)
        self._cache.save()

    async def get_profile(self, account_key: str) -> UserProfile | None:
        snapshot = await self._call(lambda: self._doc(self._profile_collection, account_key).get(),
                                    f"get profile {account_key}")
        if not snapshot.exists:
            return None
        return profile_from_document(snapshot.to_dict())

    async def set_profile(self, account_key: str, profile: UserProfile) -> None:
        data = profile_to_document(profile)
        await self._call(lambda: self._doc(self._profile_collection, account_key).set(data),
                         f"set profile {account_key}")

    async def delete_profile(self, account_key: str) -> None:
        await self._call(lambda: self._doc(self._profile_collection, account_key).delete(),
                         f"delete profile {account_key}")
