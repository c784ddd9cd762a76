# conftest.py
#
# In-memory doubles for the four collaborators the sync engine talks to:
# local store, identity provider, network monitor and remote ledger.
#
import asyncio
from dataclasses import replace

import pytest

from vibesync.core.models import (
    FavoriteItem,
    Source,
    SyncRecord,
    UserProfile,
    WatchHistoryItem,
)
from vibesync.core.retry import RetryController
from vibesync.core.sync_engine import SyncEngine

NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)


class FakeStore:
    def __init__(self, consent: bool = True):
        self.consent = consent
        self.history: list[WatchHistoryItem] = []
        self.favorites: list[FavoriteItem] = []
        self.playlists = []
        self.settings = {}
        self.writes = []

    def get_history(self):
        return list(self.history)

    def set_history(self, items):
        self.writes.append("history")
        self.history = list(items)

    def get_favorites(self):
        return list(self.favorites)

    def set_favorites(self, items):
        self.writes.append("favorites")
        self.favorites = list(items)

    def get_playlists(self):
        return list(self.playlists)

    def set_playlists(self, playlists):
        self.writes.append("playlists")
        self.playlists = list(playlists)

    def get_setting_value(self, key):
        return self.settings.get(key)

    def set_setting_value(self, key, value):
        self.writes.append(f"setting:{key}")
        self.settings[key] = value

    def has_consent(self):
        return self.consent


class FakeIdentity:
    def __init__(self, uid="user-1", email="user@example.com", display_name="Test User",
                 is_anonymous=False):
        self.uid = uid
        self.email = email
        self.display_name = display_name
        self.is_anonymous = is_anonymous
        self.token_error = None
        self.refresh_calls = []

    async def refresh_token(self, force_refresh=False):
        self.refresh_calls.append(force_refresh)
        if self.token_error:
            raise self.token_error
        return "token-0123456789"


class FakeIdentityProvider:
    def __init__(self, identity=None):
        self.identity = identity

    def current(self):
        return self.identity


class FakeNetwork:
    def __init__(self, connected=True):
        self.connected = connected

    def is_connected(self):
        return self.connected


class FakeLedger:
    """Dict-backed ledger with a separate cache tier and scripted failures."""

    def __init__(self):
        self.docs: dict[str, SyncRecord] = {}
        self.cache: dict[str, SyncRecord] = {}
        self.profiles: dict[str, UserProfile] = {}
        self.get_errors = []
        self.set_error = None
        self.delete_error = None
        self.cache_error = None
        self.calls = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)

    async def get(self, account_key, source=Source.SERVER):
        self.calls.append(("get", account_key, source))
        if source is Source.CACHE:
            if self.cache_error:
                raise self.cache_error
            return self.cache.get(account_key)

        await self._enter()
        try:
            self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            if self.get_errors:
                raise self.get_errors.pop(0)
            record = self.docs.get(account_key)
            if record is not None:
                self.cache[account_key] = record
            return record
        finally:
            self.in_flight -= 1

    async def set(self, account_key, record, merge_fields=False):
        self.calls.append(("set", account_key, merge_fields))
        await self._enter()
        try:
            if self.set_error:
                raise self.set_error
            self.docs[account_key] = record
            self.cache[account_key] = record
        finally:
            self.in_flight -= 1

    async def delete(self, account_key):
        self.calls.append(("delete", account_key))
        if self.delete_error:
            raise self.delete_error
        self.docs.pop(account_key, None)
        self.cache.pop(account_key, None)

    async def get_profile(self, account_key):
        self.calls.append(("get_profile", account_key))
        profile = self.profiles.get(account_key)
        return replace(profile) if profile else None

    async def set_profile(self, account_key, profile):
        self.calls.append(("set_profile", account_key))
        self.profiles[account_key] = profile

    async def delete_profile(self, account_key):
        self.calls.append(("delete_profile", account_key))
        self.profiles.pop(account_key, None)

    def server_calls(self, op):
        return [c for c in self.calls if c[0] == op and (op != "get" or c[2] is Source.SERVER)]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def user():
    return FakeIdentity()


@pytest.fixture
def identity(user):
    return FakeIdentityProvider(user)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RetryController(max_attempts=3, base_delay=1.0, sleep=fake_sleep)


@pytest.fixture
def engine(store, identity, network, ledger, retry):
    return SyncEngine(store, identity, network, ledger, retry=retry, clock=lambda: NOW)
