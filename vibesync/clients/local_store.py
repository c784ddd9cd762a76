"""Local Data Store: on-device preferences file"""

import json
import logging
from dataclasses import asdict
from pathlib import Path

from vibesync.core.models import (
    MAX_FAVORITES,
    MAX_HISTORY_ITEMS,
    FavoriteItem,
    SettingValue,
    UserPlaylist,
    Video,
    WatchHistoryItem,
)
from vibesync.core.storage import atomic_write_json

logger = logging.getLogger(__name__)

KEY_WATCH_HISTORY = "watch_history"
KEY_FAVORITES = "favorites"
KEY_PLAYLISTS = "user_playlists"
KEY_USER_CONSENT = "user_data_consent"
KEY_SETTINGS = "settings"

DEFAULT_SETTINGS: dict[str, SettingValue] = {
    "data_collection_enabled": True,
    "weekly_summary_enabled": True,
}


class JsonLocalStore:
    """History, favorites, playlists, settings and consent in one JSON file.

    Every setter writes through to disk.
    """

    def __init__(self, path: Path = Path("/config/vibesync/user_data.json")):
        self._file = path
        self._data: dict = {}
        self._load()

    def _load(self) -> None:
        if not self._file.exists():
            return

        try:
            data = json.loads(self._file.read_text())
            if isinstance(data, dict):
                self._data = data
            logger.debug(f"Loaded local data from {self._file}")
        except Exception as e:
            logger.warning(f"Local data load failed: {e}")
            self._data = {}

    def _save(self) -> None:
        atomic_write_json(self._file, self._data, prefix=".user_data_")

    def _items(self, key: str) -> list[dict]:
        return [i for i in self._data.get(key, []) if isinstance(i, dict)]

    # --- consent ---

    def has_consent(self) -> bool:
        return bool(self._data.get(KEY_USER_CONSENT, False))

    def set_consent(self, consent: bool) -> None:
        self._data[KEY_USER_CONSENT] = consent
        self._save()

    # --- history ---

    def get_history(self) -> list[WatchHistoryItem]:
        return [WatchHistoryItem(**i) for i in self._items(KEY_WATCH_HISTORY)]

    def set_history(self, items: list[WatchHistoryItem]) -> None:
        self._data[KEY_WATCH_HISTORY] = [asdict(i) for i in items[:MAX_HISTORY_ITEMS]]
        self._save()

    # --- favorites ---

    def get_favorites(self) -> list[FavoriteItem]:
        return [FavoriteItem(**i) for i in self._items(KEY_FAVORITES)]

    def set_favorites(self, items: list[FavoriteItem]) -> None:
        self._data[KEY_FAVORITES] = [asdict(i) for i in items[:MAX_FAVORITES]]
        self._save()

    # --- playlists ---

    def get_playlists(self) -> list[UserPlaylist]:
        playlists = []
        for item in self._items(KEY_PLAYLISTS):
            videos = [Video(**v) for v in item.get("videos", [])]
            playlists.append(UserPlaylist(**{**item, "videos": videos}))
        return playlists

    def set_playlists(self, playlists: list[UserPlaylist]) -> None:
        self._data[KEY_PLAYLISTS] = [asdict(p) for p in playlists]
        self._save()

    # --- settings ---

    def get_setting_value(self, key: str) -> SettingValue | None:
        return self._data.get(KEY_SETTINGS, {}).get(key, DEFAULT_SETTINGS.get(key))

    def set_setting_value(self, key: str, value: SettingValue) -> None:
        self._data.setdefault(KEY_SETTINGS, {})[key] = value
        self._save()

    def clear(self) -> None:
        self._data = {}
        self._save()
