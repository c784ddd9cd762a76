"""Data models for sync operations."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Generic, List, TypeVar

MAX_HISTORY_ITEMS = 1000
MAX_FAVORITES = 500

SettingValue = bool | int | float | str

T = TypeVar('T')


class Source(Enum):
    """Where a ledger read is served from."""
    SERVER = "server"
    CACHE = "cache"


class SyncErrorKind(Enum):
    NOT_SIGNED_IN = "not_signed_in"
    ANONYMOUS_IDENTITY = "anonymous_identity"
    CONSENT_REQUIRED = "consent_required"
    PERMISSION_DENIED = "permission_denied"
    AUTH_EXPIRED = "auth_expired"
    SERVICE_UNAVAILABLE = "service_unavailable"
    PARSE_FAILURE = "parse_failure"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """A classified sync failure."""

    def __init__(self, kind: SyncErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    @property
    def retryable(self) -> bool:
        return self.kind is SyncErrorKind.SERVICE_UNAVAILABLE

    @property
    def permanent(self) -> bool:
        return self.kind in (SyncErrorKind.PERMISSION_DENIED, SyncErrorKind.AUTH_EXPIRED)

    def __repr__(self) -> str:
        return f"SyncError({self.kind.name}, {self.message!r})"


# --- Syncable records (wire-shaped) ---

@dataclass
class VideoRef:
    """A video inside a synced playlist."""
    video_id: str
    title: str = ""
    channel_title: str = ""
    thumbnail_url: str = ""
    duration: str = ""


@dataclass
class HistoryEntry:
    """One viewing of a video. Identity is (video_id, watched_at)."""
    video_id: str
    title: str = ""
    channel_title: str = ""
    thumbnail_url: str = ""
    duration: str = ""
    watched_at: int = 0
    watch_duration: int = 0
    watch_position: float = 0.0

    @property
    def key(self) -> tuple[str, int]:
        return (self.video_id, self.watched_at)


@dataclass
class FavoriteEntry:
    """A favorited video. Identity is video_id."""
    video_id: str
    title: str = ""
    channel_title: str = ""
    thumbnail_url: str = ""
    duration: str = ""
    added_at: int = 0

    @property
    def key(self) -> str:
        return self.video_id


@dataclass
class PlaylistEntry:
    """A user playlist. Identity is id."""
    id: str
    name: str = ""
    description: str = ""
    videos: List[VideoRef] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0


@dataclass
class SyncRecord:
    """The whole-account payload exchanged between device and cloud."""
    history: List[HistoryEntry] = field(default_factory=list)
    favorites: List[FavoriteEntry] = field(default_factory=list)
    playlists: List[PlaylistEntry] = field(default_factory=list)
    settings: dict[str, SettingValue] = field(default_factory=dict)
    last_synced_at: int = 0

    @classmethod
    def empty(cls, timestamp: int = 0) -> "SyncRecord":
        return cls(last_synced_at=timestamp)

    def stamped(self, timestamp: int) -> "SyncRecord":
        return replace(self, last_synced_at=timestamp)


# --- Local domain records (Local Data Store shapes) ---

@dataclass
class Video:
    video_id: str
    title: str
    thumbnail: str = ""
    channel_title: str = ""
    channel_id: str = ""
    duration: str = ""
    description: str = ""


@dataclass
class WatchHistoryItem:
    video_id: str
    title: str
    thumbnail: str = ""
    channel_title: str = ""
    channel_id: str = ""
    duration: str = ""
    watched_at: int = 0
    watch_progress: float = 0.0  # 0.0 to 1.0
    watch_duration: int = 0  # milliseconds watched
    is_completed: bool = False


@dataclass
class FavoriteItem:
    video_id: str
    title: str
    thumbnail: str = ""
    channel_title: str = ""
    channel_id: str = ""
    duration: str = ""
    added_at: int = 0
    category: str = "default"


@dataclass
class UserPlaylist:
    id: str
    name: str
    description: str = ""
    created_at: int = 0
    updated_at: int = 0
    videos: List[Video] = field(default_factory=list)
    is_public: bool = False
    thumbnail_url: str = ""


# --- Account-level records ---

@dataclass
class UserProfile:
    """Profile document stored beside the account's sync record."""
    uid: str
    display_name: str = ""
    email: str = ""
    photo_url: str | None = None
    sync_enabled: bool = False
    created_at: int = 0
    last_updated: int = 0


@dataclass
class SyncStatus:
    """Snapshot of everything that decides whether sync can run."""
    signed_in: bool
    email: str
    authenticated: bool
    has_consent: bool
    network_connected: bool
    sync_enabled: bool
    last_synced_at: int | None = None


@dataclass
class SyncResult(Generic[T]):
    """Result of a sync operation: a value or a classified error."""
    success: bool
    value: T | None = None
    error: SyncError | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "SyncResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def failure(cls, error: SyncError) -> "SyncResult[T]":
        """Create a failure result carrying a classified error."""
        return cls(success=False, error=error)

    @property
    def kind(self) -> SyncErrorKind | None:
        return self.error.kind if self.error else None
