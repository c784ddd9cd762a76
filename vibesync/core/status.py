"""Status file writer for the sync command"""

import logging
from datetime import datetime, timezone
from pathlib import Path

from vibesync.core.models import SyncRecord, SyncResult
from vibesync.core.storage import atomic_write_json

logger = logging.getLogger(__name__)


def write_status(action: str, result: SyncResult, status_file: Path) -> bool:
    record = result.value if isinstance(result.value, SyncRecord) else None
    data = {
        "status": "success" if result.success else "failed",
        "action": action,
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "history_count": len(record.history) if record else 0,
        "favorites_count": len(record.favorites) if record else 0,
        "playlists_count": len(record.playlists) if record else 0,
        "last_error": result.error.message if result.error else None,
        "error_kind": result.error.kind.value if result.error else None,
    }
    return _atomic_write(status_file, data)


def write_running_status(action: str, status_file: Path) -> bool:
    data = {
        "status": "running",
        "action": action,
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "history_count": 0,
        "favorites_count": 0,
        "playlists_count": 0,
        "last_error": None,
        "error_kind": None,
    }
    return _atomic_write(status_file, data)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        atomic_write_json(path, data, prefix=".status_")
        return True
    except Exception as e:
        logger.warning(f"Status write failed: {e}")
        return False
