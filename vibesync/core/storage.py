"""Atomic JSON file writes shared by the cache, status file and local store"""

import json
import os
import tempfile
from pathlib import Path


def atomic_write_json(path: Path, data: dict, prefix: str = ".tmp_") -> None:
    """Write `data` to a temp file beside `path`, then rename it into place.

    Readers see the old file or the new one, never a partial write. Errors propagate.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
