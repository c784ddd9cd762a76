# test_storage.py
import json

import pytest

from vibesync.core.storage import atomic_write_json


def test_writes_json_and_creates_parent(tmp_path):
    path = tmp_path / "nested" / "data.json"

    atomic_write_json(path, {"a": 1}, prefix=".data_")

    assert json.loads(path.read_text()) == {"a": 1}
    assert not list(path.parent.glob(".data_*.tmp"))


def test_replaces_existing_file(tmp_path):
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"old": True}))

    atomic_write_json(path, {"new": True})

    assert json.loads(path.read_text()) == {"new": True}


def test_failed_write_keeps_old_file_and_cleans_up(tmp_path, mocker):
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"old": True}))
    mocker.patch("vibesync.core.storage.json.dump", side_effect=TypeError("not serializable"))

    with pytest.raises(TypeError):
        atomic_write_json(path, {"new": True}, prefix=".data_")

    assert json.loads(path.read_text()) == {"old": True}
    assert not list(tmp_path.glob(".data_*.tmp"))
