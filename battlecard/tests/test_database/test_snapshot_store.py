"""Tests for SnapshotStore — background writes, latest-wins, versioning."""

import json

import pytest

from battlecard.database.snapshot_store import SNAPSHOT_VERSION, SnapshotStore


class TestSnapshotStore:
    def test_load_missing(self, tmp_path):
        assert SnapshotStore(tmp_path / "none.json").load() is None

    def test_save_now_round_trip(self, tmp_path):
        store = SnapshotStore(tmp_path / "nested" / "state.json")
        store.save_now({"plans": [{"id": "p1"}]})
        assert store.load() == {"plans": [{"id": "p1"}]}
        assert store.writes == 1
        raw = json.loads(store.path.read_text())
        assert raw["version"] == SNAPSHOT_VERSION

    def test_no_temp_files_left(self, tmp_path):
        store = SnapshotStore(tmp_path / "state.json")
        store.save_now({"a": 1})
        store.save_now({"a": 2})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_background_latest_wins(self, tmp_path):
        store = SnapshotStore(tmp_path / "state.json")
        for i in range(20):
            store.request_save({"tick": i})
        assert store.flush(timeout=5.0)
        assert store.load() == {"tick": 19}
        assert 1 <= store.writes <= 20
        store.close()

    def test_closed_store_drops_requests(self, tmp_path):
        store = SnapshotStore(tmp_path / "state.json")
        store.request_save({"tick": 1})
        store.close()
        store.request_save({"tick": 2})
        assert store.load() == {"tick": 1}

    def test_version_mismatch(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99, "plans": []}))
        with pytest.raises(ValueError, match="Unsupported snapshot version"):
            SnapshotStore(path).load()
