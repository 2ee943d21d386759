"""Tests for the reconciliation cache file."""

import json

from dato_schema_sync.build import CacheEntry, ReconciliationCache


class TestReconciliationCache:
    def test_missing_file_is_empty(self, tmp_path):
        cache = ReconciliationCache(str(tmp_path / "cache.json")).load()
        assert len(cache) == 0
        assert cache.get("model:Author") is None

    def test_set_persists_immediately(self, tmp_path):
        path = tmp_path / "nested" / "cache.json"
        cache = ReconciliationCache(str(path)).load()

        cache.set("model:Author", CacheEntry(hash="h1", id="it1"))

        assert json.loads(path.read_text()) == [["model:Author", {"hash": "h1", "id": "it1"}]]
        reloaded = ReconciliationCache(str(path)).load()
        assert reloaded.get("model:Author") == CacheEntry(hash="h1", id="it1")

    def test_delete(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = ReconciliationCache(str(path)).load()
        cache.set("block:Quote", CacheEntry("h", "it9"))

        assert cache.delete("block:Quote") is True
        assert cache.delete("block:Quote") is False
        assert json.loads(path.read_text()) == []

    def test_accepts_object_form(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"model:Author": {"hash": "h", "id": "it1"}}))

        cache = ReconciliationCache(str(path)).load()

        assert cache.keys() == ["model:Author"]

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        assert len(ReconciliationCache(str(path)).load()) == 0

    def test_malformed_entries_are_skipped(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps([
            ["model:Author", {"hash": "h", "id": "it1"}],
            ["model:Broken", {"hash": "h"}],
            "garbage",
        ]))

        cache = ReconciliationCache(str(path)).load()

        assert cache.keys() == ["model:Author"]

    def test_find_by_id(self, tmp_path):
        cache = ReconciliationCache(str(tmp_path / "cache.json")).load()
        cache.set("model:Author", CacheEntry("h", "it1"))
        assert cache.find_by_id("it1") == "model:Author"
        assert cache.find_by_id("it2") is None


class TestSkipReads:
    def test_existing_entries_are_invisible(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps([["model:Author", {"hash": "h", "id": "it1"}]]))

        cache = ReconciliationCache(str(path), skip_reads=True).load()

        assert cache.get("model:Author") is None
        assert cache.keys() == []

    def test_never_writes(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = ReconciliationCache(str(path), skip_reads=True).load()

        cache.set("model:Author", CacheEntry("h", "it1"))

        assert not path.exists()
