"""Tests for the local caches backing guest collections."""

import json

from cartsync.local_cache import JsonFileCache, MemoryCache


ITEMS = [{"id": "p1", "name": "Chair"}, {"id": "p2", "name": "Table"}]


# ---------------------------------------------------------------------------
# JsonFileCache
# ---------------------------------------------------------------------------


class TestJsonFileCache:
    def test_missing_slot_reads_none(self, tmp_path) -> None:
        cache = JsonFileCache(tmp_path)
        assert cache.read("casawood-cart") is None

    def test_write_then_read(self, tmp_path) -> None:
        cache = JsonFileCache(tmp_path)
        cache.write("casawood-cart", ITEMS)
        assert cache.read("casawood-cart") == ITEMS
        assert json.loads((tmp_path / "casawood-cart.json").read_text()) == ITEMS

    def test_survives_new_instance(self, tmp_path) -> None:
        JsonFileCache(tmp_path).write("casawood-cart", ITEMS)
        assert JsonFileCache(tmp_path).read("casawood-cart") == ITEMS

    def test_write_replaces_previous_contents(self, tmp_path) -> None:
        cache = JsonFileCache(tmp_path)
        cache.write("casawood-cart", ITEMS)
        cache.write("casawood-cart", [])
        assert cache.read("casawood-cart") == []
        assert not list(tmp_path.glob(".tmp-*"))

    def test_corrupt_slot_reads_none(self, tmp_path) -> None:
        (tmp_path / "casawood-cart.json").write_text("{not json")
        assert JsonFileCache(tmp_path).read("casawood-cart") is None

    def test_non_list_slot_reads_none(self, tmp_path) -> None:
        (tmp_path / "casawood-cart.json").write_text('{"id": "p1"}')
        assert JsonFileCache(tmp_path).read("casawood-cart") is None

    def test_clear(self, tmp_path) -> None:
        cache = JsonFileCache(tmp_path)
        cache.write("casawood-cart", ITEMS)
        cache.clear("casawood-cart")
        assert cache.read("casawood-cart") is None
        cache.clear("casawood-cart")  # clearing an empty slot is fine

    def test_keys_stay_inside_directory(self, tmp_path) -> None:
        cache = JsonFileCache(tmp_path / "cache")
        cache.write("../casawood-cart:user/42", ITEMS)
        assert cache.read("../casawood-cart:user/42") == ITEMS
        assert [p.parent for p in (tmp_path / "cache").iterdir()] == [tmp_path / "cache"]
        assert not (tmp_path / "casawood-cart.json").exists()

    def test_creates_directory(self, tmp_path) -> None:
        JsonFileCache(tmp_path / "a" / "b")
        assert (tmp_path / "a" / "b").is_dir()


# ---------------------------------------------------------------------------
# MemoryCache
# ---------------------------------------------------------------------------


class TestMemoryCache:
    def test_round_trip_and_clear(self) -> None:
        cache = MemoryCache()
        assert cache.read("k") is None
        cache.write("k", ITEMS)
        assert cache.read("k") == ITEMS
        cache.clear("k")
        assert cache.read("k") is None

    def test_read_returns_independent_copy(self) -> None:
        cache = MemoryCache()
        cache.write("k", ITEMS)
        cache.read("k")[0]["name"] = "changed"
        assert cache.read("k")[0]["name"] == "Chair"
