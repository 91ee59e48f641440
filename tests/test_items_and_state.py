"""Tests for the item model and sync-state transitions."""

import pytest

from cartsync.items import Item, items_from_dicts, items_to_dicts
from cartsync.sync_state import (
    DETACHED,
    Bound,
    Merging,
    begin_merge,
    describe,
    detach,
    finish_merge,
    remote_user,
)


# ---------------------------------------------------------------------------
# Item
# ---------------------------------------------------------------------------


class TestItem:
    def test_to_dict_flattens_payload(self) -> None:
        item = Item("p1", {"name": "Chair", "price": 12000})
        assert item.to_dict() == {"id": "p1", "name": "Chair", "price": 12000}

    def test_from_dict(self) -> None:
        item = Item.from_dict({"id": 7, "name": "Chair"})
        assert item.id == "7"
        assert item.data == {"name": "Chair"}

    def test_identity_is_by_id(self) -> None:
        assert Item("p1", {"name": "a"}) == Item("p1", {"name": "b"})
        assert len({Item("p1"), Item("p1", {"x": 1})}) == 1

    def test_with_data_copies(self) -> None:
        item = Item("p1", {"quantity": 1})
        updated = item.with_data(quantity=2)
        assert item.data["quantity"] == 1
        assert updated.data["quantity"] == 2

    def test_items_from_dicts_skips_malformed(self) -> None:
        raw = [{"id": "p1"}, {"name": "no id"}, "junk", {"id": "p2"}]
        assert [i.id for i in items_from_dicts(raw)] == ["p1", "p2"]

    def test_items_from_dicts_dedupes_by_id(self) -> None:
        items = items_from_dicts([{"id": "p1", "v": 1}, {"id": "p1", "v": 2}])
        assert len(items) == 1
        assert items[0].data == {"v": 2}

    def test_items_from_dicts_non_list(self) -> None:
        assert items_from_dicts(None) == []
        assert items_from_dicts({"id": "p1"}) == []

    def test_items_to_dicts(self) -> None:
        assert items_to_dicts((Item("p1"),)) == [{"id": "p1"}]


# ---------------------------------------------------------------------------
# Sync state
# ---------------------------------------------------------------------------


class TestSyncState:
    def test_remote_user(self) -> None:
        assert remote_user(DETACHED) is None
        assert remote_user(Merging("u")) == "u"
        assert remote_user(Bound("u")) == "u"

    def test_guest_to_bound(self) -> None:
        merging = begin_merge(DETACHED, "u")
        assert merging == Merging("u")
        assert finish_merge(merging) == Bound("u")

    def test_switch_user(self) -> None:
        assert begin_merge(Bound("a"), "b") == Merging("b")

    def test_rebinding_same_user_rejected(self) -> None:
        with pytest.raises(ValueError):
            begin_merge(Bound("u"), "u")

    def test_finish_requires_merging(self) -> None:
        with pytest.raises(ValueError):
            finish_merge(DETACHED)

    def test_detach(self) -> None:
        assert detach(Bound("u")) is DETACHED

    def test_describe(self) -> None:
        assert describe(DETACHED) == "detached"
        assert describe(Merging("u")) == "merging:u"
        assert describe(Bound("u")) == "bound:u"
