"""InMemoryStore — DurableStore kept in a dict, for development and tests.

Behaves like a live document database seen from a single process:
every subscriber receives the current snapshot on subscribe and again
after each mutation of its user's collection.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from cartsync.store_backend import SnapshotCallback, Unsubscribe

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Per-user item documents for one collection name."""

    def __init__(self, collection: str = "items") -> None:
        self.collection = collection
        self._docs: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[str, list[SnapshotCallback]] = {}

    def snapshot(self, user_id: str) -> list[dict[str, Any]]:
        """Current documents for ``user_id`` (deep copies)."""
        return copy.deepcopy(list(self._docs.get(user_id, {}).values()))

    def subscriber_count(self, user_id: str) -> int:
        return len(self._listeners.get(user_id, []))

    # -- DurableStore protocol -----------------------------------------------

    async def upsert(
        self, user_id: str, item_id: str, data: dict[str, Any], merge: bool = True
    ) -> None:
        docs = self._docs.setdefault(user_id, {})
        incoming = copy.deepcopy(data)
        if merge and item_id in docs:
            docs[item_id].update(incoming)
        else:
            docs[item_id] = incoming
        self._emit(user_id)

    async def delete(self, user_id: str, item_id: str) -> None:
        docs = self._docs.get(user_id, {})
        if docs.pop(item_id, None) is not None:
            self._emit(user_id)

    async def list_all(self, user_id: str) -> list[dict[str, Any]]:
        return self.snapshot(user_id)

    def subscribe(self, user_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        listeners = self._listeners.setdefault(user_id, [])
        listeners.append(on_snapshot)
        on_snapshot(self.snapshot(user_id))

        def _unsubscribe() -> None:
            if on_snapshot in listeners:
                listeners.remove(on_snapshot)

        return _unsubscribe

    def _emit(self, user_id: str) -> None:
        for listener in list(self._listeners.get(user_id, [])):
            try:
                listener(self.snapshot(user_id))
            except Exception:
                logger.warning("Snapshot listener for %s failed.", user_id, exc_info=True)
