"""Collection items — pure data model, no I/O.

The sync layer only cares about ``id``. Everything else (name, price,
image, quantity, ...) rides along in ``data`` and is stored denormalized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Item:
    """A collection entry with a stable id and an opaque payload."""

    id: str
    data: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the stored document shape: ``{"id": ..., **data}``."""
        return {**self.data, "id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Item:
        payload = {k: v for k, v in data.items() if k != "id"}
        return cls(id=str(data["id"]), data=payload)

    def with_data(self, **changes: Any) -> Item:
        """Return a copy whose payload has ``changes`` applied."""
        return Item(id=self.id, data={**self.data, **changes})


def items_from_dicts(raw: Any) -> list[Item]:
    """Decode a stored list of item dicts, skipping malformed entries.

    Later duplicates of an id replace earlier ones so the result stays
    unique by id.
    """
    if not isinstance(raw, list):
        return []
    by_id: dict[str, Item] = {}
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Skipping malformed collection entry: %r", entry)
            continue
        item = Item.from_dict(entry)
        by_id[item.id] = item
    return list(by_id.values())


def items_to_dicts(items: list[Item] | tuple[Item, ...]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]
