"""Quantity-aware cart on top of CollectionSyncManager."""

from __future__ import annotations

import logging

from cartsync.constants import FLAT_SHIPPING_COST, FREE_SHIPPING_THRESHOLD
from cartsync.items import Item
from cartsync.sync_manager import CollectionSyncManager

logger = logging.getLogger(__name__)


def line_quantity(item: Item) -> int:
    try:
        return max(int(item.data.get("quantity", 1)), 0)
    except (TypeError, ValueError):
        return 1


def line_price(item: Item) -> float:
    try:
        return float(item.data.get("price", 0))
    except (TypeError, ValueError):
        logger.warning("Cart line %s has a non-numeric price.", item.id)
        return 0.0


class CartManager(CollectionSyncManager):
    """Cart lines carry ``price`` and ``quantity`` in their payload."""

    def add_to_cart(self, item: Item, quantity: int = 1) -> None:
        """Add ``quantity`` of ``item``, topping up an existing line."""
        if quantity <= 0:
            return
        existing = self.get(item.id)
        if existing is None:
            self.add(item.with_data(quantity=quantity))
            return
        self.replace(existing.with_data(quantity=line_quantity(existing) + quantity))

    def update_quantity(self, item_id: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        existing = self.get(item_id)
        if existing is None:
            return
        if quantity <= 0:
            self.remove(item_id)
            return
        self.replace(existing.with_data(quantity=quantity))

    def subtotal(self) -> float:
        return sum(line_price(item) * line_quantity(item) for item in self.items)

    def shipping_cost(self) -> float:
        subtotal = self.subtotal()
        if not self.count() or subtotal >= FREE_SHIPPING_THRESHOLD:
            return 0
        return FLAT_SHIPPING_COST

    def total(self) -> float:
        return self.subtotal() + self.shipping_cost()
