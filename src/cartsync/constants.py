"""Constants for storefront collection sync."""

from enum import Enum


FREE_SHIPPING_THRESHOLD = 50_000  # Rs., subtotal at which shipping is free
FLAT_SHIPPING_COST = 500  # Rs.

ITEMS_SUBCOLLECTION = "items"


class CollectionKind(str, Enum):
    """Per-user collections kept in sync (value is the remote collection name)."""

    CART = "carts"
    WISHLIST = "wishlists"

    @property
    def cache_key(self) -> str:
        """Local cache slot holding the guest copy of this collection."""
        return _CACHE_KEYS[self]


_CACHE_KEYS = {
    CollectionKind.CART: "casawood-cart",
    CollectionKind.WISHLIST: "casawood-wishlist",
}
