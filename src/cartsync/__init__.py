"""cartsync — cart and wishlist sync for the CasaWood storefront.

In-memory collections mirrored to per-user Firestore documents, with a
local cache for guest shoppers.
"""

__version__ = "0.1.0"

from cartsync.cart import CartManager
from cartsync.config import SyncConfig
from cartsync.constants import CollectionKind, FREE_SHIPPING_THRESHOLD, FLAT_SHIPPING_COST
from cartsync.context import StorefrontContext
from cartsync.identity import Identity, IdentityError, IdentityProvider, identity_from_id_token
from cartsync.items import Item
from cartsync.local_cache import JsonFileCache, MemoryCache
from cartsync.store_backend import (
    DurableStore,
    LocalCache,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
    StoreUnavailableError,
)
from cartsync.stores import FirestoreStore, InMemoryStore
from cartsync.sync_manager import CollectionSyncManager, WriteFailure
from cartsync.sync_state import Bound, Detached, Merging, SyncState

__all__ = [
    "CartManager",
    "SyncConfig",
    "CollectionKind",
    "FREE_SHIPPING_THRESHOLD",
    "FLAT_SHIPPING_COST",
    "StorefrontContext",
    "Identity",
    "IdentityError",
    "IdentityProvider",
    "identity_from_id_token",
    "Item",
    "JsonFileCache",
    "MemoryCache",
    "DurableStore",
    "LocalCache",
    "StoreError",
    "StoreNotFoundError",
    "StorePermissionError",
    "StoreUnavailableError",
    "FirestoreStore",
    "InMemoryStore",
    "CollectionSyncManager",
    "WriteFailure",
    "Bound",
    "Detached",
    "Merging",
    "SyncState",
]
