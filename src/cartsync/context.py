"""Application-scoped wiring of identity, stores and collection managers.

Build one ``StorefrontContext`` at application start and hand it to the
code that needs the cart or wishlist; nothing here is module-global.
"""

from __future__ import annotations

import logging
from typing import Any

from cartsync.cart import CartManager
from cartsync.config import SyncConfig
from cartsync.constants import CollectionKind
from cartsync.identity import Identity, IdentityError, IdentityProvider
from cartsync.local_cache import JsonFileCache, MemoryCache
from cartsync.store_backend import DurableStore, LocalCache
from cartsync.stores import FirestoreStore, InMemoryStore
from cartsync.sync_manager import CollectionSyncManager

logger = logging.getLogger(__name__)


class StorefrontContext:
    """Owns the cart and wishlist managers for one application lifetime."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        stores: dict[CollectionKind, DurableStore],
        cache: LocalCache,
        identity: IdentityProvider | None = None,
    ) -> None:
        self.config = config
        self.identity = identity or IdentityProvider(
            require_verified_email=config.require_verified_email,
        )
        self._stores = stores
        self.cart = CartManager(
            stores[CollectionKind.CART], cache, self.identity,
            cache_key=CollectionKind.CART.cache_key, name="cart",
        )
        self.wishlist = CollectionSyncManager(
            stores[CollectionKind.WISHLIST], cache, self.identity,
            cache_key=CollectionKind.WISHLIST.cache_key, name="wishlist",
        )

    @classmethod
    def from_config(cls, config: SyncConfig) -> StorefrontContext:
        """Firestore-backed when a project is configured, in-memory otherwise."""
        stores: dict[CollectionKind, DurableStore]
        if config.firebase_project_id:
            stores = {
                kind: FirestoreStore(
                    config.firebase_project_id,
                    kind.value,
                    api_key=config.firebase_api_key,
                    database_id=config.database_id,
                    poll_interval_secs=config.poll_interval_secs,
                    timeout_secs=config.request_timeout_secs,
                )
                for kind in CollectionKind
            }
        else:
            logger.warning("No Firebase project configured; remote collections are in-memory.")
            stores = {kind: InMemoryStore(kind.value) for kind in CollectionKind}

        cache: LocalCache = JsonFileCache(config.cache_dir) if config.cache_dir else MemoryCache()
        return cls(config, stores=stores, cache=cache)

    @property
    def managers(self) -> tuple[CollectionSyncManager, ...]:
        return (self.cart, self.wishlist)

    async def start(self) -> None:
        for manager in self.managers:
            await manager.start()

    async def sign_in(self, id_token: str) -> Identity | None:
        """Verify ``id_token`` and switch every collection to that shopper.

        Returns the identity in effect afterwards (None if it was demoted
        to guest for an unverified email). Raises IdentityError on a bad
        token, leaving the current identity untouched.
        """
        if not self.config.token_public_key:
            raise IdentityError("No token public key configured.")
        # Writes queued for the previous shopper go out under their token.
        await self.drain()
        current = await self.identity.sign_in_with_token(
            id_token,
            self.config.token_public_key,
            audience=self.config.token_audience,
            issuer=self.config.token_issuer,
            algorithms=self.config.token_algorithms,
            on_verified=lambda _identity: self._set_store_token(id_token),
        )
        if current is None:
            self._set_store_token(None)
        return current

    async def sign_out(self) -> None:
        """Switch every collection to guest, then drop the store token.

        Writes the shopper issued before signing out still complete with
        their credentials.
        """
        await self.identity.sign_out()
        await self.drain()
        self._set_store_token(None)

    async def drain(self) -> None:
        for manager in self.managers:
            await manager.drain()

    def _set_store_token(self, id_token: str | None) -> None:
        for store in self._stores.values():
            if isinstance(store, FirestoreStore):
                store.set_id_token(id_token)

    def health(self) -> dict[str, Any]:
        current = self.identity.current
        return {
            "user_id": current.user_id if current else None,
            "collections": [manager.health() for manager in self.managers],
        }

    async def close(self) -> None:
        for manager in self.managers:
            await manager.close()
        for store in self._stores.values():
            if isinstance(store, FirestoreStore):
                await store.close()

    async def __aenter__(self) -> StorefrontContext:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
