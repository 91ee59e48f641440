"""Tests for StorefrontContext wiring."""

import time

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from cartsync.config import SyncConfig
from cartsync.constants import CollectionKind
from cartsync.context import StorefrontContext
from cartsync.identity import IdentityError
from cartsync.items import Item
from cartsync.local_cache import JsonFileCache, MemoryCache
from cartsync.stores.firestore import FirestoreStore
from cartsync.stores.memory import InMemoryStore
from cartsync.sync_state import Bound, Detached


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_key, public_pem


def _token(private_key, user_id: str = "user42", email_verified: bool = True) -> str:
    now = int(time.time())
    return jwt.encode(
        {"sub": user_id, "email_verified": email_verified, "iat": now, "exp": now + 600},
        private_key,
        algorithm="RS256",
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_in_memory_without_project(self) -> None:
        ctx = StorefrontContext.from_config(SyncConfig())
        assert all(isinstance(s, InMemoryStore) for s in ctx._stores.values())
        assert isinstance(ctx.cart._cache, MemoryCache)
        assert ctx.cart._cache is ctx.wishlist._cache
        await ctx.close()

    @pytest.mark.asyncio
    async def test_firestore_with_project(self, tmp_path) -> None:
        ctx = StorefrontContext.from_config(
            SyncConfig(firebase_project_id="casawood", cache_dir=str(tmp_path)),
        )
        stores = ctx._stores
        assert isinstance(stores[CollectionKind.CART], FirestoreStore)
        assert stores[CollectionKind.CART].collection == "carts"
        assert stores[CollectionKind.WISHLIST].collection == "wishlists"
        assert isinstance(ctx.cart._cache, JsonFileCache)
        await ctx.close()

    def test_collection_kinds(self) -> None:
        assert CollectionKind.CART.cache_key == "casawood-cart"
        assert CollectionKind.WISHLIST.cache_key == "casawood-wishlist"


# ---------------------------------------------------------------------------
# Sign-in flow
# ---------------------------------------------------------------------------


class TestSignIn:
    @pytest.mark.asyncio
    async def test_guest_items_follow_shopper_in_and_out(self, keypair) -> None:
        private_key, public_pem = keypair
        async with StorefrontContext.from_config(SyncConfig(token_public_key=public_pem)) as ctx:
            assert isinstance(ctx.cart.state, Detached)
            ctx.cart.add_to_cart(Item("sofa-1", {"price": 30000}), 2)
            ctx.wishlist.add(Item("lamp-1", {"price": 1500}))

            identity = await ctx.sign_in(_token(private_key))

            assert identity.user_id == "user42"
            assert ctx.cart.state == Bound("user42")
            assert ctx.wishlist.state == Bound("user42")
            cart_store = ctx._stores[CollectionKind.CART]
            assert [d["quantity"] for d in cart_store.snapshot("user42")] == [2]
            assert ctx.health()["user_id"] == "user42"

            await ctx.sign_out()
            assert isinstance(ctx.cart.state, Detached)
            assert ctx.cart.count() == 0
            assert ctx.wishlist.count() == 0
            assert len(cart_store.snapshot("user42")) == 1

    @pytest.mark.asyncio
    async def test_unverified_shopper_stays_guest(self, keypair) -> None:
        private_key, public_pem = keypair
        async with StorefrontContext.from_config(SyncConfig(token_public_key=public_pem)) as ctx:
            ctx.wishlist.add(Item("lamp-1"))
            identity = await ctx.sign_in(_token(private_key, email_verified=False))
            assert identity is None
            assert isinstance(ctx.wishlist.state, Detached)
            assert ctx.wishlist.contains("lamp-1")

    @pytest.mark.asyncio
    async def test_bad_token_leaves_identity_untouched(self, keypair) -> None:
        _, public_pem = keypair
        async with StorefrontContext.from_config(SyncConfig(token_public_key=public_pem)) as ctx:
            with pytest.raises(IdentityError):
                await ctx.sign_in("not-a-jwt")
            assert ctx.identity.current is None

    @pytest.mark.asyncio
    async def test_sign_in_requires_public_key(self) -> None:
        async with StorefrontContext.from_config(SyncConfig()) as ctx:
            with pytest.raises(IdentityError, match="public key"):
                await ctx.sign_in("anything")

    @pytest.mark.asyncio
    async def test_sign_in_sets_firestore_token(self, keypair) -> None:
        private_key, public_pem = keypair
        ctx = StorefrontContext.from_config(
            SyncConfig(firebase_project_id="casawood", token_public_key=public_pem),
        )
        token = _token(private_key)
        ctx._set_store_token(token)
        for store in ctx._stores.values():
            assert store._client.headers["Authorization"] == f"Bearer {token}"
        ctx._set_store_token(None)
        for store in ctx._stores.values():
            assert "Authorization" not in store._client.headers
        await ctx.close()


# ---------------------------------------------------------------------------
# Credentials on pending writes
# ---------------------------------------------------------------------------


def _recording_context(public_pem: str, requests: list[tuple[str, str, str | None]]):
    """Firestore-backed context whose HTTP traffic is recorded, not sent."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(
            (request.method, request.url.path, request.headers.get("Authorization"))
        )
        return httpx.Response(200, json={})

    stores = {
        kind: FirestoreStore(
            "casawood", kind.value,
            poll_interval_secs=60,
            transport=httpx.MockTransport(handler),
        )
        for kind in CollectionKind
    }
    return StorefrontContext(
        SyncConfig(token_public_key=public_pem), stores=stores, cache=MemoryCache(),
    )


def _patches(requests):
    return [(path.rsplit("/", 3)[-3], auth) for method, path, auth in requests if method == "PATCH"]


class TestPendingWriteCredentials:
    @pytest.mark.asyncio
    async def test_write_issued_before_sign_out_keeps_token(self, keypair) -> None:
        private_key, public_pem = keypair
        requests: list[tuple[str, str, str | None]] = []
        token = _token(private_key)
        async with _recording_context(public_pem, requests) as ctx:
            await ctx.sign_in(token)
            ctx.wishlist.add(Item("lamp-1"))
            await ctx.sign_out()

            assert _patches(requests) == [("user42", f"Bearer {token}")]
            for store in ctx._stores.values():
                assert "Authorization" not in store._client.headers

    @pytest.mark.asyncio
    async def test_write_issued_before_switch_uses_previous_token(self, keypair) -> None:
        private_key, public_pem = keypair
        requests: list[tuple[str, str, str | None]] = []
        first, second = _token(private_key, "alice"), _token(private_key, "bob")
        async with _recording_context(public_pem, requests) as ctx:
            await ctx.sign_in(first)
            ctx.wishlist.add(Item("lamp-1"))
            await ctx.sign_in(second)
            ctx.wishlist.add(Item("vase-1"))
            await ctx.drain()

            assert _patches(requests) == [
                ("alice", f"Bearer {first}"),
                ("bob", f"Bearer {second}"),
            ]
