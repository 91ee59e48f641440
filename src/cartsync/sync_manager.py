"""In-memory collection mirror kept in sync with a per-user durable store.

The in-memory collection is the hot path: every read is served from it and
every mutation lands in it synchronously. Remote writes are fire-and-forget
tasks; their failures are logged and reported to write-failure listeners,
never raised. While the shopper is a guest the local cache slot is the
backing store instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from cartsync.items import Item, items_from_dicts, items_to_dicts
from cartsync.store_backend import StorePermissionError
from cartsync.sync_state import (
    DETACHED,
    Bound,
    SyncState,
    begin_merge,
    describe,
    detach,
    finish_merge,
    remote_user,
)

if TYPE_CHECKING:
    from cartsync.identity import Identity, IdentityProvider
    from cartsync.store_backend import DurableStore, LocalCache, Unsubscribe

logger = logging.getLogger(__name__)

_WriteKey = tuple[str, str]


@dataclass(frozen=True)
class WriteFailure:
    """A remote write that failed. Delivered to write-failure listeners."""

    op: str  # upsert | delete | list
    user_id: str
    item_id: str | None
    kind: str  # permission | transient
    error: BaseException


WriteFailureListener = Callable[[WriteFailure], None]


class CollectionSyncManager:
    """Mirror of one per-user collection (cart, wishlist, ...).

    - ``start()`` binds to the identity provider and evaluates the current
      identity; every later emission re-evaluates the sync state.
    - ``add``/``remove``/``clear``/``replace`` mutate the in-memory
      collection synchronously, then persist to the remote store (when
      signed in) or the guest cache slot (when not).
    - Remote writes for the same item run in issue order; a write that a
      later one for the same item has superseded is skipped.
    - Snapshots from the live subscription overwrite the in-memory
      collection unconditionally.

    Remote writes are scheduled on the running event loop, so mutations
    made while signed in must happen inside it.
    """

    def __init__(
        self,
        store: DurableStore,
        cache: LocalCache,
        identity: IdentityProvider,
        *,
        cache_key: str,
        name: str = "collection",
    ) -> None:
        self._store = store
        self._cache = cache
        self._identity = identity
        self._cache_key = cache_key
        self._name = name
        self._items: dict[str, Item] = {}
        self._state: SyncState = DETACHED
        self._transition_lock = asyncio.Lock()
        self._generation = 0
        self._binding_epoch = 0
        self._unsubscribe_remote: Unsubscribe | None = None
        self._unsubscribe_identity: Callable[[], None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._op_clock = 0
        self._latest_op: dict[_WriteKey, int] = {}
        self._inflight: dict[_WriteKey, int] = {}
        self._active_clears = 0
        self._write_locks: dict[_WriteKey, asyncio.Lock] = {}
        self._failure_listeners: list[WriteFailureListener] = []
        self._total_failures = 0
        self._closed = False

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to identity changes and sync for the current identity."""
        if self._unsubscribe_identity is not None:
            return
        self._unsubscribe_identity = self._identity.subscribe(self._on_identity)
        await self._on_identity(self._identity.current)

    async def close(self) -> None:
        """Stop syncing: drop subscriptions, wait for in-flight writes."""
        self._closed = True
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        self._teardown_remote()
        self._state = detach(self._state)
        await self.drain()
        self._items.clear()

    async def drain(self) -> None:
        """Wait until every in-flight remote write has completed."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- reads ----------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def items(self) -> tuple[Item, ...]:
        return tuple(self._items.values())

    def contains(self, item_id: str) -> bool:
        return item_id in self._items

    def count(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> Item | None:
        return self._items.get(item_id)

    # -- mutations ------------------------------------------------------------

    def add(self, item: Item) -> None:
        """Add ``item`` unless its id is already present."""
        if item.id in self._items:
            return
        self._items[item.id] = item
        self._persist_upsert(item)

    def replace(self, item: Item) -> None:
        """Store ``item`` over any existing entry with the same id."""
        self._items[item.id] = item
        self._persist_upsert(item)

    def remove(self, item_id: str) -> None:
        if self._items.pop(item_id, None) is None:
            return
        user_id = remote_user(self._state)
        if user_id is None:
            self._save_guest_slot()
            return
        self._issue("delete", user_id, item_id, partial(self._store.delete, user_id, item_id))

    def clear(self) -> None:
        """Empty the collection, remotely too when signed in.

        Remote documents are enumerated and deleted one by one; a document
        whose item was written again after this call is left alone.
        """
        cleared = list(self._items)
        self._items.clear()
        user_id = remote_user(self._state)
        if user_id is not None:
            barrier = self._op_clock
            self._active_clears += 1
            # Known ids are deleted right away so a queued upsert for one
            # of them is superseded rather than resurrecting it.
            for item_id in cleared:
                self._issue("delete", user_id, item_id, partial(self._store.delete, user_id, item_id))
            self._track(self._clear_remote(user_id, barrier))
            self._clear_cache_slot(self._mirror_key(user_id))
        self._clear_cache_slot(self._cache_key)

    # -- write-failure side channel -------------------------------------------

    def on_write_failure(self, listener: WriteFailureListener) -> Callable[[], None]:
        """Register a listener for failed remote writes; returns its remover."""
        self._failure_listeners.append(listener)

        def _remove() -> None:
            if listener in self._failure_listeners:
                self._failure_listeners.remove(listener)

        return _remove

    def health(self) -> dict[str, object]:
        """Return sync health metrics for monitoring."""
        return {
            "collection": self._name,
            "state": describe(self._state),
            "item_count": self.count(),
            "pending_writes": len(self._pending),
            "total_write_failures": self._total_failures,
            "subscribed": self._unsubscribe_remote is not None,
        }

    # -- identity transitions -------------------------------------------------

    async def _on_identity(self, identity: Identity | None) -> None:
        if self._closed:
            return
        user_id = identity.user_id if identity is not None else None
        self._generation += 1
        generation = self._generation
        async with self._transition_lock:
            if generation != self._generation:
                # A newer emission is queued behind us and will decide.
                return
            if user_id is None:
                self._enter_detached()
            elif isinstance(self._state, Bound) and self._state.user_id == user_id:
                return
            else:
                await self._enter_bound(user_id)

    def _enter_detached(self) -> None:
        previous = describe(self._state)
        self._teardown_remote()
        self._state = detach(self._state)
        self._set_items(items_from_dicts(self._cache.read(self._cache_key)))
        logger.info(
            "%s: %s -> detached (%d item(s) from local cache).",
            self._name, previous, self.count(),
        )

    async def _enter_bound(self, user_id: str) -> None:
        previous = describe(self._state)
        self._teardown_remote()
        self._state = begin_merge(self._state, user_id)

        guest_items = items_from_dicts(self._cache.read(self._cache_key))
        mirrored = items_from_dicts(self._cache.read(self._mirror_key(user_id)))
        self._set_items(mirrored + guest_items)
        logger.info(
            "%s: %s -> merging:%s (%d guest item(s)).",
            self._name, previous, user_id, len(guest_items),
        )

        merges = [
            self._issue(
                "upsert", user_id, item.id,
                partial(self._store.upsert, user_id, item.id, item.to_dict(), True),
            )
            for item in guest_items
        ]
        if merges:
            await asyncio.gather(*merges)
        self._clear_cache_slot(self._cache_key)

        self._state = finish_merge(self._state)
        self._binding_epoch += 1
        on_snapshot = partial(self._on_snapshot, user_id, self._binding_epoch)
        try:
            self._unsubscribe_remote = self._store.subscribe(user_id, on_snapshot)
        except Exception:
            logger.warning(
                "%s: failed to subscribe to remote collection for %s.",
                self._name, user_id, exc_info=True,
            )
        logger.info("%s: bound to %s.", self._name, user_id)

    def _teardown_remote(self) -> None:
        self._binding_epoch += 1
        if self._unsubscribe_remote is None:
            return
        unsubscribe, self._unsubscribe_remote = self._unsubscribe_remote, None
        try:
            unsubscribe()
        except Exception:
            logger.warning("%s: unsubscribe failed.", self._name, exc_info=True)

    def _on_snapshot(self, user_id: str, epoch: int, docs: list[dict[str, Any]]) -> None:
        if epoch != self._binding_epoch or self._state != Bound(user_id):
            logger.debug("%s: ignoring stale snapshot for %s.", self._name, user_id)
            return
        items = items_from_dicts(docs)
        self._set_items(items)
        self._write_cache_slot(self._mirror_key(user_id), items_to_dicts(items))

    # -- remote writes ----------------------------------------------------------

    def _issue(
        self,
        op: str,
        user_id: str,
        item_id: str,
        call: Callable[[], Awaitable[Any]],
    ) -> asyncio.Task[None]:
        """Schedule a remote write, stamped as the latest op for its item."""
        key = (user_id, item_id)
        self._op_clock += 1
        self._latest_op[key] = self._op_clock
        self._inflight[key] = self._inflight.get(key, 0) + 1
        return self._track(self._run_write(op, key, self._op_clock, call))

    def _track(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _get_lock(self, key: _WriteKey) -> asyncio.Lock:
        """Get or create a per-item write lock."""
        if key not in self._write_locks:
            self._write_locks[key] = asyncio.Lock()
        return self._write_locks[key]

    async def _run_write(
        self,
        op: str,
        key: _WriteKey,
        stamp: int,
        call: Callable[[], Awaitable[Any]],
    ) -> None:
        user_id, item_id = key
        try:
            async with self._get_lock(key):
                if self._latest_op.get(key) != stamp:
                    logger.debug("%s: skipping superseded %s of %s.", self._name, op, item_id)
                    return
                try:
                    await call()
                except Exception as exc:
                    self._report_failure(op, user_id, item_id, exc)
        finally:
            self._finish_write(key)

    def _finish_write(self, key: _WriteKey) -> None:
        remaining = self._inflight.get(key, 1) - 1
        if remaining:
            self._inflight[key] = remaining
            return
        self._inflight.pop(key, None)
        self._write_locks.pop(key, None)
        # A running clear still compares stamps against its barrier.
        if not self._active_clears:
            self._latest_op.pop(key, None)

    async def _clear_remote(self, user_id: str, barrier: int) -> None:
        """Delete every remote document not touched after ``barrier``."""
        try:
            docs = await self._store.list_all(user_id)
        except Exception as exc:
            self._report_failure("list", user_id, None, exc)
            return
        else:
            for doc in docs:
                item_id = doc.get("id")
                if not item_id:
                    continue
                if self._latest_op.get((user_id, item_id), 0) > barrier:
                    continue
                self._issue("delete", user_id, item_id, partial(self._store.delete, user_id, item_id))
        finally:
            self._active_clears -= 1
            if not self._active_clears:
                self._latest_op = {
                    key: stamp for key, stamp in self._latest_op.items() if key in self._inflight
                }

    def _report_failure(
        self, op: str, user_id: str, item_id: str | None, exc: BaseException,
    ) -> None:
        kind = "permission" if isinstance(exc, StorePermissionError) else "transient"
        self._total_failures += 1
        logger.warning(
            "%s: remote %s failed for %s/%s (%s): %s",
            self._name, op, user_id, item_id, kind, exc,
        )
        failure = WriteFailure(op=op, user_id=user_id, item_id=item_id, kind=kind, error=exc)
        for listener in list(self._failure_listeners):
            try:
                listener(failure)
            except Exception:
                logger.warning("Write-failure listener %r failed.", listener, exc_info=True)

    # -- local state --------------------------------------------------------------

    def _persist_upsert(self, item: Item) -> None:
        user_id = remote_user(self._state)
        if user_id is None:
            self._save_guest_slot()
            return
        self._issue(
            "upsert", user_id, item.id,
            partial(self._store.upsert, user_id, item.id, item.to_dict(), True),
        )

    def _set_items(self, items: list[Item]) -> None:
        self._items = {item.id: item for item in items}

    def _mirror_key(self, user_id: str) -> str:
        return f"{self._cache_key}:{user_id}"

    def _save_guest_slot(self) -> None:
        self._write_cache_slot(self._cache_key, items_to_dicts(self.items))

    def _write_cache_slot(self, key: str, items: list[dict[str, Any]]) -> None:
        try:
            self._cache.write(key, items)
        except (OSError, TypeError, ValueError):
            logger.warning("%s: failed to write local cache slot %s.", self._name, key, exc_info=True)

    def _clear_cache_slot(self, key: str) -> None:
        try:
            self._cache.clear(key)
        except OSError:
            logger.warning("%s: failed to clear local cache slot %s.", self._name, key, exc_info=True)
