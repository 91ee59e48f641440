"""Abstract persistence interfaces for per-user collections.

Defines the DurableStore and LocalCache Protocols that
CollectionSyncManager depends on, plus the store error hierarchy.
Concrete implementations live in ``cartsync.stores`` and
``cartsync.local_cache``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

SnapshotCallback = Callable[[list[dict[str, Any]]], None]
Unsubscribe = Callable[[], None]


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base exception for durable store operations."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorePermissionError(StoreError):
    """401/403 — authentication or security-rule rejection."""


class StoreNotFoundError(StoreError):
    """404 — document or collection not found."""


class StoreUnavailableError(StoreError):
    """5xx, network or timeout failure (transient)."""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class DurableStore(Protocol):
    """Async per-user document collection, scoped to one collection name.

    Any object implementing these methods can serve as the remote
    backing store for CollectionSyncManager.
    """

    async def upsert(
        self, user_id: str, item_id: str, data: dict[str, Any], merge: bool = True
    ) -> None: ...

    async def delete(self, user_id: str, item_id: str) -> None: ...

    async def list_all(self, user_id: str) -> list[dict[str, Any]]: ...

    def subscribe(self, user_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe: ...


@runtime_checkable
class LocalCache(Protocol):
    """Synchronous, process-local key-value slot for item lists."""

    def read(self, key: str) -> list[dict[str, Any]] | None: ...

    def write(self, key: str, items: list[dict[str, Any]]) -> None: ...

    def clear(self, key: str) -> None: ...
