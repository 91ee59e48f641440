"""Sync state of a collection manager as an explicit tagged variant.

- ``Detached``: guest; the local cache slot is the backing store.
- ``Merging(user_id)``: guest items are being migrated into the user's
  remote collection.
- ``Bound(user_id)``: the live remote subscription is the backing store.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Detached:
    user_id: None = None


@dataclass(frozen=True)
class Merging:
    user_id: str


@dataclass(frozen=True)
class Bound:
    user_id: str


SyncState = Detached | Merging | Bound

DETACHED = Detached()


def remote_user(state: SyncState) -> str | None:
    """User whose remote collection receives writes, or None for guests.

    Writes issued while merging go to the remote store too: the guest
    slot is about to be cleared, so it can't hold them.
    """
    if isinstance(state, (Merging, Bound)):
        return state.user_id
    return None


def begin_merge(state: SyncState, user_id: str) -> Merging:
    if isinstance(state, (Merging, Bound)) and state.user_id == user_id:
        raise ValueError(f"Already synced to {user_id}")
    return Merging(user_id)


def finish_merge(state: SyncState) -> Bound:
    if not isinstance(state, Merging):
        raise ValueError(f"Cannot bind from {state!r}")
    return Bound(state.user_id)


def detach(state: SyncState) -> Detached:
    return DETACHED


def describe(state: SyncState) -> str:
    if isinstance(state, Detached):
        return "detached"
    return f"{type(state).__name__.lower()}:{state.user_id}"
