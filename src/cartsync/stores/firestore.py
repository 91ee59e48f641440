"""FirestoreStore — DurableStore implementation using the Firestore REST API.

Self-contained: uses raw httpx, no Firebase SDK. Each item is one
document at ``{collection}/{user_id}/items/{item_id}``.

Endpoints (Firestore REST v1, relative to ``/v1/``):
- Upsert: PATCH {document} -> ``{"fields": {...}}``; merge writes pass one
  ``updateMask.fieldPaths`` per top-level field so unnamed fields survive
- Delete: DELETE {document} -> 404 tolerated (already gone)
- List: GET {collection path} -> ``{"documents": [...], "nextPageToken": ...}``

The REST API has no streaming listener, so ``subscribe()`` polls the
collection every ``poll_interval_secs`` and emits when the snapshot changes.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any
from urllib.parse import quote

import httpx

from cartsync.constants import ITEMS_SUBCOLLECTION
from cartsync.store_backend import (
    SnapshotCallback,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
    StoreUnavailableError,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

_BASE_URL = "https://firestore.googleapis.com/v1/"
_PAGE_SIZE = 300
_SIMPLE_FIELD = re.compile(r"^[A-Za-z_][A-Za-z_0-9]*$")


# ---------------------------------------------------------------------------
# Status code → exception mapping
# ---------------------------------------------------------------------------

_STATUS_MAP: dict[int, type[StoreError]] = {
    401: StorePermissionError,
    403: StorePermissionError,
    404: StoreNotFoundError,
}


# ---------------------------------------------------------------------------
# Value encoding
# ---------------------------------------------------------------------------


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a JSON-like Python value as a Firestore typed ``Value``."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def encode_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {str(k): encode_value(v) for k, v in data.items()}


def decode_value(value: dict[str, Any]) -> Any:
    """Decode a Firestore typed ``Value`` into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "referenceValue" in value:
        return value["referenceValue"]
    # geoPointValue, bytesValue: pass through untouched
    return next(iter(value.values()), None)


def decode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items()}


def field_path(name: str) -> str:
    """Quote a top-level field name for use in an update mask."""
    if _SIMPLE_FIELD.match(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class FirestoreStore:
    """Per-user item collections in Cloud Firestore.

    Implements the cartsync ``DurableStore`` protocol:

    - ``upsert(user_id, item_id, data, merge=True)``
    - ``delete(user_id, item_id)``
    - ``list_all(user_id) -> list[dict]``
    - ``subscribe(user_id, on_snapshot) -> unsubscribe``

    Requests carry the project's web API key and, once
    ``set_id_token()`` has been called, the shopper's ID token so
    security rules can scope access to ``request.auth.uid``.
    """

    def __init__(
        self,
        project_id: str,
        collection: str,
        *,
        api_key: str | None = None,
        database_id: str = "(default)",
        poll_interval_secs: float = 5.0,
        timeout_secs: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.collection = collection
        self._root = f"projects/{project_id}/databases/{database_id}/documents"
        self._api_key = api_key
        self._poll_interval = poll_interval_secs
        self._client = httpx.AsyncClient(
            base_url=_BASE_URL,
            timeout=httpx.Timeout(timeout_secs, connect=5.0),
            transport=transport,
        )
        self._pollers: set[asyncio.Task[None]] = set()

    def set_id_token(self, id_token: str | None) -> None:
        """Authenticate subsequent requests as a shopper (None: anonymous)."""
        if id_token:
            self._client.headers["Authorization"] = f"Bearer {id_token}"
        else:
            self._client.headers.pop("Authorization", None)

    # -- paths ----------------------------------------------------------------

    def _items_path(self, user_id: str) -> str:
        return (
            f"{self._root}/{quote(self.collection, safe='')}/"
            f"{quote(user_id, safe='')}/{ITEMS_SUBCOLLECTION}"
        )

    def _doc_path(self, user_id: str, item_id: str) -> str:
        return f"{self._items_path(user_id)}/{quote(item_id, safe='')}"

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and map errors to the store exception hierarchy."""
        query = list(params or [])
        if self._api_key:
            query.append(("key", self._api_key))
        try:
            response = await self._client.request(method, path, params=query, json=json_data)
        except httpx.TimeoutException as exc:
            raise StoreUnavailableError(f"timeout: {exc}") from exc
        except httpx.RequestError as exc:
            raise StoreUnavailableError(str(exc)) from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500 or response.status_code == 429:
                raise StoreUnavailableError(body, status_code=response.status_code)
            raise StoreError(body, status_code=response.status_code)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise StoreUnavailableError(
                f"unparseable response body: {exc}", status_code=response.status_code,
            ) from exc

    # -- DurableStore protocol -----------------------------------------------

    async def upsert(
        self, user_id: str, item_id: str, data: dict[str, Any], merge: bool = True
    ) -> None:
        """Create or update an item document.

        With ``merge`` only the fields present in ``data`` are written;
        fields stored remotely but absent from ``data`` are kept.
        """
        params: list[tuple[str, str]] = []
        if merge:
            params = [("updateMask.fieldPaths", field_path(k)) for k in data]
        await self._request(
            "PATCH",
            self._doc_path(user_id, item_id),
            params=params,
            json_data={"fields": encode_fields(data)},
        )

    async def delete(self, user_id: str, item_id: str) -> None:
        try:
            await self._request("DELETE", self._doc_path(user_id, item_id))
        except StoreNotFoundError:
            logger.debug("Item %s/%s already absent.", user_id, item_id)

    async def list_all(self, user_id: str) -> list[dict[str, Any]]:
        """Return every item document for ``user_id``, following pagination."""
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params = [("pageSize", str(_PAGE_SIZE))]
            if page_token:
                params.append(("pageToken", page_token))
            try:
                data = await self._request("GET", self._items_path(user_id), params=params)
            except StoreNotFoundError:
                return items
            for doc in data.get("documents", []):
                items.append(self._decode_document(doc))
            page_token = data.get("nextPageToken")
            if not page_token:
                return items

    def subscribe(self, user_id: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Poll ``user_id``'s collection, emitting each changed snapshot."""
        task = asyncio.get_running_loop().create_task(self._poll_loop(user_id, on_snapshot))
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def _unsubscribe() -> None:
            task.cancel()

        return _unsubscribe

    # -- polling ----------------------------------------------------------------

    async def _poll_loop(self, user_id: str, on_snapshot: SnapshotCallback) -> None:
        """Emit the first snapshot, then any change, until cancelled."""
        last: list[dict[str, Any]] | None = None
        failures = 0
        try:
            while True:
                try:
                    snapshot = await self.list_all(user_id)
                except StoreError as exc:
                    failures += 1
                    logger.warning(
                        "Poll of %s/%s failed (%d consecutive): %s",
                        self.collection, user_id, failures, exc,
                    )
                except Exception:
                    failures += 1
                    logger.warning(
                        "Poll of %s/%s failed unexpectedly (%d consecutive).",
                        self.collection, user_id, failures, exc_info=True,
                    )
                else:
                    failures = 0
                    if snapshot != last:
                        last = snapshot
                        logger.debug(
                            "Snapshot for %s/%s: %d item(s).",
                            self.collection, user_id, len(snapshot),
                        )
                        try:
                            on_snapshot(snapshot)
                        except Exception:
                            logger.warning(
                                "Snapshot listener for %s/%s failed.",
                                self.collection, user_id, exc_info=True,
                            )
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            pass

    @staticmethod
    def _decode_document(doc: dict[str, Any]) -> dict[str, Any]:
        data = decode_fields(doc.get("fields", {}))
        if "id" not in data:
            data["id"] = doc.get("name", "").rsplit("/", 1)[-1]
        return data

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Stop all pollers and close the underlying HTTP client."""
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            await asyncio.gather(*self._pollers, return_exceptions=True)
        await self._client.aclose()

    async def __aenter__(self) -> FirestoreStore:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
