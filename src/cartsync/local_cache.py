"""Process-local caches for guest collections.

``JsonFileCache`` keeps one JSON file per key, the on-disk counterpart of
browser ``localStorage``. ``MemoryCache`` is the same contract held in a
dict. Both are synchronous and never shared across processes.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class MemoryCache:
    """Dict-backed LocalCache. Lost when the process exits."""

    def __init__(self) -> None:
        self._slots: dict[str, str] = {}

    def read(self, key: str) -> list[dict[str, Any]] | None:
        raw = self._slots.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def write(self, key: str, items: list[dict[str, Any]]) -> None:
        # Stored serialized so callers can't mutate the cached copy.
        self._slots[key] = json.dumps(items)

    def clear(self, key: str) -> None:
        self._slots.pop(key, None)


class JsonFileCache:
    """File-backed LocalCache: ``<directory>/<key>.json``.

    - ``read()`` returns None for a missing slot, and also for a corrupt
      one (logged, never raised).
    - ``write()`` replaces the file atomically.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def read(self, key: str) -> list[dict[str, Any]] | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Local cache slot %s is corrupt; treating as empty.", key)
            return None
        if not isinstance(data, list):
            logger.warning("Local cache slot %s is not a list; treating as empty.", key)
            return None
        return data

    def write(self, key: str, items: list[dict[str, Any]]) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
