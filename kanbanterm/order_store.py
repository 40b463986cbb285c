"""Persistent per-project tab order.

Session data is re-fetched on every load; tab order is sticky across restarts.
The whole mapping project -> ordered session ids lives as one JSON record under
TAB_ORDER_STORAGE_KEY in a local key-value store.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from structlog import get_logger

from kanbanterm.constants import TAB_ORDER_STORAGE_KEY

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal string key-value store (localStorage shaped)."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store, used when no durable state is wanted."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileKeyValueStore:
    """Key-value store backed by a single JSON object on disk.

    Writes use a lock file plus temp-file replace so a crash never leaves a
    truncated state file behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("state_file_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = self.path.with_suffix(".lock")
        with open(lock_path, "w", encoding="utf-8") as lock_file:
            try:
                import fcntl

                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            except (ImportError, OSError):
                pass  # unlocked write where flock is unavailable

            tmp_path = self.path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(items, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_all()
        items[key] = value
        self._write_all(items)

    def remove_item(self, key: str) -> None:
        items = self._read_all()
        if items.pop(key, None) is not None:
            self._write_all(items)


def _sanitize_ids(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def orders_equal(current: Sequence[str] | None, nxt: Sequence[str]) -> bool:
    return current is not None and list(current) == list(nxt)


class TabOrderStore:
    """In-memory cache of stored tab orders, written through to a KeyValueStore.

    The record is read once at construction; absent or malformed records mean
    an empty cache (fresh sort by creation time).
    """

    def __init__(self, storage: KeyValueStore, key: str = TAB_ORDER_STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key
        self._orders: dict[str, list[str]] = self._load()

    def _load(self) -> dict[str, list[str]]:
        try:
            raw = self.storage.get_item(self.key)
        except OSError as e:
            logger.warning("tab_order_read_failed", key=self.key, error=str(e))
            return {}
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("tab_order_parse_failed", key=self.key, error=str(e))
            return {}
        if not isinstance(parsed, dict):
            logger.warning("tab_order_malformed", key=self.key, kind=type(parsed).__name__)
            return {}

        result: dict[str, list[str]] = {}
        for project_id, value in parsed.items():
            ids = _sanitize_ids(value)
            if project_id and ids:
                result[project_id] = ids
        logger.debug("tab_order_loaded", projects=len(result))
        return result

    def get(self, project_id: str) -> list[str] | None:
        order = self._orders.get(project_id)
        return list(order) if order is not None else None

    def snapshot(self) -> dict[str, list[str]]:
        return {project_id: list(order) for project_id, order in self._orders.items()}

    def capture(self, project_id: str, session_ids: Iterable[str]) -> bool:
        """Record a project's order. Returns True when a persistence write happened.

        An empty order deletes the project's record; an unchanged order writes nothing.
        """
        if not project_id:
            return False
        nxt = [session_id for session_id in session_ids if session_id]
        if not nxt:
            if self._orders.pop(project_id, None) is None:
                return False
            self._persist()
            return True
        if orders_equal(self._orders.get(project_id), nxt):
            return False
        self._orders[project_id] = nxt
        self._persist()
        return True

    def _persist(self) -> None:
        payload = {project_id: order for project_id, order in self._orders.items() if order}
        try:
            if not payload:
                self.storage.remove_item(self.key)
            else:
                self.storage.set_item(self.key, json.dumps(payload))
        except OSError as e:
            # In-memory cache stays authoritative for this process
            logger.error("tab_order_write_failed", key=self.key, error=str(e))
