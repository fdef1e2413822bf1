"""Durable local preferences and the bounded recent-query history."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from dolphin.utils.logger import get_logger


logger = get_logger("dolphin.preferences")


class PreferenceStore:
    """Small JSON key/value file used as durable local storage."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_locked(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("preferences_read_failed path=%s error=%s", self.path, exc)
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload

    def _write_locked(self, payload: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read_locked().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            payload = self._read_locked()
            payload[key] = value
            self._write_locked(payload)

    def remove(self, key: str) -> None:
        with self._lock:
            payload = self._read_locked()
            if key not in payload:
                return
            payload.pop(key, None)
            self._write_locked(payload)


class SearchHistory:
    """Most-recent-first query history, deduplicated by exact text and capped.

    The history is read once from the store when constructed and written back
    on every mutation.
    """

    def __init__(self, store: Optional[PreferenceStore] = None, key: str = "dolphin_search_history", limit: int = 5) -> None:
        self.store = store
        self.key = key
        self.limit = max(1, int(limit))
        self._items: List[str] = self._load()

    def _load(self) -> List[str]:
        if self.store is None:
            return []
        raw = self.store.get(self.key, [])
        if not isinstance(raw, list):
            logger.error("history_parse_failed key=%s", self.key)
            return []
        items: List[str] = []
        for entry in raw:
            text = str(entry).strip()
            if text and text not in items:
                items.append(text)
        return items[: self.limit]

    @property
    def items(self) -> List[str]:
        return list(self._items)

    def add(self, query: str) -> List[str]:
        clean = str(query or "").strip()
        if not clean:
            return self.items
        self._items = [clean] + [item for item in self._items if item != clean]
        self._items = self._items[: self.limit]
        if self.store is not None:
            self.store.set(self.key, self._items)
        return self.items

    def clear(self) -> None:
        self._items = []
        if self.store is not None:
            self.store.remove(self.key)
