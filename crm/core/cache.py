from __future__ import annotations

import copy
import threading
import time
from typing import Any, Dict


class TtlCache:
    """Thread-safe in-process cache with per-entry expiry; values are deep-copied in and out."""

    def __init__(self, ttl_seconds: int = 300) -> None:
        self.ttl_seconds = max(1, int(ttl_seconds or 1))
        self._entries: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            if float(entry.get("expires_at") or 0) <= now:
                self._entries.pop(key, None)
                return None
            return copy.deepcopy(entry.get("value"))

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else max(1, int(ttl_seconds))
        with self._lock:
            self._entries[key] = {
                "expires_at": time.time() + ttl,
                "value": copy.deepcopy(value),
            }

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                self._entries.pop(key, None)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
