"""
Response Cache

WHY: Product lists and transaction pages are read far more often than they
change. Caching the serialized response for a short TTL keeps the checkout
screen responsive without a separate cache server.

RULES:
- Keys are always prefixed with the store id ("products:<store_id>:...") so a
  store can never read another store's cached data.
- Every successful write invalidates all keys of the writing store.
- A cache miss or a disabled cache is never an error.
"""

from __future__ import annotations

import threading
import time


# Key prefixes; the store id always follows the prefix
PRODUCTS = "products"
TRANSACTIONS = "transactions"


def cache_key(prefix: str, store_id: int, *parts) -> str:
    suffix = ":".join(str(p) for p in parts if p is not None and p != "")
    key = f"{prefix}:{store_id}"
    return f"{key}:{suffix}" if suffix else key


class ResponseCache:
    """In-process TTL cache; one instance per app, configured by init_app."""

    def __init__(self):
        self._entries: dict[str, tuple[float, object]] = {}
        self._lock = threading.Lock()
        self.enabled = True
        self.default_ttl = 60

    def init_app(self, app) -> None:
        self.enabled = bool(app.config.get("CACHE_ENABLED", True))
        self.default_ttl = int(app.config.get("CACHE_DEFAULT_TTL", 60))
        self.clear()
        app.extensions["mypos_cache"] = self

    def get(self, key: str):
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value, ttl: int | None = None) -> None:
        if not self.enabled:
            return
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_store(self, store_id: int) -> int:
        """Drop every cached entry belonging to store_id. Returns the count dropped."""
        wanted = str(store_id)
        with self._lock:
            doomed = [k for k in self._entries if k.split(":", 2)[1:2] == [wanted]]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
