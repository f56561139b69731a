"""
Request Rate Limiting

WHY: A misbehaving client (stuck retry loop, scripted scraping) must not be
able to starve the other cashiers of the same store, nor other stores.

Sliding window per (bucket, store). Buckets and their limits come from config:
- read:  RATE_LIMIT_READ requests per RATE_LIMIT_WINDOW_SECONDS
- write: RATE_LIMIT_WRITE requests per RATE_LIMIT_WINDOW_SECONDS

State is in-process; each worker process enforces its own window.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque

from ..errors import RateLimitedError


class RateLimiter:
    def __init__(self):
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()
        self.enabled = True
        self.window_seconds = 60
        self.limits = {"read": 200, "write": 50}

    def init_app(self, app) -> None:
        self.enabled = bool(app.config.get("RATE_LIMIT_ENABLED", True))
        self.window_seconds = int(app.config.get("RATE_LIMIT_WINDOW_SECONDS", 60))
        self.limits = {
            "read": int(app.config.get("RATE_LIMIT_READ", 200)),
            "write": int(app.config.get("RATE_LIMIT_WRITE", 50)),
        }
        self.reset()
        app.extensions["mypos_rate_limiter"] = self

    def hit(self, bucket: str, identity) -> int:
        """
        Record one request for (bucket, identity).

        Returns the number of requests left in the current window.
        Raises RateLimitedError (with retry_after seconds) when over the limit.
        """
        if not self.enabled:
            return -1
        limit = self.limits.get(bucket)
        if limit is None:
            raise ValueError(f"Unknown rate limit bucket: {bucket}")

        key = f"{bucket}:{identity}"
        now = time.monotonic()
        cutoff = now - self.window_seconds
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= limit:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                raise RateLimitedError(retry_after)
            hits.append(now)
            return limit - len(hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
