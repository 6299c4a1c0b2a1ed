import time
import threading

from config import PRICE_CACHE_TTL


class TTLCache:
    """
    In-memory key/value cache with per-entry expiry.
    Used for USD prices so a batch does not hit the price API per wallet.
    """

    def __init__(self, default_ttl=300, auto_cleanup_interval=300):
        self.default_ttl = default_ttl
        self._store = {}
        self._lock = threading.Lock()
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = auto_cleanup_interval

    def set(self, key, value, ttl=None):
        expire_at = time.monotonic() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._store[key] = (value, expire_at)
        self._maybe_cleanup()

    def get(self, key, default=None):
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return default

            value, expire_at = item
            if time.monotonic() > expire_at:
                del self._store[key]
                return default

            return value

    def delete(self, key):
        with self._lock:
            self._store.pop(key, None)

    def clear(self):
        with self._lock:
            self._store.clear()

    def __len__(self):
        with self._lock:
            return len(self._store)

    def _maybe_cleanup(self):
        now = time.monotonic()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        self.cleanup()

    def cleanup(self):
        """Drop expired entries"""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (_, exp) in self._store.items() if now > exp]
            for k in expired:
                del self._store[k]


# USD spot prices per currency
prices_cache = TTLCache(default_ttl=PRICE_CACHE_TTL)
