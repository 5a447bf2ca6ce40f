# Overview: Time-bounded cache for the ledger access token.

from __future__ import annotations

import threading
import time


class TokenCache:
    """
    One cached entry {value, fetched_at}, refreshed through `fetcher` when stale.

    The fetcher and clock are injected so tests can drive expiry without sleeping.
    """

    def __init__(self, fetcher, ttl_seconds: float, clock=time.monotonic):
        self._fetcher = fetcher
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value = None
        self._fetched_at = None

    def _is_fresh(self) -> bool:
        if self._value is None or self._fetched_at is None:
            return False
        return (self._clock() - self._fetched_at) < self._ttl

    def get(self) -> str:
        with self._lock:
            if not self._is_fresh():
                self._value = self._fetcher()
                self._fetched_at = self._clock()
            return self._value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = None

    @property
    def fetched_at(self):
        return self._fetched_at
