"""
In-process response cache keyed by request fingerprint.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

from statement_extractor.config import CACHE_MAX_KEYS, CACHE_TTL

logger = logging.getLogger(__name__)


def fingerprint(payload: bytes, prompt: str, model: str) -> str:
    """Deterministic digest of the exact payload bytes, prompt text and model."""
    digest = hashlib.sha256()
    for part in (payload, prompt.encode("utf-8"), model.encode("utf-8")):
        # length-prefix each part so ("ab", "c") and ("a", "bc") differ
        digest.update(len(part).to_bytes(8, "big"))
        digest.update(part)
    return digest.hexdigest()


class ResponseCache:
    """TTL store with a maximum entry count; the oldest entry is evicted first."""

    def __init__(
        self,
        ttl: float | None = None,
        max_keys: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl if ttl is not None else CACHE_TTL
        self.max_keys = max_keys if max_keys is not None else CACHE_MAX_KEYS
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _live(self, key: str, now: float) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry[0] <= now:
            del self._entries[key]
            return False
        return True

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if self._live(key, self._clock()):
                self.hits += 1
                return self._entries[key][1]
            self.misses += 1
            return None

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(key, self._clock())

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            expired = [k for k, (expires, _) in self._entries.items() if expires <= now]
            for k in expired:
                del self._entries[k]
            while self._entries and len(self._entries) >= self.max_keys:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s", evicted)
            self._entries[key] = (now + self.ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires, _ in self._entries.values() if expires > now)

    def get_stats(self) -> dict:
        return {
            "keys": len(self),
            "hits": self.hits,
            "misses": self.misses,
            "ttl": self.ttl,
            "max_keys": self.max_keys,
        }


response_cache = ResponseCache()
