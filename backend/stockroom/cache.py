# Overview: In-process cache-aside store with TTL expiry, LRU eviction and central key naming.

"""
Cache invariants:

- Cache-aside only. Repositories populate on miss and invalidate on write;
  nothing in here talks to the database.
- Every store-mutating operation invalidates its keys before returning, so
  correctness never depends on TTL expiry. TTL only bounds staleness for
  writers in other processes.
- Memory is bounded by max_entries; least-recently-used entries go first.
- Cache failures are never fatal: repositories go through safe_get/safe_set,
  which log and degrade to a store read.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, NamedTuple

import cachetools

from .validation import CacheError

logger = logging.getLogger(__name__)


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


class _Entry(NamedTuple):
    ttl: float
    value: Any


def _expires_at(key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class _Store(cachetools.TLRUCache):
    """TLRUCache that counts capacity evictions (expiry is not an eviction)."""

    def __init__(self, maxsize: int, timer: Callable[[], float]):
        super().__init__(maxsize=maxsize, ttu=_expires_at, timer=timer)
        self.evictions = 0

    def popitem(self):
        key, entry = super().popitem()
        self.evictions += 1
        return key, entry


class TTLCache:
    """
    Thread-safe read cache over cachetools.TLRUCache.

    Each entry carries its own TTL; when full, the least recently used live
    entry is evicted.
    """

    def __init__(
        self,
        *,
        default_ttl: float = 60.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._lock = threading.RLock()
        self._clock = clock
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.hits = 0
        self.misses = 0
        self._store = _Store(max_entries, clock)

    def init_app(self, app) -> None:
        self.default_ttl = float(app.config.get("STOCKROOM_CACHE_TTL_SECONDS", self.default_ttl))
        self.max_entries = int(app.config.get("STOCKROOM_CACHE_MAX_ENTRIES", self.max_entries))
        self.clear()
        app.extensions["stockroom_cache"] = self

    @property
    def evictions(self) -> int:
        return self._store.evictions

    def get(self, key: str) -> Any:
        _check_key(key)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self.misses += 1
                return MISS
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        _check_key(key)
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._store[key] = _Entry(ttl, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def invalidate_many(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._store.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            self._store.expire()
            doomed = [k for k in self._store if k.startswith(prefix)]
            for key in doomed:
                self._store.pop(key, None)
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._store = _Store(self.max_entries, self._clock)
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            self._store.expire()
            return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not MISS

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._store),
                "max_entries": self.max_entries,
                "default_ttl": self.default_ttl,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self._store.evictions,
            }


class CacheKeys:
    """
    Single place that knows which keys an entity can appear under.

    Item keys are exact; list keys share a prefix and are dropped wholesale
    because tracking precise list membership costs more than a re-read.
    """

    PRODUCT = "product:"
    PRODUCT_BARCODE = "product-barcode:"
    PRODUCT_LIST = "product-list:"
    SALE = "sale:"
    SALE_LIST = "sale-list:"
    COUNT = "count:"
    COUNT_LIST = "count-list:"

    @classmethod
    def product(cls, product_id: str) -> str:
        return f"{cls.PRODUCT}{product_id}"

    @classmethod
    def product_barcode(cls, barcode: str) -> str:
        return f"{cls.PRODUCT_BARCODE}{barcode}"

    @classmethod
    def product_list(cls, **params: Any) -> str:
        return f"{cls.PRODUCT_LIST}{_params_key(params)}"

    @classmethod
    def sale(cls, sale_id: str) -> str:
        return f"{cls.SALE}{sale_id}"

    @classmethod
    def sale_list(cls, **params: Any) -> str:
        return f"{cls.SALE_LIST}{_params_key(params)}"

    @classmethod
    def count(cls, count_id: str) -> str:
        return f"{cls.COUNT}{count_id}"

    @classmethod
    def count_list(cls, **params: Any) -> str:
        return f"{cls.COUNT_LIST}{_params_key(params)}"

    @classmethod
    def keys_for_product(cls, product_id: str, *barcodes: str | None) -> tuple[list[str], list[str]]:
        """(exact keys, list prefixes) touched by a change to one product."""
        keys = [cls.product(product_id)]
        keys.extend(cls.product_barcode(b) for b in barcodes if b)
        return keys, [cls.PRODUCT_LIST]

    @classmethod
    def keys_for_sale(cls, sale_id: str) -> tuple[list[str], list[str]]:
        return [cls.sale(sale_id)], [cls.SALE_LIST]

    @classmethod
    def keys_for_count(cls, count_id: str) -> tuple[list[str], list[str]]:
        return [cls.count(count_id)], [cls.COUNT_LIST]


def _check_key(key: Any) -> None:
    if not isinstance(key, str) or not key:
        raise CacheError("cache keys must be non-empty strings", details={"key": repr(key)})


def _params_key(params: dict) -> str:
    return "&".join(f"{k}={params[k]}" for k in sorted(params))


def safe_get(cache: TTLCache, key: str) -> Any:
    try:
        return cache.get(key)
    except Exception:
        logger.warning("cache read failed for %s; falling back to store", key, exc_info=True)
        return MISS


def safe_set(cache: TTLCache, key: str, value: Any, ttl: float | None = None) -> None:
    try:
        cache.set(key, value, ttl)
    except Exception:
        logger.warning("cache write failed for %s", key, exc_info=True)


def invalidate(cache: TTLCache, keys_and_prefixes: tuple[list[str], list[str]]) -> None:
    """
    Drop the exact keys and list prefixes returned by a CacheKeys.keys_for_* call.

    A cache that cannot be invalidated is cleared instead; stale reads are
    not an acceptable degradation.
    """
    keys, prefixes = keys_and_prefixes
    try:
        cache.invalidate_many(keys)
        for prefix in prefixes:
            cache.invalidate_prefix(prefix)
    except Exception:
        logger.warning("cache invalidation failed for %s; clearing cache", keys, exc_info=True)
        cache.clear()
