# Query result cache

"""
LRU cache around pivot and stats queries.

Results are keyed by query name and arguments; uploads and extraction runs
invalidate a user's entries so charts never show stale counts.
"""

import functools
import logging
import os
import threading

from cachetools import LRUCache, TTLCache

# ==============================
# CONFIG
# ==============================

QUERY_CACHE_SIZE = int(os.getenv("QUERY_CACHE_SIZE", "500"))
QUERY_CACHE_TTL = os.getenv("QUERY_CACHE_TTL")  # seconds; unset = no expiry


def _freeze(value):
    if isinstance(value, (list, tuple, set)):
        return tuple(sorted(_freeze(v) for v in value))
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    return value


def make_key(name: str, *args, **kwargs) -> tuple:
    return (name,) + tuple(_freeze(a) for a in args) + tuple(sorted((k, _freeze(v)) for k, v in kwargs.items()))


def _user_scope(key: tuple):
    for part in key[1:]:
        if isinstance(part, tuple) and len(part) == 2 and part[0] == "user_id":
            return part[1]
    return None


class QueryCache:
    def __init__(self, maxsize: int = QUERY_CACHE_SIZE, ttl: float = None):
        if ttl:
            self._cache = TTLCache(maxsize=maxsize, ttl=ttl)
        else:
            self._cache = LRUCache(maxsize=maxsize)
        self._lock = threading.RLock()
        self._generation = 0
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key, compute):
        with self._lock:
            generation = self._generation
            try:
                value = self._cache[key]
            except KeyError:
                self.misses += 1
            else:
                self.hits += 1
                return value

        value = compute()
        with self._lock:
            # skip the store if an invalidation ran during compute()
            if generation == self._generation:
                self._cache[key] = value
        return value

    def invalidate(self, name: str = None, user_id=None):
        """
        Drop cached entries. With no arguments the whole cache is cleared;
        otherwise only keys for the given query name and / or user_id.
        Entries computed across all users go stale with any user's data.
        """
        with self._lock:
            self._generation += 1
            if name is None and user_id is None:
                self._cache.clear()
                return
            stale = [
                key for key in list(self._cache.keys())
                if (name is None or key[0] == name)
                and (user_id is None or _user_scope(key) in (user_id, None))
            ]
            for key in stale:
                self._cache.pop(key, None)
        logging.info(f"🧹 Invalidated {len(stale)} cached queries")

    def stats(self) -> dict:
        with self._lock:
            return {
                "hits": self.hits,
                "misses": self.misses,
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
            }


query_cache = QueryCache(ttl=float(QUERY_CACHE_TTL) if QUERY_CACHE_TTL else None)


def cached_query(name: str):
    """
    Cache a query function in `query_cache`. Callers should pass user_id
    as a keyword argument so invalidate(user_id=...) can find the entry.
    """
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            key = make_key(name, *args, **kwargs)
            return query_cache.get_or_compute(key, lambda: fn(*args, **kwargs))
        return wrapper
    return decorator
