"""Short-lived key-value cache used for login capability tokens.

Keys live in named tables (``PUBLIC``, ``WS``, ``USER``), each with its own
default lifetime. Two backends share the same surface: ``MemoryCache`` for a
single process and tests, ``RedisCache`` when ``CACHE_URL`` points at Redis.
``pop`` is an atomic get-then-delete on both.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Literal, Optional

import redis
from cachetools import TLRUCache

from config import settings

logger = logging.getLogger(__name__)

Table = Literal["PUBLIC", "WS", "USER"]


def default_lifetimes(lifetime: int) -> dict[str, int]:
    return {"PUBLIC": lifetime, "WS": lifetime, "USER": lifetime}


class BaseCache:
    def __init__(self, lifetimes: Optional[dict[str, int]] = None) -> None:
        self.lifetimes = lifetimes or default_lifetimes(settings.CACHE_LIFETIME)

    def _key(self, table: Table, key: str) -> str:
        return f"{table}:{key}"

    def _lifetime(self, table: Table, lifetime: Optional[int]) -> int:
        return lifetime if lifetime is not None else self.lifetimes[table]

    def get(self, table: Table, key: str) -> Any:
        raise NotImplementedError

    def set(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        raise NotImplementedError

    def add(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        """Store ``value`` only if the key is absent."""
        raise NotImplementedError

    def touch(self, table: Table, key: str, lifetime: Optional[int] = None) -> bool:
        raise NotImplementedError

    def delete(self, table: Table, key: str) -> bool:
        raise NotImplementedError

    def pop(self, table: Table, key: str) -> Any:
        raise NotImplementedError

    def pop_if(self, table: Table, key: str, predicate: Callable[[Any], bool]) -> Any:
        """Atomically remove and return the value only when ``predicate`` accepts it.

        A rejected entry is left untouched, remaining lifetime included.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryCache(BaseCache):
    """In-process cache; each entry carries its own lifetime."""

    def __init__(
        self,
        lifetimes: Optional[dict[str, int]] = None,
        maxsize: Optional[int] = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(lifetimes)
        self._lock = threading.Lock()
        # items are stored as (value, lifetime)
        self._data = TLRUCache(
            maxsize=maxsize or settings.CACHE_MAXSIZE,
            ttu=lambda _key, item, now: now + item[1],
            timer=timer,
        )

    def get(self, table: Table, key: str) -> Any:
        with self._lock:
            item = self._data.get(self._key(table, key))
        return None if item is None else item[0]

    def set(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        with self._lock:
            self._data[self._key(table, key)] = (value, self._lifetime(table, lifetime))
        return True

    def add(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        full_key = self._key(table, key)
        with self._lock:
            if full_key in self._data:
                return False
            self._data[full_key] = (value, self._lifetime(table, lifetime))
        return True

    def touch(self, table: Table, key: str, lifetime: Optional[int] = None) -> bool:
        full_key = self._key(table, key)
        with self._lock:
            item = self._data.get(full_key)
            if item is None:
                return False
            self._data[full_key] = (item[0], self._lifetime(table, lifetime))
        return True

    def delete(self, table: Table, key: str) -> bool:
        with self._lock:
            return self._data.pop(self._key(table, key), None) is not None

    def pop(self, table: Table, key: str) -> Any:
        with self._lock:
            item = self._data.pop(self._key(table, key), None)
        return None if item is None else item[0]

    def pop_if(self, table: Table, key: str, predicate: Callable[[Any], bool]) -> Any:
        full_key = self._key(table, key)
        with self._lock:
            item = self._data.get(full_key)
            if item is None or not predicate(item[0]):
                return None
            del self._data[full_key]
        return item[0]


class RedisCache(BaseCache):
    """Redis-backed cache; values are stored as JSON."""

    def __init__(
        self,
        client: "redis.Redis",
        lifetimes: Optional[dict[str, int]] = None,
    ) -> None:
        super().__init__(lifetimes)
        self.redis = client

    @classmethod
    def from_url(cls, url: str, lifetimes: Optional[dict[str, int]] = None) -> "RedisCache":
        return cls(redis.Redis.from_url(url, encoding="utf-8", decode_responses=True), lifetimes)

    @staticmethod
    def _load(raw: Optional[str]) -> Any:
        return None if raw is None else json.loads(raw)

    def get(self, table: Table, key: str) -> Any:
        return self._load(self.redis.get(self._key(table, key)))

    def set(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        return bool(
            self.redis.set(self._key(table, key), json.dumps(value), ex=self._lifetime(table, lifetime))
        )

    def add(self, table: Table, key: str, value: Any, lifetime: Optional[int] = None) -> bool:
        return bool(
            self.redis.set(
                self._key(table, key), json.dumps(value), ex=self._lifetime(table, lifetime), nx=True
            )
        )

    def touch(self, table: Table, key: str, lifetime: Optional[int] = None) -> bool:
        return bool(self.redis.expire(self._key(table, key), self._lifetime(table, lifetime)))

    def delete(self, table: Table, key: str) -> bool:
        return bool(self.redis.delete(self._key(table, key)))

    def pop(self, table: Table, key: str) -> Any:
        return self._load(self.redis.getdel(self._key(table, key)))

    def pop_if(self, table: Table, key: str, predicate: Callable[[Any], bool]) -> Any:
        full_key = self._key(table, key)
        with self.redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(full_key)
                    value = self._load(pipe.get(full_key))
                    if value is None or not predicate(value):
                        pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.delete(full_key)
                    pipe.execute()
                    return value
                except redis.WatchError:
                    logger.debug("Key %s changed during pop_if, retrying", full_key)

    def close(self) -> None:
        self.redis.close()


def build_cache(url: Optional[str] = None) -> BaseCache:
    url = url if url is not None else settings.CACHE_URL
    if url:
        logger.info("Using Redis cache")
        return RedisCache.from_url(url)
    logger.info("Using in-process cache")
    return MemoryCache()
