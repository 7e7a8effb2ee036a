from __future__ import annotations

"""Key-value backends for the rate cache (GET / SETEX / DEL on strings)."""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import redis


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass
class _StoredValue:
    value: str
    expires_at: float


class InMemoryStore:
    """Process-local store with per-key expiry. Volatile by nature."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, _StoredValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                self._data.pop(key, None)
                return None
            return entry.value

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl must be positive seconds")
        with self._lock:
            self._data[key] = _StoredValue(value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class RedisStore:
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        value = self._client.get(key)
        if value is None:
            return None
        return value if isinstance(value, str) else value.decode("utf-8")

    def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._client.setex(key, ttl_seconds, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def close(self) -> None:
        self._client.close()


def make_store(kind: str, *, redis_url: Optional[str] = None) -> KeyValueStore:
    if kind == "memory":
        return InMemoryStore()
    if kind == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis cache backend")
        return RedisStore.from_url(redis_url)
    raise ValueError(f"Unknown cache backend '{kind}'")
