"""Injected result cache with explicit TTLs.

Components receive a `ResultCache` through their constructor instead of
reaching for process-global state.
"""

import json
from typing import Any, Protocol

import redis


class ResultCache(Protocol):
    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None: ...


class RedisResultCache:
    """JSON values in Redis under a namespaced key, expiring after a TTL."""

    def __init__(self, client: redis.Redis, namespace: str = "tradein") -> None:
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "tradein") -> "RedisResultCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        self.client.set(self._key(key), json.dumps(value), ex=ttl_seconds)
