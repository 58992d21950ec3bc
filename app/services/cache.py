from __future__ import annotations

import fnmatch
import logging
import threading
import time
from typing import Optional

import redis
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)


class CacheService:
    """String key/value cache with TTL.

    Uses Redis when `url` is given and reachable, otherwise an in-process
    map. Backend errors are logged and reported as a miss.
    """

    def __init__(self, url: Optional[str] = None, default_ttl: int = 3600) -> None:
        self._default_ttl = default_ttl
        self._client: Optional[redis.Redis] = None
        self._local: dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

        if url:
            self._connect(url)

    def _connect(self, url: str) -> None:
        try:
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=2,
            )
            client.ping()
            self._client = client
            logger.info("Connected to Redis cache")
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable (%s), using in-memory cache", exc)
            self._client = None

    @property
    def backend(self) -> str:
        return "redis" if self._client is not None else "memory"

    def get(self, key: str) -> Optional[str]:
        if self._client is not None:
            try:
                return self._client.get(key)
            except RedisError as exc:
                logger.error("Cache get error for %s: %s", key, exc)
                return None

        with self._lock:
            entry = self._local.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._local[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        if self._client is not None:
            try:
                if ttl > 0:
                    self._client.setex(key, ttl, value)
                else:
                    self._client.set(key, value)
            except RedisError as exc:
                logger.error("Cache set error for %s: %s", key, exc)
            return

        expires_at = time.monotonic() + ttl if ttl > 0 else None
        with self._lock:
            self._local[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        if self._client is not None:
            try:
                self._client.delete(key)
            except RedisError as exc:
                logger.error("Cache delete error for %s: %s", key, exc)
            return

        with self._lock:
            self._local.pop(key, None)

    def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern such as ``forecast:12:*``."""

        if self._client is not None:
            try:
                keys = list(self._client.scan_iter(match=pattern))
                if keys:
                    self._client.delete(*keys)
                return len(keys)
            except RedisError as exc:
                logger.error("Cache invalidate error for %s: %s", pattern, exc)
                return 0

        with self._lock:
            keys = [key for key in self._local if fnmatch.fnmatchcase(key, pattern)]
            for key in keys:
                del self._local[key]
        return len(keys)

    def flush(self) -> None:
        if self._client is not None:
            try:
                self._client.flushdb()
            except RedisError as exc:
                logger.error("Cache flush error: %s", exc)
            return

        with self._lock:
            self._local.clear()

    def disconnect(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None
                logger.info("Disconnected from Redis cache")
