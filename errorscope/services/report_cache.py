"""
Last-good-result cache for analytics reports.

Primary storage is Redis so every API replica and worker serves the same
stale fallback; an in-memory dict is used when Redis is not configured or
unreachable. The in-memory copy is bounded and evicts the least recently used key.
"""
import json
import logging
from collections import OrderedDict
from typing import Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_MAX_FALLBACK_ENTRIES = 512


class ReportCache:
    """Stores JSON-serialisable report sections keyed by string."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prefix: str = "errorscope:report",
        max_fallback_entries: int = DEFAULT_MAX_FALLBACK_ENTRIES,
    ):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._redis: Optional[aioredis.Redis] = None
        self.max_fallback_entries = max_fallback_entries
        self._fallback: OrderedDict[str, str] = OrderedDict()

    def _get_redis(self) -> Optional[aioredis.Redis]:
        if self.redis_url is None:
            return None
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[object]:
        raw = None
        client = self._get_redis()
        if client is not None:
            try:
                raw = await client.get(self._key(key))
            except Exception as e:
                logger.warning(f"Report cache read failed for {key}, using in-memory fallback: {e}")
        if raw is None:
            raw = self._fallback.get(key)
            if raw is not None:
                self._fallback.move_to_end(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: object) -> None:
        raw = json.dumps(value, default=str)
        self._remember(key, raw)
        client = self._get_redis()
        if client is None:
            return
        try:
            await client.setex(self._key(key), self.ttl_seconds, raw)
        except Exception as e:
            logger.warning(f"Report cache write failed for {key}: {e}")

    def _remember(self, key: str, raw: str) -> None:
        self._fallback[key] = raw
        self._fallback.move_to_end(key)
        while len(self._fallback) > self.max_fallback_entries:
            self._fallback.popitem(last=False)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
