"""
Analysis Result Cache
=====================

Redis-backed store for AggregatedAnalysis snapshots, keyed by user and date
range, with a flat time-to-live.

Usage:
    from scripts.crm.result_cache import ResultCache, analysis_cache_key

    cache = ResultCache.from_url("redis://localhost:6379/0")
    key = analysis_cache_key(42, date_range)
    cached = await cache.get(key)
    await cache.set(key, analysis, ttl_seconds=1800)

Every Redis call is bounded by REDIS_TIMEOUT (default 5 s). Read failures,
timeouts included, degrade to a cache miss. Write failures raise CacheError.
"""
from __future__ import annotations

import asyncio
import os
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError

from models.crm_models import AggregatedAnalysis, DateRange
from scripts.lib.errors import CacheError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_SOCKET_TIMEOUT = 5.0  # seconds


def analysis_cache_key(user_id: int, date_range: DateRange) -> str:
    return f"analise:{user_id}:{date_range.data_inicio.isoformat()}:{date_range.data_fim.isoformat()}"


def default_ttl() -> int:
    return int(os.getenv("ANALYSIS_CACHE_TTL", str(DEFAULT_TTL_SECONDS)))


def socket_timeout() -> float:
    return float(os.getenv("REDIS_TIMEOUT") or DEFAULT_SOCKET_TIMEOUT)


class ResultCache:
    """Thin wrapper over an async Redis client."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str] = None, timeout: Optional[float] = None) -> "ResultCache":
        url = url or os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
        timeout = timeout if timeout is not None else socket_timeout()
        return cls(redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        ))

    async def get(self, key: str) -> Optional[AggregatedAnalysis]:
        """Return the cached analysis, or None on miss or read failure."""
        try:
            raw = await self.client.get(key)
        except (redis.RedisError, asyncio.TimeoutError) as e:
            logger.warning("Cache read failed for %s (treating as miss): %s", key, e)
            return None

        if raw is None:
            return None
        try:
            return AggregatedAnalysis.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding corrupt cache entry %s: %s", key, e)
            return None

    async def set(self, key: str, value: AggregatedAnalysis, ttl_seconds: int) -> None:
        """Store the analysis with an expiry; raises CacheError on failure."""
        payload = value.model_dump_json(by_alias=True)
        try:
            await self.client.set(key, payload, ex=ttl_seconds)
        except (redis.RedisError, asyncio.TimeoutError) as e:
            raise CacheError(f"Cache write failed: {e}", key=key) from e

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (redis.RedisError, asyncio.TimeoutError) as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self.client.aclose()
