"""
Redis cache for the public availability listing.

CACHING STRATEGY
================

What we cache:
  - The public events listing with per-session remaining seats
  - Cache key pattern: "availability:list:upcoming={upcoming}"

Why:
  - The landing page RSVP modal polls this listing; it is by far the most
    frequent read
  - It changes only when a booking, modification, cancellation or event edit
    changes a session

Invalidation strategy:
  - Every capacity-changing route deletes all "availability:list:*" keys
  - TTL-based expiry as safety net

Why the booking engine never reads from here:
  - Capacity decisions are made by conditional UPDATEs in the database.
    A stale cached count can at worst show a seat that is already gone;
    the booking then fails with 409, it can never overbook.

Fail-open: with Redis disabled or unreachable every call degrades to a miss
and the listing is served from the database.
"""

import json
from typing import Optional

import redis.asyncio as redis
from fastapi import Request

from mokka.core.config import get_settings
from mokka.core.logging import get_logger
from mokka.core.metrics import record_cache_operation

logger = get_logger(__name__)

KEY_PREFIX = "availability:list:"


def _make_listing_key(upcoming_only: bool) -> str:
    return f"{KEY_PREFIX}upcoming={upcoming_only}"


class AvailabilityCache:
    """Owns one Redis client; None client means caching is off."""

    def __init__(self, client: Optional[redis.Redis] = None, ttl: int = 60):
        self.client = client
        self.ttl = ttl

    @classmethod
    async def connect(cls) -> "AvailabilityCache":
        settings = get_settings()
        if not settings.REDIS_ENABLED:
            return cls(None, settings.REDIS_CACHE_TTL)

        try:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            return cls(None, settings.REDIS_CACHE_TTL)

        return cls(client, settings.REDIS_CACHE_TTL)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def get_listing(self, upcoming_only: bool) -> Optional[dict]:
        if not self.client:
            return None

        key = _make_listing_key(upcoming_only)
        try:
            data = await self.client.get(key)
            record_cache_operation("get", data is not None)
            if data:
                return json.loads(data)
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))
        return None

    async def set_listing(self, upcoming_only: bool, data: dict) -> None:
        if not self.client:
            return

        key = _make_listing_key(upcoming_only)
        try:
            await self.client.setex(key, self.ttl, json.dumps(data, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate(self) -> None:
        """Drop every cached listing (SCAN over the key prefix)."""
        if not self.client:
            return

        try:
            deleted = 0
            async for key in self.client.scan_iter(match=f"{KEY_PREFIX}*", count=100):
                await self.client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", keys_deleted=deleted)
        except Exception as e:
            logger.error("cache_invalidation_error", error=str(e))

    async def stats(self) -> dict:
        if not self.client:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "status": "connected",
                "hits": hits,
                "misses": misses,
                "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}


def get_cache(request: Request) -> AvailabilityCache:
    return request.app.state.cache
