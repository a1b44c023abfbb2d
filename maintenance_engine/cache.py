"""
Redis caching utilities for derived analytics
Cache failures never fail a request: every error falls back to recomputing
"""

import json
import logging
import time
from typing import Any, Optional

import redis

from .config import (
    CACHE_ENABLED,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    REDIS_SSL,
    REDIS_URL,
)

logger = logging.getLogger(__name__)

# After a failed connection attempt, wait this long before trying again
RECONNECT_COOLDOWN_SECONDS = 60


def _mask_url(url: str) -> str:
    if "@" in url:
        protocol = url.split("@")[0].split(":")[0]
        return f"{protocol}:****@{url.split('@')[1]}"
    return "****"


def get_redis_client() -> redis.Redis:
    """
    Build a Redis client from REDIS_URL (managed Redis) or host/port settings
    and check it with a ping.
    """
    if REDIS_URL:
        logger.info(f"📡 Using Redis URL connection: {_mask_url(REDIS_URL)}")
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )
    else:
        logger.info(f"📡 Using Redis host connection: {REDIS_HOST}:{REDIS_PORT}")
        client = redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD,
            ssl=REDIS_SSL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
    client.ping()
    logger.info("✅ Redis connected successfully")
    return client


class Cache:
    """Redis cache wrapper with JSON serialization"""

    def __init__(self, enabled: bool = CACHE_ENABLED):
        self.enabled = enabled
        self.redis_client = None
        self._failed_at: Optional[float] = None

    def _get_client(self):
        """Lazy load Redis client"""
        if not self.enabled:
            return None
        if self.redis_client is None:
            if self._failed_at and time.monotonic() - self._failed_at < RECONNECT_COOLDOWN_SECONDS:
                return None
            try:
                self.redis_client = get_redis_client()
                self._failed_at = None
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                self._failed_at = time.monotonic()
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 600) -> bool:
        """Set value in cache with TTL (default 10 minutes)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'analytics:12:*')"""
        client = self._get_client()
        if not client:
            return 0

        try:
            keys = list(client.scan_iter(match=pattern))
            if keys:
                deleted = client.delete(*keys)
                logger.debug(f"✅ Cache DELETE pattern: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except Exception as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0


# Global cache instance
cache = Cache()


def build_analytics_key(tenant_id: int, branch_ids, start, end, view: str = "dashboard") -> str:
    """Cache key for an analytics view: tenant, view, visible branches and date range"""
    branches = "all" if branch_ids is None else ",".join(str(b) for b in sorted(branch_ids)) or "none"
    return f"analytics:{tenant_id}:{view}:{branches}:{start.isoformat()}:{end.isoformat()}"


def invalidate_analytics_cache(tenant_id: int) -> int:
    """Drop every cached analytics view of a tenant"""
    return cache.delete_pattern(f"analytics:{tenant_id}:*")
