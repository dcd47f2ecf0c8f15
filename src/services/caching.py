"""
Redis cache for sequence statistics.

Stats are stored as JSON under ``stats:sequence:<id>:<name>`` with a short
TTL. Without ``REDIS_URL``, or when Redis cannot be reached, the cache is
disabled: reads miss and writes are dropped, so callers never need to
know whether Redis is there.
"""

import json
import logging
from typing import Any, Optional, Dict
import redis
from flask import current_app

logger = logging.getLogger(__name__)

KEY_PREFIX = "stats:sequence"


class CacheService:
    """Per-sequence stats cache backed by Redis."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url
        self.redis_client = None
        if redis_url:
            self._connect()

    def _connect(self):
        try:
            client = redis.from_url(self.redis_url, decode_responses=True)
            client.ping()
        except Exception as e:
            logger.error(f"Stats cache disabled, Redis unreachable: {str(e)}")
            return
        self.redis_client = client
        logger.info("Stats cache connected to Redis")

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    @staticmethod
    def sequence_key(sequence_id: str, name: str) -> str:
        return f"{KEY_PREFIX}:{sequence_id}:{name}"

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None

        try:
            raw = self.redis_client.get(key)
        except Exception as e:
            logger.error(f"Stats cache read failed for {key}: {str(e)}")
            return None
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        if not self.enabled:
            return False

        try:
            return bool(self.redis_client.setex(key, ttl, json.dumps(value)))
        except Exception as e:
            logger.error(f"Stats cache write failed for {key}: {str(e)}")
            return False

    def invalidate_sequence_cache(self, sequence_id: str) -> int:
        """Drop every cached entry of one sequence; returns the number of keys removed."""
        if not self.enabled:
            return 0

        pattern = self.sequence_key(sequence_id, '*')
        try:
            keys = list(self.redis_client.scan_iter(match=pattern))
            deleted = self.redis_client.delete(*keys) if keys else 0
        except Exception as e:
            logger.error(f"Stats cache invalidation failed for sequence {sequence_id}: {str(e)}")
            return 0

        logger.debug(f"Invalidated {deleted} stats entries for sequence {sequence_id}")
        return deleted

    def get_cache_stats(self) -> Dict[str, Any]:
        """Connection state and a few Redis server figures."""
        if not self.enabled:
            return {"connected": False}

        try:
            info = self.redis_client.info()
        except Exception as e:
            logger.error(f"Could not read Redis info: {str(e)}")
            return {"connected": False, "error": str(e)}

        return {
            "connected": True,
            "total_keys": info.get('db0', {}).get('keys', 0),
            "memory_usage": info.get('used_memory_human', 'N/A'),
            "uptime": info.get('uptime_in_seconds', 0)
        }


def get_cache_service() -> CacheService:
    """The current app's stats cache, created on first use; disabled outside an app context."""
    try:
        app = current_app._get_current_object()
    except RuntimeError:
        return CacheService(None)

    cache = app.extensions.get('stats_cache')
    if cache is None:
        cache = CacheService(app.config.get('REDIS_URL'))
        app.extensions['stats_cache'] = cache
    return cache
