"""
Cache manager backed by Redis when configured, with an in-process TTL cache.
Falls back to the in-process cache when Redis is unset or unreachable.
"""

import json
import logging
import pickle
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import redis

from bookfinder.config import settings

logger = logging.getLogger(__name__)

MAX_MEMORY_ENTRIES = 1000


class CacheManager:
    """TTL cache with Redis as the shared tier and process memory as the local tier."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_client: Optional[redis.Redis] = None
        self.memory_cache: Dict[str, tuple] = {}
        self.memory_cache_lock = threading.RLock()
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
            'redis_hits': 0,
            'memory_hits': 0
        }

        self._init_redis(redis_url or settings.redis_url)

    def _init_redis(self, redis_url: Optional[str]):
        """Connect to Redis if a URL is configured."""
        if not redis_url:
            logger.info("REDIS_URL not set, using in-memory cache only")
            return

        try:
            self.redis_client = redis.from_url(
                redis_url,
                decode_responses=False,  # values are encoded by _serialize_value
                socket_connect_timeout=1,
                socket_timeout=1,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.redis_client.ping()
            logger.info("Redis cache initialised")
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable: {e}. Using in-memory cache only.")
            self.redis_client = None

    def _make_key(self, key: str) -> str:
        """Prefix keys so they do not clash with other Redis users."""
        return f"bookfinder_cache:{key}"

    def _serialize_value(self, value: Any) -> bytes:
        """Serialize a value for Redis."""
        try:
            # JSON for plain values, pickle for anything holding bytes
            json_str = json.dumps(value, ensure_ascii=False)
            return b'j:' + json_str.encode('utf-8')
        except (TypeError, ValueError):
            return b'p:' + pickle.dumps(value)

    def _deserialize_value(self, data: bytes) -> Any:
        """Deserialize a value read from Redis."""
        if data.startswith(b'j:'):
            return json.loads(data[2:].decode('utf-8'))
        return pickle.loads(data[2:])

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        cache_key = self._make_key(key)

        if self.redis_client:
            try:
                data = self.redis_client.get(cache_key)
                if data is not None:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['redis_hits'] += 1
                    return self._deserialize_value(data)
            except redis.RedisError as e:
                logger.warning(f"Redis get error: {e}")

        with self.memory_cache_lock:
            cache_entry = self.memory_cache.get(key)
            if cache_entry:
                value, expires_at = cache_entry
                if datetime.now() < expires_at:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['memory_hits'] += 1
                    return value
                # Expired
                del self.memory_cache[key]

        self.cache_stats['misses'] += 1
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        """Store a value for ttl_seconds."""
        if self.redis_client:
            try:
                self.redis_client.setex(self._make_key(key), ttl_seconds, self._serialize_value(value))
            except redis.RedisError as e:
                logger.warning(f"Redis set error: {e}")

        # Always keep a local copy as well
        with self.memory_cache_lock:
            expires_at = datetime.now() + timedelta(seconds=ttl_seconds)
            self.memory_cache[key] = (value, expires_at)

            if len(self.memory_cache) > MAX_MEMORY_ENTRIES:
                # Drop the 10% closest to expiry
                sorted_items = sorted(self.memory_cache.items(), key=lambda x: x[1][1])
                for k, _ in sorted_items[:MAX_MEMORY_ENTRIES // 10]:
                    self.memory_cache.pop(k, None)

    def get_stats(self) -> Dict[str, Any]:
        """Hit/miss counters and backend availability."""
        stats = self.cache_stats.copy()
        stats['redis_available'] = self.redis_client is not None
        stats['memory_cache_size'] = len(self.memory_cache)
        lookups = stats['hits'] + stats['misses']
        stats['hit_ratio'] = stats['hits'] / lookups if lookups else 0.0
        return stats
