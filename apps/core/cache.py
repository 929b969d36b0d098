"""
Caching utilities for frequently accessed data.

Provides centralized cache management with consistent key naming, TTLs and
error handling. Cache failures on reads and writes are logged and degrade to
a miss; callers that need a failure to be visible use the backend directly.
"""
import logging
from typing import Any, Dict, Iterable, Optional
from django.core.cache import caches

logger = logging.getLogger(__name__)


class CacheKeys:
    """Centralized cache key definitions with consistent naming."""

    # Authorization decisions (TTL: RBAC_DECISION_CACHE_TTL)
    DECISION = "rbac:decision:{subject_id}:{digest}"

    # Invalidation generations (no TTL)
    GENERATION_GLOBAL = "rbac:gen:global"
    GENERATION_SUBJECT = "rbac:gen:subject:{subject_id}"
    GENERATION_RESOURCE_CLASS = "rbac:gen:resource:{resource_type}"
    GENERATION_RESOURCE = "rbac:gen:resource:{resource_type}:{resource_id}"

    @classmethod
    def format(cls, key_template: str, **kwargs) -> str:
        """Format a cache key with provided parameters."""
        return key_template.format(**kwargs)


class CacheTTL:
    """Cache TTL (Time To Live) constants in seconds."""

    RBAC_DECISION = 60  # 1 minute
    FOREVER = None


class CacheService:
    """Service for managing cached data with consistent patterns."""

    def __init__(self, alias: str = 'default'):
        self.alias = alias

    @property
    def backend(self):
        return caches[self.alias]

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Default value if key not found

        Returns:
            Cached value or default
        """
        try:
            value = self.backend.get(key, default)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
            else:
                logger.debug(f"Cache MISS: {key}")
            return value
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {str(e)}")
            return default

    def get_many(self, keys: Iterable[str]) -> Optional[Dict[str, Any]]:
        """
        Get several values in one round trip.

        Returns:
            Dict of found keys, or None if the backend failed
        """
        keys = list(keys)
        try:
            return self.backend.get_many(keys)
        except Exception as e:
            logger.error(f"Cache get_many error for keys {keys}: {str(e)}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (None means no expiry)

        Returns:
            True if successful, False otherwise
        """
        try:
            self.backend.set(key, value, timeout=ttl)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {str(e)}")
            return False

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value only if the key is absent.

        Returns:
            True if the value was stored, False if the key existed or on error
        """
        try:
            return bool(self.backend.add(key, value, timeout=ttl))
        except Exception as e:
            logger.error(f"Cache add error for key {key}: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        """
        Delete value from cache.

        Args:
            key: Cache key

        Returns:
            True if successful, False otherwise
        """
        try:
            self.backend.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {str(e)}")
            return False

    def clear(self) -> bool:
        try:
            self.backend.clear()
            return True
        except Exception as e:
            logger.error(f"Cache clear error: {str(e)}")
            return False
