"""
Decision cache.

Entries are keyed by subject, resource type, scope discriminator and action,
plus four generation tokens: global, subject, resource class and resource
instance. Invalidation replaces a token with a fresh random value, which makes
every entry built on the old token unreachable at once; entries then age out
through their TTL. A token that has been evicted is recreated with a fresh
value, so eviction can only ever cause misses. Ids are formatted as UUIDs on
both sides, so the key a decision is stored under and the key a revocation
bumps never differ in spelling.
"""
import dataclasses
import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from apps.core.cache import CacheKeys, CacheService, CacheTTL
from apps.rbac import conf
from apps.rbac.exceptions import CacheInvalidationError
from apps.rbac.types import Decision, DecisionCacheKey, as_uuid

logger = logging.getLogger(__name__)

NO_INSTANCE = '-'


class PermissionCache(ABC):
    """
    Interface the authorization service uses to store decisions.

    `lookup` hands back a write token together with the cached decision. A
    decision evaluated after the lookup is stored with `put(..., token=...)`,
    which files it under the generations that were current before the
    database was read; an invalidation in between makes the write unreachable.
    """

    @abstractmethod
    def lookup(self, key: DecisionCacheKey) -> Tuple[Optional[Decision], Any]:
        """(cached decision marked as a cache hit or None, write token or None)."""

    def get(self, key: DecisionCacheKey) -> Optional[Decision]:
        return self.lookup(key)[0]

    @abstractmethod
    def put(self, key: DecisionCacheKey, decision: Decision, ttl: Optional[int] = None, token=None) -> None:
        pass

    @abstractmethod
    def invalidate_subject(self, subject_id) -> None:
        pass

    @abstractmethod
    def invalidate_resource(self, resource_type: str, resource_id=None) -> None:
        """Invalidate one resource instance, or the whole class when resource_id is None."""

    @abstractmethod
    def invalidate_all(self) -> None:
        pass


class NullPermissionCache(PermissionCache):
    """Cache that never stores anything; used when caching is disabled."""

    def lookup(self, key):
        return None, None

    def put(self, key, decision, ttl=None, token=None):
        return None

    def invalidate_subject(self, subject_id):
        return None

    def invalidate_resource(self, resource_type, resource_id=None):
        return None

    def invalidate_all(self):
        return None


class DjangoPermissionCache(PermissionCache):
    """
    PermissionCache backed by a Django cache alias.

    Read errors count as a miss and write errors are logged and ignored.
    Invalidation errors raise CacheInvalidationError.
    """

    def __init__(self, alias: Optional[str] = None, ttl: Optional[int] = None):
        self.alias = alias or conf.cache_alias()
        self.ttl = conf.decision_cache_ttl() if ttl is None else ttl
        self.cache = CacheService(self.alias)

    def _generation_keys(self, key: DecisionCacheKey) -> List[str]:
        return [
            CacheKeys.GENERATION_GLOBAL,
            CacheKeys.format(CacheKeys.GENERATION_SUBJECT, subject_id=key.subject_id),
            CacheKeys.format(CacheKeys.GENERATION_RESOURCE_CLASS, resource_type=key.resource_type),
            CacheKeys.format(
                CacheKeys.GENERATION_RESOURCE,
                resource_type=key.resource_type,
                resource_id=key.resource_id or NO_INSTANCE,
            ),
        ]

    def _generations(self, key: DecisionCacheKey) -> Optional[List[str]]:
        generation_keys = self._generation_keys(key)
        found = self.cache.get_many(generation_keys)
        if found is None:
            return None

        tokens = []
        for generation_key in generation_keys:
            token = found.get(generation_key)
            if token is None:
                token = uuid.uuid4().hex
                # Another process may have created it first; theirs wins.
                if not self.cache.add(generation_key, token, ttl=CacheTTL.FOREVER):
                    token = self.cache.get(generation_key)
                    if token is None:
                        return None
            tokens.append(token)
        return tokens

    def _entry_key(self, key: DecisionCacheKey) -> Optional[str]:
        generations = self._generations(key)
        if generations is None:
            return None
        material = '|'.join(generations + [
            key.resource_type,
            key.scope_key,
            key.action,
        ])
        digest = hashlib.sha256(material.encode('utf-8')).hexdigest()
        return CacheKeys.format(CacheKeys.DECISION, subject_id=key.subject_id, digest=digest)

    def lookup(self, key: DecisionCacheKey) -> Tuple[Optional[Decision], Optional[str]]:
        """
        Returns:
            (cached decision or None, entry key to store a fresh decision
            under, or None when the generations could not be read)
        """
        entry_key = self._entry_key(key)
        if entry_key is None:
            return None, None
        decision = self.cache.get(entry_key)
        if not isinstance(decision, Decision):
            return None, entry_key
        return dataclasses.replace(decision, cache_hit=True), entry_key

    def put(self, key: DecisionCacheKey, decision: Decision, ttl: Optional[int] = None, token=None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return
        entry_key = token or self._entry_key(key)
        if entry_key is None:
            return
        self.cache.set(entry_key, dataclasses.replace(decision, cache_hit=False, trace=()), ttl=ttl)

    def _bump(self, generation_key: str) -> None:
        try:
            self.cache.backend.set(generation_key, uuid.uuid4().hex, timeout=CacheTTL.FOREVER)
        except Exception as e:
            logger.error(
                f"Decision cache invalidation failed for {generation_key}: {str(e)}",
                exc_info=True
            )
            raise CacheInvalidationError(
                "Decision cache could not be invalidated", generation_key=generation_key
            ) from e
        logger.debug(f"Cache generation bumped: {generation_key}")

    def invalidate_subject(self, subject_id) -> None:
        subject_id = as_uuid(subject_id) or subject_id
        self._bump(CacheKeys.format(CacheKeys.GENERATION_SUBJECT, subject_id=subject_id))

    def invalidate_resource(self, resource_type: str, resource_id=None) -> None:
        if resource_id is None:
            self._bump(CacheKeys.format(CacheKeys.GENERATION_RESOURCE_CLASS, resource_type=resource_type))
        else:
            self._bump(CacheKeys.format(
                CacheKeys.GENERATION_RESOURCE,
                resource_type=resource_type,
                resource_id=as_uuid(resource_id) or resource_id,
            ))

    def invalidate_all(self) -> None:
        self._bump(CacheKeys.GENERATION_GLOBAL)


def build_permission_cache() -> PermissionCache:
    """Cache configured by RBAC_CACHE_ENABLED / RBAC_DECISION_CACHE_TTL."""
    if not conf.cache_enabled() or conf.decision_cache_ttl() <= 0:
        return NullPermissionCache()
    return DjangoPermissionCache()
