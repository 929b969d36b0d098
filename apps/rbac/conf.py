"""
Authorization engine settings with their defaults.
"""
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.core.cache import CacheTTL

ROLE_SOURCE_BUILTIN = 'builtin'
ROLE_SOURCE_DATABASE = 'database'


def decision_cache_ttl() -> int:
    return int(getattr(settings, 'RBAC_DECISION_CACHE_TTL', CacheTTL.RBAC_DECISION))


def cache_alias() -> str:
    return getattr(settings, 'RBAC_CACHE_ALIAS', 'default')


def cache_enabled() -> bool:
    return bool(getattr(settings, 'RBAC_CACHE_ENABLED', True))


def audit_trace() -> bool:
    """Whether `authorize` stores the rule trace on audit rows too."""
    return bool(getattr(settings, 'RBAC_AUDIT_TRACE', False))


def role_source() -> str:
    source = getattr(settings, 'RBAC_ROLE_SOURCE', ROLE_SOURCE_BUILTIN)
    if source not in (ROLE_SOURCE_BUILTIN, ROLE_SOURCE_DATABASE):
        raise ImproperlyConfigured(
            f"RBAC_ROLE_SOURCE must be '{ROLE_SOURCE_BUILTIN}' or "
            f"'{ROLE_SOURCE_DATABASE}', got {source!r}"
        )
    return source
