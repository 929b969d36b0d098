"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'rbac-tests',
        }
    }
    settings.SENTRY_DSN = None
    settings.RBAC_ROLE_SOURCE = 'builtin'
    settings.RBAC_CACHE_ENABLED = True
    settings.RBAC_DECISION_CACHE_TTL = 60
    settings.RBAC_AUDIT_TRACE = False
    django.setup()


@pytest.fixture(autouse=True)
def clear_cache():
    """Clear cache before and after each test."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_authorization_service():
    """Each test gets a freshly built process-wide service and role registry."""
    from apps.rbac.services import reset_authorization_service as reset
    reset()
    yield
    reset()
