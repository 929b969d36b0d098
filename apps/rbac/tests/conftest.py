"""
Shared fixtures for authorization engine tests.
"""
import dataclasses
import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.rbac import services
from apps.rbac.cache import PermissionCache
from apps.rbac.registry import RoleRegistry
from apps.rbac.services import AuthorizationService
from apps.rbac.types import ResourceContext, as_uuid


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or timezone.now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class InMemoryPermissionCache(PermissionCache):
    """
    PermissionCache kept in a dict. Entries expire against the test clock and
    every invalidation is recorded in `invalidations`. The write token is a
    counter bumped by every invalidation.
    """

    def __init__(self, clock, ttl=60):
        self.clock = clock
        self.ttl = ttl
        self.entries = {}
        self.invalidations = []
        self.gets = 0
        self.puts = 0
        self.version = 0

    def lookup(self, key):
        self.gets += 1
        entry = self.entries.get(key)
        if entry is None:
            return None, self.version
        decision, expires_at = entry
        if self.clock() >= expires_at:
            del self.entries[key]
            return None, self.version
        return dataclasses.replace(decision, cache_hit=True), self.version

    def put(self, key, decision, ttl=None, token=None):
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0 or (token is not None and token != self.version):
            return
        self.puts += 1
        self.entries[key] = (
            dataclasses.replace(decision, cache_hit=False, trace=()),
            self.clock() + timedelta(seconds=ttl),
        )

    def invalidate_subject(self, subject_id):
        self.invalidations.append(('subject', subject_id))
        self.version += 1
        self.entries = {
            key: entry for key, entry in self.entries.items()
            if key.subject_id != as_uuid(subject_id)
        }

    def invalidate_resource(self, resource_type, resource_id=None):
        self.invalidations.append(('resource', resource_type, resource_id))
        self.version += 1
        self.entries = {
            key: entry for key, entry in self.entries.items()
            if key.resource_type != resource_type
            or (resource_id is not None and key.resource_id != as_uuid(resource_id))
        }

    def invalidate_all(self):
        self.invalidations.append(('all',))
        self.version += 1
        self.entries = {}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def permission_cache(clock):
    return InMemoryPermissionCache(clock)


@pytest.fixture
def registry():
    """Registry of the built-in roles."""
    return RoleRegistry.from_definitions()


@pytest.fixture
def service(clock, permission_cache, registry, monkeypatch):
    """
    Authorization service on the fake clock and cache, installed as the
    process-wide service so signal-driven invalidations reach the same cache.
    """
    authorization_service = AuthorizationService(registry=registry, cache=permission_cache, clock=clock)
    monkeypatch.setattr(services, '_service', authorization_service)
    return authorization_service


@pytest.fixture
def team_a():
    return uuid.uuid4()


@pytest.fixture
def team_b():
    return uuid.uuid4()


@pytest.fixture
def region_north():
    return uuid.uuid4()


@pytest.fixture
def region_south():
    return uuid.uuid4()


@pytest.fixture
def organization():
    return uuid.uuid4()


@pytest.fixture
def make_subject(db, team_a, region_north, organization):
    """Factory for subjects homed in team A / region north."""
    from apps.rbac.models import Subject

    def _make(primary_role='TEAM_MEMBER', **kwargs):
        fields = {
            'display_name': f'{primary_role or "no role"} subject',
            'primary_role': primary_role or '',
            'home_team_id': team_a,
            'home_region_id': region_north,
            'home_organization_id': organization,
        }
        fields.update(kwargs)
        return Subject.objects.create(**fields)

    return _make


@pytest.fixture
def make_resource(team_a, region_north, organization):
    """Factory for resource contexts; defaults to a local project in team A."""

    def _make(geographic_scope='local', resource_type='projects', **overrides):
        fields = {
            'resource_id': uuid.uuid4(),
            'team_id': team_a,
            'region_id': region_north,
            'organization_id': organization,
        }
        fields.update(overrides)
        return ResourceContext(resource_type=resource_type, geographic_scope=geographic_scope, **fields)

    return _make
