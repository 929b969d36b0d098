"""
Tests for the geographic boundary evaluator.
"""
import uuid

import pytest

from apps.rbac.boundary import (
    BOUNDARY_RULES, BoundaryRule, assignment_region_id, assignment_team_id,
    is_in_boundary, validate_resource,
)
from apps.rbac.exceptions import BoundaryEvaluationError
from apps.rbac.types import (
    GeographicScope, Reason, ResourceContext, ScopeType, StoredAssignment,
    SubjectContext, SyntheticAssignment,
)

TEAM_A = uuid.uuid4()
TEAM_B = uuid.uuid4()
REGION_NORTH = uuid.uuid4()
REGION_SOUTH = uuid.uuid4()


def make_subject(**kwargs):
    fields = {'id': uuid.uuid4(), 'home_team_id': TEAM_A, 'home_region_id': REGION_NORTH}
    fields.update(kwargs)
    return SubjectContext(**fields)


def synthetic(role, scope_id=None):
    return SyntheticAssignment(
        role_name=role.name, scope_type=role.default_scope, scope_id=scope_id, level=role.level
    )


def stored(role, scope_type, scope_id):
    return StoredAssignment(
        assignment_id=uuid.uuid4(), role_name=role.name, scope_type=scope_type, scope_id=scope_id, level=role.level
    )


def local(team_id=TEAM_A):
    return ResourceContext('projects', GeographicScope.LOCAL, uuid.uuid4(), team_id=team_id, region_id=REGION_NORTH)


def regional(region_id=REGION_NORTH):
    return ResourceContext('projects', GeographicScope.REGIONAL, uuid.uuid4(), region_id=region_id)


def national():
    return ResourceContext('projects', GeographicScope.NATIONAL, uuid.uuid4())


class TestBoundaryRules:
    """Rules in order: privileged, local, regional, national, catch-all."""

    def test_rule_order(self):
        assert [rule.rule_id for rule in BOUNDARY_RULES] == [
            'privileged_role',
            'local_team_match',
            'regional_region_match',
            'national_scope_restricted',
            'outside_boundary',
        ]

    def test_national_role_reaches_everything(self, registry):
        role = registry.get('AUDITOR')
        subject = make_subject()

        for resource in (local(TEAM_B), regional(REGION_SOUTH), national()):
            result = is_in_boundary(subject, resource, role, synthetic(role))
            assert result.satisfied is True
            assert result.rule_id == 'privileged_role'
            assert result.cross_boundary_access is True

    def test_wildcard_role_is_privileged(self, registry):
        role = registry.get('SYSTEM_ADMIN')

        result = is_in_boundary(make_subject(), national(), role, synthetic(role))

        assert result.satisfied is True
        assert result.cross_boundary_access is True

    def test_privileged_role_tagged_even_inside_boundary(self, registry):
        role = registry.get('NATIONAL_SUPPORT_ADMIN')

        result = is_in_boundary(make_subject(), local(TEAM_A), role, synthetic(role))

        assert result.cross_boundary_access is True

    def test_local_team_match(self, registry):
        role = registry.get('FIELD_SUPERVISOR')

        result = is_in_boundary(make_subject(), local(TEAM_A), role, synthetic(role, TEAM_A))

        assert result.satisfied is True
        assert result.rule_id == 'local_team_match'
        assert result.cross_boundary_access is False
        assert result.reason is None

    def test_local_other_team(self, registry):
        role = registry.get('FIELD_SUPERVISOR')

        result = is_in_boundary(make_subject(), local(TEAM_B), role, synthetic(role, TEAM_A))

        assert result.satisfied is False
        assert result.rule_id == 'outside_boundary'
        assert result.reason == Reason.BOUNDARY_VIOLATION

    def test_team_assignment_reaches_its_own_team_only(self, registry):
        """A team-scoped assignment uses its scope, not the subject's home team."""
        role = registry.get('FIELD_SUPERVISOR')
        assignment = stored(role, ScopeType.TEAM, TEAM_B)

        assert is_in_boundary(make_subject(), local(TEAM_B), role, assignment).satisfied is True
        assert is_in_boundary(make_subject(), local(TEAM_A), role, assignment).satisfied is False

    def test_region_assignment_reaches_home_team(self, registry):
        role = registry.get('REGIONAL_MANAGER')
        assignment = stored(role, ScopeType.REGION, REGION_SOUTH)

        result = is_in_boundary(make_subject(), local(TEAM_A), role, assignment)

        assert result.rule_id == 'local_team_match'

    def test_regional_region_match(self, registry):
        role = registry.get('REGIONAL_MANAGER')

        result = is_in_boundary(make_subject(), regional(REGION_NORTH), role, synthetic(role, REGION_NORTH))

        assert result.satisfied is True
        assert result.rule_id == 'regional_region_match'

    def test_regional_other_region(self, registry):
        role = registry.get('REGIONAL_MANAGER')

        result = is_in_boundary(make_subject(), regional(REGION_SOUTH), role, synthetic(role, REGION_NORTH))

        assert result.satisfied is False
        assert result.rule_id == 'outside_boundary'

    def test_region_assignment_overrides_home_region(self, registry):
        role = registry.get('REGIONAL_MANAGER')
        assignment = stored(role, ScopeType.REGION, REGION_SOUTH)

        assert is_in_boundary(make_subject(), regional(REGION_SOUTH), role, assignment).satisfied is True
        assert is_in_boundary(make_subject(), regional(REGION_NORTH), role, assignment).satisfied is False

    def test_national_resource_restricted(self, registry):
        role = registry.get('REGIONAL_MANAGER')

        result = is_in_boundary(make_subject(), national(), role, synthetic(role, REGION_NORTH))

        assert result.satisfied is False
        assert result.rule_id == 'national_scope_restricted'

    def test_subject_without_home_team(self, registry):
        role = registry.get('SUPPORT_AGENT')
        subject = make_subject(home_team_id=None)

        result = is_in_boundary(subject, local(TEAM_A), role, synthetic(role, uuid.uuid4()))

        assert result.satisfied is False


class TestAssignmentReach:

    def test_team_and_region_of_assignment(self, registry):
        subject = make_subject()
        role = registry.get('SUPPORT_AGENT')
        assignment = stored(role, ScopeType.ORGANIZATION, uuid.uuid4())

        assert assignment_team_id(subject, assignment) == TEAM_A
        assert assignment_region_id(subject, assignment) == REGION_NORTH

        team_assignment = stored(role, ScopeType.TEAM, TEAM_B)
        assert assignment_team_id(subject, team_assignment) == TEAM_B
        assert assignment_region_id(subject, team_assignment) == REGION_NORTH


class TestResourceValidation:

    def test_valid_scopes(self):
        assert validate_resource(local()) == GeographicScope.LOCAL
        assert validate_resource(regional()) == GeographicScope.REGIONAL
        assert validate_resource(national()) == GeographicScope.NATIONAL

    def test_plain_string_scope(self):
        resource = ResourceContext('projects', 'national')
        assert validate_resource(resource) == GeographicScope.NATIONAL

    def test_unknown_scope(self):
        with pytest.raises(BoundaryEvaluationError):
            validate_resource(ResourceContext('projects', 'galactic'))

    def test_missing_scope(self):
        with pytest.raises(BoundaryEvaluationError):
            validate_resource(ResourceContext('projects', None))

    def test_local_without_team(self):
        with pytest.raises(BoundaryEvaluationError):
            validate_resource(ResourceContext('projects', 'local', region_id=REGION_NORTH))

    def test_regional_without_region(self):
        with pytest.raises(BoundaryEvaluationError):
            validate_resource(ResourceContext('projects', 'regional', team_id=TEAM_A))

    def test_is_in_boundary_validates(self, registry):
        role = registry.get('SYSTEM_ADMIN')
        with pytest.raises(BoundaryEvaluationError):
            is_in_boundary(make_subject(), ResourceContext('projects', 'local'), role, synthetic(role))


class TestCustomRules:

    def test_custom_rule_table(self, registry):
        role = registry.get('SYSTEM_ADMIN')
        rules = (BoundaryRule('frozen', lambda *args: True, satisfied=False),)

        result = is_in_boundary(make_subject(), national(), role, synthetic(role), rules=rules)

        assert result.satisfied is False
        assert result.rule_id == 'frozen'

    def test_rule_table_without_match(self, registry):
        role = registry.get('SYSTEM_ADMIN')
        rules = (BoundaryRule('never', lambda *args: False, satisfied=True),)

        with pytest.raises(BoundaryEvaluationError):
            is_in_boundary(make_subject(), national(), role, synthetic(role), rules=rules)
