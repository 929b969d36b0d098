"""
Tests for RBAC models.
"""
import uuid
from datetime import timedelta

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.rbac.models import (
    ResourceAssignment, Role, RoleAssignment, RolePermission, Subject, TeamMembership,
)


@pytest.mark.django_db
class TestSubject:

    def test_to_context(self, make_subject, team_a, region_north, organization):
        subject = make_subject('FIELD_SUPERVISOR')

        context = subject.to_context()

        assert context.id == subject.id
        assert context.primary_role == 'FIELD_SUPERVISOR'
        assert context.home_team_id == team_a
        assert context.home_region_id == region_north
        assert context.home_organization_id == organization
        assert context.is_active is True

    def test_blank_primary_role(self, make_subject):
        assert make_subject(primary_role='').to_context().primary_role is None

    def test_soft_delete(self, make_subject):
        subject = make_subject('TEAM_MEMBER')

        subject.delete()

        assert not Subject.objects.filter(pk=subject.pk).exists()
        assert Subject.objects_with_deleted.filter(pk=subject.pk).exists()
        assert Subject.objects_with_deleted.get(pk=subject.pk).is_deleted is True

    def test_restore(self, make_subject):
        subject = make_subject('TEAM_MEMBER')
        subject.delete()

        subject.restore()

        assert Subject.objects.filter(pk=subject.pk).exists()

    def test_queryset_helpers(self, make_subject):
        make_subject('TEAM_MEMBER')
        make_subject('FIELD_SUPERVISOR')
        make_subject('FIELD_SUPERVISOR', is_active=False)

        assert Subject.objects.active().count() == 2
        assert Subject.objects.with_primary_role('FIELD_SUPERVISOR').count() == 2


@pytest.mark.django_db
class TestCurrentRows:
    """current() keeps active, unexpired rows."""

    def test_current_filter(self, make_subject, team_b):
        subject = make_subject('TEAM_MEMBER')
        now = timezone.now()
        keep = [
            TeamMembership.objects.create(subject=subject, team_id=team_b),
            TeamMembership.objects.create(subject=subject, team_id=uuid.uuid4(), expires_at=now + timedelta(hours=1)),
        ]
        TeamMembership.objects.create(subject=subject, team_id=uuid.uuid4(), is_active=False)
        TeamMembership.objects.create(subject=subject, team_id=uuid.uuid4(), expires_at=now - timedelta(hours=1))

        current = TeamMembership.objects.for_subject(subject.id).current(now)

        assert set(current) == set(keep)

    def test_role_assignment_is_current(self, make_subject):
        subject = make_subject('TEAM_MEMBER')
        now = timezone.now()
        assignment = RoleAssignment(subject=subject, role_name='AUDITOR', scope_type='global')

        assert assignment.is_current(now) is True
        assignment.expires_at = now
        assert assignment.is_current(now) is False
        assignment.expires_at = now + timedelta(seconds=1)
        assert assignment.is_current(now) is True
        assignment.is_active = False
        assert assignment.is_current(now) is False


@pytest.mark.django_db
class TestConstraints:
    """Invalid rows are refused by the database."""

    def test_global_assignment_has_no_scope_id(self, make_subject):
        subject = make_subject('TEAM_MEMBER')

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RoleAssignment.objects.create(
                    subject=subject, role_name='AUDITOR', scope_type='global', scope_id=uuid.uuid4()
                )

    def test_scoped_assignment_needs_scope_id(self, make_subject):
        subject = make_subject('TEAM_MEMBER')

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RoleAssignment.objects.create(subject=subject, role_name='FIELD_SUPERVISOR', scope_type='team')

    def test_resource_assignment_needs_subject_or_team(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ResourceAssignment.objects.create(
                    resource_type='projects', resource_id=uuid.uuid4(), granted_scope='read'
                )

    def test_resource_assignment_not_both(self, make_subject, team_a):
        subject = make_subject('TEAM_MEMBER')

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                ResourceAssignment.objects.create(
                    subject=subject, team_id=team_a, resource_type='projects', resource_id=uuid.uuid4(),
                    granted_scope='read',
                )

    def test_role_name_unique(self):
        Role.objects.create(name='SURVEYOR', hierarchy_level=1)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Role.objects.create(name='SURVEYOR', hierarchy_level=2)


@pytest.mark.django_db
class TestResourceAssignment:

    def test_direct_and_team(self, make_subject, team_a):
        subject = make_subject('TEAM_MEMBER')
        resource_id = uuid.uuid4()
        direct = ResourceAssignment.objects.create(
            subject=subject, resource_type='projects', resource_id=resource_id, granted_scope='read'
        )
        team = ResourceAssignment.objects.create(
            team_id=team_a, resource_type='projects', resource_id=resource_id, granted_scope='execute'
        )

        assert direct.is_direct is True
        assert team.is_direct is False
        assert set(ResourceAssignment.objects.for_resource('projects', resource_id)) == {direct, team}
        assert list(ResourceAssignment.objects.direct(subject.id)) == [direct]
        assert list(ResourceAssignment.objects.for_teams([team_a])) == [team]


@pytest.mark.django_db
class TestRolePermissions:

    def test_permission_strings(self):
        role = Role.objects.create(name='SURVEYOR', hierarchy_level=1)
        RolePermission.objects.grant_permission(role, 'surveys', 'read')
        RolePermission.objects.grant_permission(role, '*', '*')

        assert role.get_permissions() == frozenset({'surveys.read', '*'})

    def test_grant_is_idempotent(self):
        role = Role.objects.create(name='SURVEYOR', hierarchy_level=1)

        first, created = RolePermission.objects.grant_permission(role, 'surveys', 'read')
        second, created_again = RolePermission.objects.grant_permission(role, 'surveys', 'read')

        assert created is True
        assert created_again is False
        assert first.pk == second.pk

    def test_grant_restores_revoked_permission(self):
        role = Role.objects.create(name='SURVEYOR', hierarchy_level=1)
        original, _ = RolePermission.objects.grant_permission(role, 'surveys', 'read')
        RolePermission.objects.revoke_permission(role, 'surveys', 'read')
        assert role.get_permissions() == frozenset()

        restored, created = RolePermission.objects.grant_permission(role, 'surveys', 'read')

        assert created is True
        assert restored.pk == original.pk
        assert role.get_permissions() == frozenset({'surveys.read'})

    def test_role_queryset_helpers(self):
        Role.objects.create(name='SURVEYOR', hierarchy_level=1, is_system=True)
        Role.objects.create(name='RETIRED', hierarchy_level=1, is_active=False)

        assert Role.objects.by_name('SURVEYOR').name == 'SURVEYOR'
        assert Role.objects.by_name('MISSING') is None
        assert list(Role.objects.system_roles().values_list('name', flat=True)) == ['SURVEYOR']
        assert list(Role.objects.active().values_list('name', flat=True)) == ['SURVEYOR']
