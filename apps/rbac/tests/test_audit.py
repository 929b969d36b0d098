"""
Tests for decision audit records.
"""
import logging
import uuid
from unittest import mock

import pytest
from django.db import DatabaseError
from django.utils import timezone

from apps.rbac.audit import AuditLogger
from apps.rbac.exceptions import AuditLogImmutableError
from apps.rbac.models import AuditLog
from apps.rbac.types import Decision, Reason, TraceStep


def make_decision(allowed=True, reason=Reason.ROLE_PERMISSION, **kwargs):
    return Decision(allowed=allowed, reason=reason, evaluated_at=timezone.now(), **kwargs)


@pytest.fixture
def audit_logger():
    return AuditLogger()


@pytest.mark.django_db
class TestAuditRecords:
    """One row per decision."""

    def test_record_fields(self, audit_logger, make_resource):
        subject_id = uuid.uuid4()
        resource = make_resource('local')
        decision = make_decision(matched_rule='local_team_match', role='FIELD_SUPERVISOR')

        entry = audit_logger.record(subject_id, 'update', resource, decision)

        entry = AuditLog.objects.get(pk=entry.pk)
        assert entry.subject_id == subject_id
        assert entry.action == 'update'
        assert entry.resource_type == 'projects'
        assert entry.resource_id == resource.resource_id
        assert entry.resource_scope == 'local'
        assert entry.resource_context['team_id'] == str(resource.team_id)
        assert entry.allowed is True
        assert entry.reason == 'role_permission'
        assert entry.matched_rule == 'local_team_match'
        assert entry.role == 'FIELD_SUPERVISOR'
        assert entry.cross_boundary_access is False
        assert entry.cache_hit is False
        assert entry.evaluated_at == decision.evaluated_at
        assert entry.error_detail == ''
        assert entry.trace == []

    def test_record_error_detail_and_trace(self, audit_logger, make_resource):
        decision = make_decision(False, Reason.AUTHORIZATION_ERROR)
        trace = [TraceStep('error', 'deny', detail='UnknownRoleError: boom')]

        entry = audit_logger.record(uuid.uuid4(), 'read', make_resource('national'), decision,
                                    error_detail='UnknownRoleError: boom', trace=trace)

        assert entry.error_detail == 'UnknownRoleError: boom'
        assert entry.trace == [{
            'step': 'error', 'outcome': 'deny', 'role': None, 'rule_id': None,
            'detail': 'UnknownRoleError: boom',
        }]

    def test_unparseable_subject_kept_in_context(self, audit_logger, make_resource):
        entry = audit_logger.record('legacy-42', 'read', make_resource('local'), make_decision(False))

        assert entry.subject_id is None
        assert entry.resource_context['subject_ref'] == 'legacy-42'

    def test_queryset_helpers(self, audit_logger, make_resource):
        subject_id = uuid.uuid4()
        resource = make_resource('local')
        audit_logger.record(subject_id, 'read', resource, make_decision(cross_boundary_access=True))
        audit_logger.record(subject_id, 'delete', resource, make_decision(False, Reason.BOUNDARY_VIOLATION))
        audit_logger.record(uuid.uuid4(), 'read', make_resource('national'), make_decision(False))

        assert AuditLog.objects.for_subject(subject_id).count() == 2
        assert AuditLog.objects.for_resource('projects', resource.resource_id).count() == 2
        assert AuditLog.objects.for_resource('projects').count() == 3
        assert AuditLog.objects.denials().count() == 2
        assert AuditLog.objects.by_reason(Reason.BOUNDARY_VIOLATION).count() == 1
        assert AuditLog.objects.by_reason('no_matching_grant').count() == 1
        assert AuditLog.objects.cross_boundary().count() == 1
        assert AuditLog.objects.recent(days=1).count() == 3


@pytest.mark.django_db
class TestAppendOnly:
    """Audit rows cannot be changed or removed."""

    def test_save_existing_refused(self, audit_logger, make_resource):
        entry = audit_logger.record(uuid.uuid4(), 'read', make_resource('local'), make_decision())
        entry.allowed = False

        with pytest.raises(AuditLogImmutableError):
            entry.save()

        assert AuditLog.objects.get(pk=entry.pk).allowed is True

    def test_delete_refused(self, audit_logger, make_resource):
        entry = audit_logger.record(uuid.uuid4(), 'read', make_resource('local'), make_decision())

        with pytest.raises(AuditLogImmutableError):
            entry.delete()
        with pytest.raises(AuditLogImmutableError):
            entry.hard_delete()

        assert AuditLog.objects.filter(pk=entry.pk).exists()

    def test_bulk_changes_refused(self, audit_logger, make_resource):
        audit_logger.record(uuid.uuid4(), 'read', make_resource('local'), make_decision())

        with pytest.raises(AuditLogImmutableError):
            AuditLog.objects.all().update(allowed=False)
        with pytest.raises(AuditLogImmutableError):
            AuditLog.objects.all().delete()
        with pytest.raises(AuditLogImmutableError):
            AuditLog.objects.all().hard_delete()
        with pytest.raises(AuditLogImmutableError):
            AuditLog.objects_with_deleted.update(allowed=False)

        assert AuditLog.objects.count() == 1


@pytest.mark.django_db
class TestWriteFailures:
    """A failed audit write never changes the decision."""

    def test_falls_back_to_log_channel(self, audit_logger, make_resource, caplog):
        subject_id = uuid.uuid4()

        with mock.patch.object(AuditLog.objects, 'create', side_effect=DatabaseError('disk full')), \
                mock.patch('apps.rbac.audit.SecurityLogger') as security_logger, \
                mock.patch('apps.rbac.audit.capture_exception') as capture, \
                caplog.at_level(logging.ERROR, logger='apps.rbac.audit.fallback'):
            result = audit_logger.record(subject_id, 'update', make_resource('local'), make_decision())

        assert result is None
        records = [r for r in caplog.records if r.name == 'apps.rbac.audit.fallback']
        assert len(records) == 1
        assert records[0].audit_record['subject_id'] == str(subject_id)
        assert records[0].audit_record['reason'] == 'role_permission'
        security_logger.log_audit_write_failed.assert_called_once()
        assert security_logger.log_audit_write_failed.call_args[1]['error'] == 'disk full'
        capture.assert_called_once()

    def test_fallback_failure_does_not_raise(self, audit_logger, make_resource):
        with mock.patch.object(AuditLog.objects, 'create', side_effect=DatabaseError('disk full')), \
                mock.patch('apps.rbac.audit.SecurityLogger') as security_logger, \
                mock.patch('apps.rbac.audit.capture_exception'):
            security_logger.log_audit_write_failed.side_effect = RuntimeError('log handler down')
            result = audit_logger.record(uuid.uuid4(), 'update', make_resource('local'), make_decision())

        assert result is None

    def test_security_event_failure_keeps_entry(self, audit_logger, make_resource):
        decision = make_decision(cross_boundary_access=True, role='SYSTEM_ADMIN')

        with mock.patch('apps.rbac.audit.SecurityLogger') as security_logger:
            security_logger.log_cross_boundary_access.side_effect = RuntimeError('log handler down')
            entry = audit_logger.record(uuid.uuid4(), 'delete', make_resource('national'), decision)

        assert entry is not None
        assert AuditLog.objects.filter(pk=entry.pk).exists()

    def test_service_decision_survives_audit_failure(self, service, make_subject, make_resource):
        subject = make_subject('FIELD_SUPERVISOR')

        with mock.patch.object(AuditLog.objects, 'create', side_effect=DatabaseError('disk full')):
            decision = service.authorize(subject.id, 'update', make_resource('local'))

        assert decision.allowed is True
        assert AuditLog.objects.count() == 0


@pytest.mark.django_db
class TestSecurityEvents:

    def test_cross_boundary_access_logged(self, audit_logger, make_resource):
        decision = make_decision(cross_boundary_access=True, role='SYSTEM_ADMIN')

        with mock.patch('apps.rbac.audit.SecurityLogger') as security_logger:
            audit_logger.record(uuid.uuid4(), 'delete', make_resource('national'), decision)

        security_logger.log_cross_boundary_access.assert_called_once()
        kwargs = security_logger.log_cross_boundary_access.call_args[1]
        assert kwargs['role'] == 'SYSTEM_ADMIN'
        assert kwargs['geographic_scope'] == 'national'

    def test_boundary_violation_logged(self, audit_logger, make_resource):
        decision = make_decision(False, Reason.BOUNDARY_VIOLATION, matched_rule='national_scope_restricted')

        with mock.patch('apps.rbac.audit.SecurityLogger') as security_logger:
            audit_logger.record(uuid.uuid4(), 'update', make_resource('national'), decision)

        security_logger.log_boundary_violation.assert_called_once()
        assert security_logger.log_boundary_violation.call_args[1]['matched_rule'] == 'national_scope_restricted'

    def test_ordinary_decision_not_logged(self, audit_logger, make_resource):
        with mock.patch('apps.rbac.audit.SecurityLogger') as security_logger:
            audit_logger.record(uuid.uuid4(), 'read', make_resource('local'), make_decision())
            audit_logger.record(uuid.uuid4(), 'read', make_resource('local'), make_decision(False))

        security_logger.log_cross_boundary_access.assert_not_called()
        security_logger.log_boundary_violation.assert_not_called()
