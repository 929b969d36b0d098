"""
Audit logger for authorization decisions.

Every decision is written as one AuditLog row. A failed write never changes
the decision: the record goes to the fallback log channel instead and a
critical security event is raised.
"""
import logging
from typing import Iterable, Optional

from django.db import transaction

from apps.core.logging import SecurityLogger
from apps.core.sentry_utils import capture_exception
from apps.rbac.types import Decision, Reason, ResourceContext, TraceStep, as_uuid

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger('apps.rbac.audit.fallback')


def _loggable(record):
    """Audit record with UUIDs and datetimes rendered as strings."""
    return {
        key: value if value is None or isinstance(value, (bool, int, str, list, dict)) else str(value)
        for key, value in record.items()
    }


class AuditLogger:
    """Writes append-only decision records."""

    def record(
        self,
        subject_id,
        action: str,
        resource: ResourceContext,
        decision: Decision,
        error_detail: Optional[str] = None,
        trace: Optional[Iterable[TraceStep]] = None,
    ):
        """
        Record a decision.

        Returns:
            The AuditLog row, or None if the write failed
        """
        from apps.rbac.models import AuditLog

        context = resource.to_dict()
        subject_uuid = as_uuid(subject_id)
        if subject_uuid is None and subject_id is not None:
            context['subject_ref'] = str(subject_id)

        record = {
            'subject_id': subject_uuid,
            'action': action,
            'resource_type': resource.resource_type,
            'resource_id': as_uuid(resource.resource_id),
            'resource_scope': context['geographic_scope'] or '',
            'resource_context': context,
            'allowed': decision.allowed,
            'reason': decision.reason.value,
            'matched_rule': decision.matched_rule or '',
            'role': decision.role or '',
            'cross_boundary_access': decision.cross_boundary_access,
            'cache_hit': decision.cache_hit,
            'evaluated_at': decision.evaluated_at,
            'error_detail': error_detail or '',
            'trace': [step.to_dict() for step in (trace or ())],
        }

        try:
            with transaction.atomic():
                entry = AuditLog.objects.create(**record)
        except Exception as e:
            self._write_fallback(record, e)
            return None

        # The row is written; a logging failure must not turn it into an error
        try:
            self._log_security_events(subject_id, action, resource, decision)
        except Exception as e:
            logger.error(f"Security event logging failed: {str(e)}", exc_info=True)
        return entry

    def _write_fallback(self, record, error):
        try:
            fallback_logger.error(
                "Authorization decision could not be written to the audit log",
                exc_info=True,
                extra={'audit_record': _loggable(record)}
            )
            SecurityLogger.log_audit_write_failed(
                subject_id=record['subject_id'] or record['resource_context'].get('subject_ref'),
                action=record['action'],
                error=str(error),
            )
            capture_exception(error, audit={
                'subject_id': str(record['subject_id']),
                'action': record['action'],
                'resource_type': record['resource_type'],
                'allowed': record['allowed'],
                'reason': record['reason'],
            })
        except Exception as e:
            logger.error(f"Audit fallback failed: {str(e)}", exc_info=True)

    def _log_security_events(self, subject_id, action, resource, decision):
        scope = resource.to_dict()['geographic_scope']
        if decision.allowed and decision.cross_boundary_access:
            SecurityLogger.log_cross_boundary_access(
                subject_id=subject_id,
                action=action,
                resource_type=resource.resource_type,
                resource_id=resource.resource_id,
                geographic_scope=scope,
                role=decision.role,
            )
        elif decision.reason == Reason.BOUNDARY_VIOLATION:
            SecurityLogger.log_boundary_violation(
                subject_id=subject_id,
                action=action,
                resource_type=resource.resource_type,
                resource_id=resource.resource_id,
                geographic_scope=scope,
                matched_rule=decision.matched_rule,
            )
