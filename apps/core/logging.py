"""
Custom logging formatters for structured JSON logging, plus the security
event logger used by the authorization engine.
"""
import json
import logging
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'request_id', 'subject_id',
])


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and subject_id from extra fields if available.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if hasattr(record, 'subject_id'):
            log_data['subject_id'] = str(record.subject_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                json.dumps(value)  # Test if serializable
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized security event logging for authorization events.

    Logs security-related events with structured data and sends critical
    events to Sentry for alerting and monitoring.

    All security events are logged with:
    - Event type
    - Timestamp
    - Subject and resource information (if available)
    - Additional context
    """

    # Event types that also raise a Sentry alert
    CRITICAL_EVENTS = {
        'audit_write_failed',
        'authorization_error',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Args:
            event_type: Type of security event (e.g., 'boundary_violation')
            level: Log level ('info', 'warning', 'error', 'critical')
            **context: Additional context data (subject_id, resource_id, etc.)

        Example:
            >>> SecurityLogger.log_event(
            ...     'cross_boundary_access',
            ...     level='info',
            ...     subject_id='123',
            ...     resource_type='projects',
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
            )

    @staticmethod
    def log_boundary_violation(subject_id, action: str, resource_type: str,
                               resource_id=None, geographic_scope: str = None,
                               matched_rule: str = None):
        """
        Log a request that held a matching permission but was outside the
        subject's geographic boundary.
        """
        SecurityLogger.log_event(
            'boundary_violation',
            level='warning',
            subject_id=str(subject_id),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            geographic_scope=geographic_scope,
            matched_rule=matched_rule,
        )

    @staticmethod
    def log_cross_boundary_access(subject_id, action: str, resource_type: str,
                                  resource_id=None, geographic_scope: str = None,
                                  role: str = None):
        """
        Log an allow that bypassed locality checks through a privileged role.
        """
        SecurityLogger.log_event(
            'cross_boundary_access',
            level='info',
            subject_id=str(subject_id),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            geographic_scope=geographic_scope,
            role=role,
        )

    @staticmethod
    def log_audit_write_failed(subject_id, action: str, error: str):
        """
        Log that a decision could not be written to the audit table.

        This is critical: the decision itself was still returned, but the
        compliance trail now lives only in the fallback log channel.
        """
        SecurityLogger.log_event(
            'audit_write_failed',
            level='error',
            subject_id=str(subject_id),
            action=action,
            error=error,
        )
