"""
Authorization service: decides whether a subject may perform an action on a
resource.

Evaluation order for a request:

0. Decision cache.
1. Role assignments, most privileged first: the role's permission set must
   cover resource.action and the assignment must reach the resource's
   geographic boundary. A covered permission outside the boundary is
   remembered and evaluation continues.
2. Direct resource assignment of the subject to the resource instance.
3. Resource assignment of any of the subject's current teams.
4. Deny: boundary_violation if step 1 hit a boundary, no_matching_grant
   otherwise.

Resource assignments are not boundary checked. Any failure along the way
denies with reason authorization_error; nothing raises out of authorize() or
explain().
"""
import logging
import threading
from datetime import datetime
from typing import List, Optional, Tuple

from asgiref.sync import sync_to_async
from django.db import DatabaseError
from django.utils import timezone

from apps.core.logging import SecurityLogger
from apps.core.sentry_utils import add_breadcrumb, capture_exception
from apps.rbac import conf
from apps.rbac.audit import AuditLogger
from apps.rbac.boundary import is_in_boundary, validate_resource
from apps.rbac.cache import PermissionCache, build_permission_cache
from apps.rbac.exceptions import AssignmentResolutionError, AuthorizationError
from apps.rbac.registry import RoleRegistry, get_role_registry, permission_covers
from apps.rbac.resolver import AssignmentResolver
from apps.rbac.types import (
    Decision, DecisionCacheKey, GrantedScope, Reason, ResourceContext,
    SubjectContext, TraceStep,
)

logger = logging.getLogger(__name__)


class _Evaluation:
    """Mutable state of one evaluation; only the result leaves the service."""

    def __init__(self):
        self.trace: List[TraceStep] = []
        self.error_detail: Optional[str] = None
        # Expiry of the grant that allowed the request, if it has one
        self.valid_until: Optional[datetime] = None

    def step(self, step, outcome, role=None, rule_id=None, detail=None):
        self.trace.append(TraceStep(step=step, outcome=outcome, role=role, rule_id=rule_id, detail=detail))


def _earliest(*moments) -> Optional[datetime]:
    moments = [moment for moment in moments if moment is not None]
    return min(moments) if moments else None


class AuthorizationService:
    """
    Decision engine combining roles, boundaries and resource assignments.

    Collaborators are injected so tests and alternative hosts can supply their
    own registry, cache, audit logger and clock.
    """

    def __init__(
        self,
        registry: Optional[RoleRegistry] = None,
        resolver: Optional[AssignmentResolver] = None,
        cache: Optional[PermissionCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock=None,
    ):
        self.clock = clock or timezone.now
        self._registry = registry
        self.resolver = resolver or AssignmentResolver(registry=registry, clock=self.clock)
        self.cache = cache if cache is not None else build_permission_cache()
        self.audit_logger = audit_logger or AuditLogger()

    @property
    def registry(self) -> RoleRegistry:
        return self._registry or get_role_registry()

    def authorize(self, subject_id, action: str, resource: ResourceContext) -> Decision:
        """
        Decide whether `subject_id` may perform `action` on `resource`.

        Args:
            subject_id: Subject primary key
            action: Action name (e.g., 'update')
            resource: Resource context, including its geographic scope

        Returns:
            Decision (never raises)
        """
        key = DecisionCacheKey.for_request(subject_id, action, resource)

        cached, token = self._cache_lookup(key)
        if cached is not None:
            self.audit_logger.record(subject_id, action, resource, cached)
            return cached

        evaluation = _Evaluation()
        decision = self._evaluate(subject_id, action, resource, evaluation)

        # Stored under the generations read before evaluation, so a revocation
        # committed meanwhile leaves the entry unreachable
        if token is not None and decision.reason != Reason.AUTHORIZATION_ERROR:
            self._cache_put(key, decision, token, evaluation.valid_until)

        self.audit_logger.record(
            subject_id, action, resource, decision,
            error_detail=evaluation.error_detail,
            trace=evaluation.trace if conf.audit_trace() else None,
        )
        return decision

    def explain(self, subject_id, action: str, resource: ResourceContext) -> Decision:
        """
        Same algorithm as authorize(), bypassing the cache, with the full trace.
        """
        evaluation = _Evaluation()
        decision = self._evaluate(subject_id, action, resource, evaluation)
        decision = Decision(
            allowed=decision.allowed,
            reason=decision.reason,
            evaluated_at=decision.evaluated_at,
            matched_rule=decision.matched_rule,
            cross_boundary_access=decision.cross_boundary_access,
            role=decision.role,
            trace=tuple(evaluation.trace),
        )
        self.audit_logger.record(
            subject_id, action, resource, decision,
            error_detail=evaluation.error_detail,
            trace=decision.trace,
        )
        return decision

    async def aauthorize(self, subject_id, action: str, resource: ResourceContext) -> Decision:
        """authorize() for async callers; runs on the thread-sensitive executor."""
        return await sync_to_async(self.authorize, thread_sensitive=True)(subject_id, action, resource)

    def _cache_lookup(self, key: Optional[DecisionCacheKey]):
        if key is None:
            return None, None
        try:
            return self.cache.lookup(key)
        except Exception as e:
            logger.error(f"Decision cache read failed: {str(e)}", exc_info=True)
            return None, None

    def _cache_put(self, key: DecisionCacheKey, decision: Decision, token, valid_until: Optional[datetime] = None):
        ttl = None
        if valid_until is not None:
            # An allow must not outlive the grant behind it
            remaining = int((valid_until - self.clock()).total_seconds())
            ttl = min(conf.decision_cache_ttl(), remaining)
            if ttl <= 0:
                return
        try:
            self.cache.put(key, decision, ttl=ttl, token=token)
        except Exception as e:
            logger.error(f"Decision cache write failed: {str(e)}", exc_info=True)

    def _decision(self, allowed, reason, matched_rule=None, cross_boundary_access=False, role=None):
        return Decision(
            allowed=allowed,
            reason=reason,
            evaluated_at=self.clock(),
            matched_rule=matched_rule,
            cross_boundary_access=cross_boundary_access,
            role=role,
        )

    def _evaluate(self, subject_id, action, resource, evaluation: _Evaluation) -> Decision:
        try:
            return self._run_steps(subject_id, action, resource, evaluation)
        except AuthorizationError as e:
            detail = f"{e.__class__.__name__}: {e.message}"
            logger.warning(
                f"Authorization failed closed for subject {subject_id}: {detail}",
                extra={'subject_id': str(subject_id), 'action': action, 'resource_type': resource.resource_type}
            )
        except Exception as e:
            detail = f"{e.__class__.__name__}: {str(e)}"
            logger.error(
                f"Unexpected error authorizing subject {subject_id}: {detail}",
                exc_info=True,
                extra={'subject_id': str(subject_id), 'action': action, 'resource_type': resource.resource_type}
            )
            capture_exception(e, authorization={
                'subject_id': str(subject_id),
                'action': action,
                'resource_type': resource.resource_type,
            })

        evaluation.error_detail = detail
        evaluation.step('error', 'deny', detail=detail)
        SecurityLogger.log_event(
            'authorization_error',
            level='error',
            subject_id=str(subject_id),
            action=action,
            resource_type=resource.resource_type,
            error=detail,
        )
        return self._decision(False, Reason.AUTHORIZATION_ERROR)

    def _run_steps(self, subject_id, action, resource, evaluation: _Evaluation) -> Decision:
        validate_resource(resource)
        subject = self.resolver.load_subject(subject_id)

        if not subject.is_active:
            evaluation.step('subject', 'deny', detail='subject is inactive')
            return self._decision(False, Reason.SUBJECT_INACTIVE, matched_rule='subject_inactive')

        # Step 1: role assignments
        boundary_failure = None
        for assignment in self.resolver.resolve(subject.id, subject=subject):
            role = self.registry.get(assignment.role_name)
            if not permission_covers(role.permissions, resource.resource_type, action):
                evaluation.step(
                    'role_permission', 'not_covered', role=role.name,
                    detail=f"{assignment.source.value} {assignment.scope_type.value} assignment",
                )
                continue

            result = is_in_boundary(subject, resource, role, assignment)
            if result.satisfied:
                evaluation.step('role_permission', 'allow', role=role.name, rule_id=result.rule_id)
                evaluation.valid_until = assignment.expires_at
                return self._decision(
                    True, Reason.ROLE_PERMISSION,
                    matched_rule=result.rule_id,
                    cross_boundary_access=result.cross_boundary_access,
                    role=role.name,
                )

            evaluation.step('boundary', 'violation', role=role.name, rule_id=result.rule_id)
            if boundary_failure is None:
                boundary_failure = (role.name, result)

        # Steps 2 and 3: resource assignments on the instance
        if resource.resource_id is None:
            evaluation.step('resource_assignment', 'skipped', detail='no resource instance')
        else:
            granted = self._direct_grant(subject, action, resource)
            if granted is not None:
                scope, evaluation.valid_until = granted
                evaluation.step('direct_assignment', 'allow', detail=scope.value)
                return self._decision(True, Reason.DIRECT_ASSIGNMENT, matched_rule=f"direct_assignment:{scope.value}")
            evaluation.step('direct_assignment', 'not_granted')

            granted = self._team_grant(subject, action, resource)
            if granted is not None:
                scope, evaluation.valid_until = granted
                evaluation.step('team_assignment', 'allow', detail=scope.value)
                return self._decision(True, Reason.TEAM_ASSIGNMENT, matched_rule=f"team_assignment:{scope.value}")
            evaluation.step('team_assignment', 'not_granted')

        # Step 4: deny
        if boundary_failure is not None:
            role_name, result = boundary_failure
            evaluation.step('decision', 'deny', role=role_name, rule_id=result.rule_id)
            add_breadcrumb('authz', 'Boundary violation', level='warning', data={
                'subject_id': str(subject.id), 'action': action, 'rule': result.rule_id,
            })
            return self._decision(False, Reason.BOUNDARY_VIOLATION, matched_rule=result.rule_id, role=role_name)

        evaluation.step('decision', 'deny', detail='no matching grant')
        return self._decision(False, Reason.NO_MATCHING_GRANT)

    def _covering_grant(self, grants, action) -> Optional[Tuple[GrantedScope, Optional[datetime]]]:
        """
        Of the (granted_scope, valid_until) pairs that cover `action`, the
        longest-lived one, or None.
        """
        best = None
        for value, valid_until in grants:
            scope = GrantedScope(value)
            if not scope.covers(action):
                continue
            if best is None or (best[1] is not None and (valid_until is None or valid_until > best[1])):
                best = (scope, valid_until)
        return best

    def _direct_grant(self, subject: SubjectContext, action, resource):
        from apps.rbac.models import ResourceAssignment

        try:
            grants = list(
                ResourceAssignment.objects
                .for_resource(resource.resource_type, resource.resource_id)
                .direct(subject.id)
                .current(self.clock())
                .values_list('granted_scope', 'expires_at')
            )
        except DatabaseError as e:
            raise AssignmentResolutionError(
                "Direct resource assignments could not be read", subject_id=subject.id
            ) from e
        return self._covering_grant(grants, action)

    def _team_grant(self, subject: SubjectContext, action, resource):
        from apps.rbac.models import ResourceAssignment

        team_expiries = self.resolver.current_team_expiries(subject)
        if not team_expiries:
            return None
        try:
            rows = list(
                ResourceAssignment.objects
                .for_resource(resource.resource_type, resource.resource_id)
                .for_teams(list(team_expiries))
                .current(self.clock())
                .values_list('granted_scope', 'expires_at', 'team_id')
            )
        except DatabaseError as e:
            raise AssignmentResolutionError(
                "Team resource assignments could not be read", subject_id=subject.id
            ) from e
        # A team grant lasts only as long as the membership it flows through
        grants = [
            (scope, _earliest(expires_at, team_expiries.get(team_id)))
            for scope, expires_at, team_id in rows
        ]
        return self._covering_grant(grants, action)


_service = None
_service_lock = threading.Lock()


def get_authorization_service() -> AuthorizationService:
    """Process-wide service built from settings on first use."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = AuthorizationService()
    return _service


def reset_authorization_service():
    """Drop the process-wide service and role registry; the next call rebuilds them."""
    global _service
    from apps.rbac.registry import reset_role_registry

    with _service_lock:
        _service = None
    reset_role_registry()


def authorize(subject_id, action: str, resource: ResourceContext) -> Decision:
    return get_authorization_service().authorize(subject_id, action, resource)


def explain(subject_id, action: str, resource: ResourceContext) -> Decision:
    return get_authorization_service().explain(subject_id, action, resource)


async def aauthorize(subject_id, action: str, resource: ResourceContext) -> Decision:
    return await get_authorization_service().aauthorize(subject_id, action, resource)
