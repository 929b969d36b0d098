"""
Assignment resolver: builds a subject's effective role assignments.

Stored RoleAssignment rows are merged with one synthetic assignment projected
from the subject's legacy primary role. Synthetic assignments exist only in
memory for the duration of a request.
"""
import logging
from typing import Dict, Iterable, List, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.utils import timezone

from apps.rbac.exceptions import AssignmentResolutionError
from apps.rbac.registry import RoleRegistry, get_role_registry
from apps.rbac.types import (
    AssignmentSource, EffectiveAssignment, ScopeType, StoredAssignment,
    SubjectContext, SyntheticAssignment,
)

logger = logging.getLogger(__name__)


def _sort_key(assignment: EffectiveAssignment):
    return (
        -assignment.level,
        0 if assignment.source == AssignmentSource.STORED else 1,
        assignment.scope_type.value,
        assignment.role_name,
        str(assignment.assignment_id or ''),
    )


class AssignmentResolver:
    """
    Read-only view of a subject's roles and team memberships.

    Any failure to read assignment data raises AssignmentResolutionError so
    the caller fails closed.
    """

    def __init__(self, registry: Optional[RoleRegistry] = None, clock=None):
        self._registry = registry
        self.clock = clock or timezone.now

    @property
    def registry(self) -> RoleRegistry:
        return self._registry or get_role_registry()

    def load_subject(self, subject_id) -> SubjectContext:
        from apps.rbac.models import Subject

        try:
            subject = Subject.objects.get(pk=subject_id)
        except Subject.DoesNotExist:
            raise AssignmentResolutionError(
                f"Subject {subject_id} does not exist", subject_id=subject_id
            ) from None
        except (ValueError, ValidationError) as e:
            raise AssignmentResolutionError(
                f"Invalid subject id {subject_id!r}", subject_id=subject_id
            ) from e
        except DatabaseError as e:
            logger.error(
                f"Failed to load subject {subject_id}: {str(e)}",
                exc_info=True,
                extra={'subject_id': str(subject_id)}
            )
            raise AssignmentResolutionError(
                "Subject could not be read", subject_id=subject_id
            ) from e
        return subject.to_context()

    def resolve(self, subject_id, subject: Optional[SubjectContext] = None) -> List[EffectiveAssignment]:
        """
        Effective assignments ordered by descending hierarchy level.

        Ties order stored before synthetic, then by scope type, role name and
        assignment id. Inactive subjects have no assignments.
        """
        from apps.rbac.models import RoleAssignment

        if subject is None:
            subject = self.load_subject(subject_id)
        if not subject.is_active:
            return []

        now = self.clock()
        try:
            rows = list(RoleAssignment.objects.for_subject(subject.id))
        except DatabaseError as e:
            logger.error(
                f"Failed to read role assignments for subject {subject.id}: {str(e)}",
                exc_info=True,
                extra={'subject_id': str(subject.id)}
            )
            raise AssignmentResolutionError(
                "Role assignments could not be read", subject_id=subject.id
            ) from e

        assignments: List[EffectiveAssignment] = []
        # Every stored row claims its scope, including revoked and expired
        # ones, so the primary role can never reinstate a revoked grant.
        claimed_scopes = set()
        for row in rows:
            claimed_scopes.add((row.scope_type, row.scope_id))
            if not row.is_current(now):
                continue
            assignments.append(StoredAssignment(
                assignment_id=row.id,
                role_name=row.role_name,
                scope_type=ScopeType(row.scope_type),
                scope_id=row.scope_id,
                level=self.registry.level_of(row.role_name),
                expires_at=row.expires_at,
            ))

        synthetic = self.project_primary_role(subject)
        if synthetic is not None:
            if (synthetic.scope_type.value, synthetic.scope_id) in claimed_scopes:
                logger.debug(
                    f"Primary role {synthetic.role_name} of subject {subject.id} "
                    f"shadowed by a stored assignment at {synthetic.scope_type.value}"
                )
            else:
                assignments.append(synthetic)

        return sorted(assignments, key=_sort_key)

    def project_primary_role(self, subject: SubjectContext) -> Optional[SyntheticAssignment]:
        """The read-time assignment derived from the subject's primary role."""
        if not subject.primary_role:
            return None

        role = self.registry.get(subject.primary_role)
        scope_ids = {
            ScopeType.TEAM: subject.home_team_id,
            ScopeType.REGION: subject.home_region_id,
            ScopeType.ORGANIZATION: subject.home_organization_id,
            ScopeType.GLOBAL: None,
        }
        return SyntheticAssignment(
            role_name=role.name,
            scope_type=role.default_scope,
            scope_id=scope_ids[role.default_scope],
            level=role.level,
        )

    def current_team_expiries(self, subject: SubjectContext) -> Dict:
        """
        Map of team id to the time the subject's membership ends (None when
        it does not end). The home team never ends; of several memberships in
        the same team the longest-lived one counts.
        """
        from apps.rbac.models import TeamMembership

        expiries = {}
        if subject.home_team_id:
            expiries[subject.home_team_id] = None
        try:
            memberships = TeamMembership.objects.for_subject(subject.id).current(self.clock())
            for team_id, expires_at in memberships.values_list('team_id', 'expires_at'):
                if team_id not in expiries:
                    expiries[team_id] = expires_at
                elif expiries[team_id] is not None and (expires_at is None or expires_at > expiries[team_id]):
                    expiries[team_id] = expires_at
        except DatabaseError as e:
            raise AssignmentResolutionError(
                "Team memberships could not be read", subject_id=subject.id
            ) from e
        return expiries

    def current_team_ids(self, subject: SubjectContext) -> List:
        """Home team plus every active, unexpired team membership."""
        return list(self.current_team_expiries(subject))

    def highest_role_level(self, subject_id) -> int:
        """Hierarchy level of the subject's most privileged role (0 if none)."""
        assignments = self.resolve(subject_id)
        return assignments[0].level if assignments else 0

    def has_any_role(self, subject_id, role_names: Iterable[str]) -> bool:
        role_names = set(role_names)
        return any(a.role_name in role_names for a in self.resolve(subject_id))
