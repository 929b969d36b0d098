"""
Boundary evaluator: can an assignment's scope reach a resource's scope?

Pure functions over in-memory values. Rules are checked in order and the
first rule whose predicate matches decides the result.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from apps.rbac.exceptions import BoundaryEvaluationError
from apps.rbac.registry import RoleDefinition
from apps.rbac.types import (
    BoundaryResult, EffectiveAssignment, GeographicScope, ResourceContext,
    ScopeType, SubjectContext,
)


@dataclass(frozen=True)
class BoundaryRule:
    rule_id: str
    predicate: Callable[..., bool]
    satisfied: bool
    cross_boundary_access: bool = False


def assignment_team_id(subject: SubjectContext, assignment: EffectiveAssignment):
    """Team an assignment reaches: its own scope if team-scoped, else the home team."""
    if assignment.scope_type == ScopeType.TEAM:
        return assignment.scope_id
    return subject.home_team_id


def assignment_region_id(subject: SubjectContext, assignment: EffectiveAssignment):
    """Region an assignment reaches: its own scope if region-scoped, else the home region."""
    if assignment.scope_type == ScopeType.REGION:
        return assignment.scope_id
    return subject.home_region_id


def _privileged(subject, resource, scope, role, assignment):
    return role.is_national or role.is_wildcard


def _local_team_match(subject, resource, scope, role, assignment):
    team_id = assignment_team_id(subject, assignment)
    return scope == GeographicScope.LOCAL and team_id is not None and team_id == resource.team_id


def _regional_region_match(subject, resource, scope, role, assignment):
    region_id = assignment_region_id(subject, assignment)
    return scope == GeographicScope.REGIONAL and region_id is not None and region_id == resource.region_id


def _national(subject, resource, scope, role, assignment):
    return scope == GeographicScope.NATIONAL


def _always(subject, resource, scope, role, assignment):
    return True


BOUNDARY_RULES: Tuple[BoundaryRule, ...] = (
    BoundaryRule('privileged_role', _privileged, satisfied=True, cross_boundary_access=True),
    BoundaryRule('local_team_match', _local_team_match, satisfied=True),
    BoundaryRule('regional_region_match', _regional_region_match, satisfied=True),
    BoundaryRule('national_scope_restricted', _national, satisfied=False),
    BoundaryRule('outside_boundary', _always, satisfied=False),
)


def validate_resource(resource: ResourceContext) -> GeographicScope:
    """Return the resource's geographic scope, or raise if the context is malformed."""
    try:
        scope = GeographicScope(resource.geographic_scope)
    except ValueError:
        raise BoundaryEvaluationError(
            f"Unknown geographic scope {resource.geographic_scope!r}",
            resource_type=resource.resource_type,
        ) from None

    if scope == GeographicScope.LOCAL and resource.team_id is None:
        raise BoundaryEvaluationError(
            "Local resources must name an owning team",
            resource_type=resource.resource_type,
        )
    if scope == GeographicScope.REGIONAL and resource.region_id is None:
        raise BoundaryEvaluationError(
            "Regional resources must name an owning region",
            resource_type=resource.resource_type,
        )
    return scope


def is_in_boundary(
    subject: SubjectContext,
    resource: ResourceContext,
    role: RoleDefinition,
    assignment: EffectiveAssignment,
    rules: Optional[Tuple[BoundaryRule, ...]] = None,
) -> BoundaryResult:
    scope = validate_resource(resource)
    for rule in rules or BOUNDARY_RULES:
        if rule.predicate(subject, resource, scope, role, assignment):
            return BoundaryResult(
                satisfied=rule.satisfied,
                rule_id=rule.rule_id,
                cross_boundary_access=rule.cross_boundary_access,
            )
    # The rule table always ends with a catch-all.
    raise BoundaryEvaluationError("No boundary rule matched", resource_type=resource.resource_type)
