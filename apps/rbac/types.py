"""
Value types passed between the authorization engine components.

These are plain in-memory structures; nothing here touches the database.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import UUID


class GeographicScope(str, Enum):
    """Geographic reach of a resource."""
    LOCAL = 'local'
    REGIONAL = 'regional'
    NATIONAL = 'national'


class ScopeType(str, Enum):
    """Scope a role assignment is granted at."""
    TEAM = 'team'
    REGION = 'region'
    ORGANIZATION = 'organization'
    GLOBAL = 'global'


class GrantedScope(str, Enum):
    """
    Scope granted by a resource assignment.

    Broader scopes cover narrower ones: read < participate < execute <
    update < manage.
    """
    READ = 'read'
    PARTICIPATE = 'participate'
    EXECUTE = 'execute'
    UPDATE = 'update'
    MANAGE = 'manage'

    @property
    def level(self) -> int:
        return GRANTED_SCOPE_LEVELS[self]

    def covers(self, action: str) -> bool:
        """Whether this granted scope is broad enough for `action`."""
        return self.level >= required_scope(action).level


GRANTED_SCOPE_LEVELS = {
    GrantedScope.READ: 10,
    GrantedScope.PARTICIPATE: 20,
    GrantedScope.EXECUTE: 30,
    GrantedScope.UPDATE: 40,
    GrantedScope.MANAGE: 50,
}

# Actions missing from this table need MANAGE.
ACTION_REQUIRED_SCOPE = {
    'read': GrantedScope.READ,
    'list': GrantedScope.READ,
    'audit': GrantedScope.READ,
    'participate': GrantedScope.PARTICIPATE,
    'execute': GrantedScope.EXECUTE,
    'update': GrantedScope.UPDATE,
    'create': GrantedScope.MANAGE,
    'delete': GrantedScope.MANAGE,
    'manage': GrantedScope.MANAGE,
}


def required_scope(action: str) -> GrantedScope:
    return ACTION_REQUIRED_SCOPE.get(action, GrantedScope.MANAGE)


def as_uuid(value) -> Optional[UUID]:
    """`value` as a UUID whatever its spelling, or None when it is not one."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class Reason(str, Enum):
    """Reason codes carried by a Decision."""
    ROLE_PERMISSION = 'role_permission'
    DIRECT_ASSIGNMENT = 'direct_assignment'
    TEAM_ASSIGNMENT = 'team_assignment'
    NO_MATCHING_GRANT = 'no_matching_grant'
    BOUNDARY_VIOLATION = 'boundary_violation'
    AUTHORIZATION_ERROR = 'authorization_error'
    SUBJECT_INACTIVE = 'subject_inactive'


class AssignmentSource(str, Enum):
    STORED = 'stored'
    SYNTHETIC = 'synthetic'


@dataclass(frozen=True)
class SubjectContext:
    """Snapshot of the acting subject, as read by the resolver."""

    id: UUID
    primary_role: Optional[str] = None
    home_team_id: Optional[UUID] = None
    home_region_id: Optional[UUID] = None
    home_organization_id: Optional[UUID] = None
    is_active: bool = True


@dataclass(frozen=True)
class ResourceContext:
    """
    The resource an action is requested on.

    `geographic_scope` together with the owning team/region/organization is
    what the boundary evaluator checks an assignment against. `resource_id`
    is optional for class-level actions such as `list` or `create`.
    """

    resource_type: str
    geographic_scope: str
    resource_id: Optional[UUID] = None
    team_id: Optional[UUID] = None
    region_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None

    def permission(self, action: str) -> str:
        return f"{self.resource_type}.{action}"

    @property
    def scope_key(self) -> str:
        """Discriminator separating cache slots of different scopes."""
        scope = self.geographic_scope
        if isinstance(scope, GeographicScope):
            scope = scope.value
        ids = (self.team_id, self.region_id, self.organization_id, self.resource_id)
        return ':'.join([str(scope)] + [str(as_uuid(value) or value or '-') for value in ids])

    def to_dict(self) -> Dict[str, Any]:
        scope = self.geographic_scope
        return {
            'resource_type': self.resource_type,
            'resource_id': str(self.resource_id) if self.resource_id else None,
            'geographic_scope': scope.value if isinstance(scope, GeographicScope) else scope,
            'team_id': str(self.team_id) if self.team_id else None,
            'region_id': str(self.region_id) if self.region_id else None,
            'organization_id': str(self.organization_id) if self.organization_id else None,
        }


# The engine's name for the resource context when checking boundaries.
BoundaryContext = ResourceContext


@dataclass(frozen=True)
class StoredAssignment:
    """A role assignment backed by a RoleAssignment row."""

    assignment_id: UUID
    role_name: str
    scope_type: ScopeType
    scope_id: Optional[UUID]
    level: int
    expires_at: Optional[datetime] = None
    source: AssignmentSource = field(default=AssignmentSource.STORED, init=False)


@dataclass(frozen=True)
class SyntheticAssignment:
    """
    A role assignment projected at read time from a subject's primary role.

    Never persisted.
    """

    role_name: str
    scope_type: ScopeType
    scope_id: Optional[UUID]
    level: int
    expires_at: Optional[datetime] = None
    source: AssignmentSource = field(default=AssignmentSource.SYNTHETIC, init=False)

    @property
    def assignment_id(self):
        return None


EffectiveAssignment = Union[StoredAssignment, SyntheticAssignment]


@dataclass(frozen=True)
class BoundaryResult:
    satisfied: bool
    rule_id: str
    cross_boundary_access: bool = False

    @property
    def reason(self) -> Optional[Reason]:
        return None if self.satisfied else Reason.BOUNDARY_VIOLATION


@dataclass(frozen=True)
class TraceStep:
    """One evaluated step in an explained decision."""

    step: str
    outcome: str
    role: Optional[str] = None
    rule_id: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'step': self.step,
            'outcome': self.outcome,
            'role': self.role,
            'rule_id': self.rule_id,
            'detail': self.detail,
        }


@dataclass(frozen=True)
class Decision:
    """
    Result of an authorization request.

    Two decisions compare equal when they reach the same outcome for the same
    reason; when they were evaluated, whether they came from the cache and the
    trace do not take part in equality.
    """

    allowed: bool
    reason: Reason
    evaluated_at: datetime = field(compare=False)
    matched_rule: Optional[str] = None
    cross_boundary_access: bool = False
    role: Optional[str] = None
    cache_hit: bool = field(default=False, compare=False)
    trace: Tuple[TraceStep, ...] = field(default=(), compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'reason': self.reason.value,
            'matched_rule': self.matched_rule,
            'cross_boundary_access': self.cross_boundary_access,
            'role': self.role,
            'cache_hit': self.cache_hit,
            'evaluated_at': self.evaluated_at.isoformat(),
            'trace': [step.to_dict() for step in self.trace],
        }


@dataclass(frozen=True)
class DecisionCacheKey:
    """
    Cache slot of one request. Ids are always UUIDs, so every spelling of an
    id the ORM accepts lands in the slot that invalidation reaches.
    """

    subject_id: UUID
    resource_type: str
    scope_key: str
    action: str
    resource_id: Optional[UUID] = None

    @classmethod
    def for_request(cls, subject_id, action: str, resource: ResourceContext) -> Optional['DecisionCacheKey']:
        """Key for the request, or None when an id is not a UUID and the request must not be cached."""
        subject_uuid = as_uuid(subject_id)
        resource_uuid = as_uuid(resource.resource_id)
        if subject_uuid is None or (resource.resource_id is not None and resource_uuid is None):
            return None
        return cls(
            subject_id=subject_uuid,
            resource_type=resource.resource_type,
            scope_key=resource.scope_key,
            action=action,
            resource_id=resource_uuid,
        )
