"""
Role registry: role name -> permission set, hierarchy level and reach.

The registry is built either from DEFAULT_ROLE_DEFINITIONS or from the Role /
RolePermission tables, depending on RBAC_ROLE_SOURCE. Permission strings are
'resource.action'; '*' alone is the global wildcard and is only accepted on
roles at the top hierarchy level.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, Optional

from django.core.exceptions import ImproperlyConfigured

from apps.rbac import conf
from apps.rbac.exceptions import UnknownRoleError
from apps.rbac.types import ScopeType

logger = logging.getLogger(__name__)

WILDCARD = '*'
MANAGE_ACTION = 'manage'


# Built-in field operations roles. `inherits` pulls in every permission of the
# named role before the role's own list is applied.
DEFAULT_ROLE_DEFINITIONS = {
    # Field operations roles
    'TEAM_MEMBER': {
        'display_name': 'Team Member',
        'description': 'Frontline survey operators with basic team access',
        'level': 1,
        'default_scope': ScopeType.TEAM,
        'permissions': [
            'teams.read', 'users.read',
            'devices.read', 'devices.create', 'devices.update',
            'telemetry.create', 'telemetry.read',
            'policies.read',
            'auth.create', 'auth.read',
            'projects.read', 'projects.list', 'projects.participate',
        ],
    },
    'FIELD_SUPERVISOR': {
        'display_name': 'Field Supervisor',
        'description': 'On-site supervisors managing field operations and team devices',
        'level': 2,
        'default_scope': ScopeType.TEAM,
        'inherits': 'TEAM_MEMBER',
        'permissions': [
            'teams.manage', 'users.manage', 'devices.manage',
            'supervisor_pins.read', 'supervisor_pins.manage', 'supervisor_pins.execute',
            'telemetry.manage', 'policies.manage', 'auth.manage',
            'projects.update', 'projects.execute', 'projects.audit',
        ],
    },
    'REGIONAL_MANAGER': {
        'display_name': 'Regional Manager',
        'description': 'Multi-team regional oversight with cross-team access within region',
        'level': 3,
        'default_scope': ScopeType.REGION,
        'inherits': 'FIELD_SUPERVISOR',
        'permissions': [
            'teams.create', 'users.create',
            'devices.delete', 'supervisor_pins.delete',
            'support_tickets.read', 'support_tickets.create',
            'audit_logs.read',
            'projects.manage',
        ],
    },

    # Technical operations roles
    'SUPPORT_AGENT': {
        'display_name': 'Support Agent',
        'description': 'User support and troubleshooting capabilities',
        'level': 4,
        'default_scope': ScopeType.ORGANIZATION,
        'permissions': [
            'teams.read', 'users.read', 'devices.read', 'telemetry.read',
            'policies.read', 'support_tickets.manage', 'audit_logs.read',
            'projects.read', 'projects.list',
        ],
    },
    'AUDITOR': {
        'display_name': 'Auditor',
        'description': 'Read-only audit access and compliance monitoring',
        'level': 5,
        'default_scope': ScopeType.GLOBAL,
        'is_national': True,
        'permissions': [
            'teams.read', 'users.read', 'devices.read', 'telemetry.read',
            'policies.read', 'support_tickets.read', 'audit_logs.read',
            'projects.read', 'projects.list', 'projects.audit',
        ],
    },

    # Specialized roles
    'DEVICE_MANAGER': {
        'display_name': 'Device Manager',
        'description': 'Android device lifecycle management',
        'level': 6,
        'default_scope': ScopeType.TEAM,
        'permissions': [
            'devices.manage', 'teams.read', 'users.read',
            'telemetry.read', 'telemetry.manage', 'policies.read',
            'support_tickets.create', 'support_tickets.read',
            'projects.read',
        ],
    },
    'POLICY_ADMIN': {
        'display_name': 'Policy Administrator',
        'description': 'Policy creation and management',
        'level': 7,
        'default_scope': ScopeType.ORGANIZATION,
        'permissions': [
            'policies.manage', 'teams.read', 'users.read', 'devices.read',
            'telemetry.read', 'support_tickets.create', 'support_tickets.read',
            'audit_logs.read', 'projects.read', 'projects.list',
        ],
    },
    'NATIONAL_SUPPORT_ADMIN': {
        'display_name': 'National Support Administrator',
        'description': 'Cross-team operational access (no system settings)',
        'level': 8,
        'default_scope': ScopeType.GLOBAL,
        'is_national': True,
        'permissions': [
            'teams.read', 'users.read', 'devices.manage',
            'supervisor_pins.read', 'supervisor_pins.execute',
            'telemetry.manage', 'policies.manage', 'auth.manage',
            'support_tickets.manage', 'audit_logs.read',
            'projects.read', 'projects.list', 'projects.update', 'projects.execute',
            # system_settings intentionally excluded
        ],
    },
    'SYSTEM_ADMIN': {
        'display_name': 'System Administrator',
        'description': 'Full system configuration and administrative access',
        'level': 9,
        'default_scope': ScopeType.GLOBAL,
        'permissions': [WILDCARD],
    },
}


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    level: int
    permissions: FrozenSet[str]
    is_national: bool = False
    default_scope: ScopeType = ScopeType.TEAM
    display_name: str = ''
    description: str = ''

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.permissions


def split_permission(permission: str):
    """'projects.update' -> ('projects', 'update'); '*' -> ('*', '*')."""
    if permission == WILDCARD:
        return WILDCARD, WILDCARD
    resource, _, action = permission.rpartition('.')
    if not resource or not action:
        raise ImproperlyConfigured(f"Malformed permission {permission!r}; expected 'resource.action'")
    return resource, action


def permission_covers(permissions: Iterable[str], resource: str, action: str) -> bool:
    """
    Whether a permission set grants `action` on `resource`.

    Matches the exact pair, the global wildcard, 'resource.*', and
    'resource.manage' (manage implies every action on that resource).
    """
    permissions = permissions if isinstance(permissions, (set, frozenset)) else set(permissions)
    return (
        f"{resource}.{action}" in permissions
        or WILDCARD in permissions
        or f"{resource}.{WILDCARD}" in permissions
        or f"{resource}.{MANAGE_ACTION}" in permissions
    )


class RoleRegistry:
    """
    Immutable lookup of role definitions.

    Unknown role names raise UnknownRoleError; nothing is silently skipped.
    """

    def __init__(self, definitions: Iterable[RoleDefinition]):
        self._roles: Dict[str, RoleDefinition] = {}
        for definition in definitions:
            if definition.name in self._roles:
                raise ImproperlyConfigured(f"Role {definition.name!r} is defined twice")
            for permission in definition.permissions:
                split_permission(permission)
            self._roles[definition.name] = definition

        self.top_level = max((role.level for role in self._roles.values()), default=0)

        for role in self._roles.values():
            if role.is_wildcard and role.level != self.top_level:
                raise ImproperlyConfigured(
                    f"Role {role.name!r} holds the global wildcard at level {role.level}; "
                    f"the wildcard is reserved for the top hierarchy level ({self.top_level})"
                )

    @classmethod
    def from_definitions(cls, definitions: Optional[dict] = None) -> 'RoleRegistry':
        """Build a registry from a DEFAULT_ROLE_DEFINITIONS-shaped dict."""
        definitions = DEFAULT_ROLE_DEFINITIONS if definitions is None else definitions

        def collect(name, seen=()):
            if name not in definitions:
                raise ImproperlyConfigured(f"Role {seen[-1]!r} inherits from unknown role {name!r}")
            if name in seen:
                raise ImproperlyConfigured(f"Role inheritance cycle through {name!r}")
            raw = definitions[name]
            permissions = set(raw.get('permissions', []))
            parent = raw.get('inherits')
            if parent:
                permissions |= collect(parent, seen + (name,))
            return permissions

        roles = []
        for name, raw in definitions.items():
            roles.append(RoleDefinition(
                name=name,
                level=raw['level'],
                permissions=frozenset(collect(name)),
                is_national=raw.get('is_national', False),
                default_scope=ScopeType(raw.get('default_scope', ScopeType.TEAM)),
                display_name=raw.get('display_name', ''),
                description=raw.get('description', ''),
            ))
        return cls(roles)

    @classmethod
    def from_database(cls) -> 'RoleRegistry':
        """Build a registry from active Role rows and their permissions."""
        from apps.rbac.models import Role

        roles = []
        for role in Role.objects.active().prefetch_related('role_permissions'):
            roles.append(RoleDefinition(
                name=role.name,
                level=role.hierarchy_level,
                permissions=role.get_permissions(),
                is_national=role.is_national,
                default_scope=ScopeType(role.default_scope),
                display_name=role.display_name,
                description=role.description,
            ))
        logger.info(f"Loaded {len(roles)} roles from the database")
        return cls(roles)

    def __contains__(self, role_name) -> bool:
        return role_name in self._roles

    def __iter__(self) -> Iterator[RoleDefinition]:
        return iter(sorted(self._roles.values(), key=lambda role: (-role.level, role.name)))

    def __len__(self):
        return len(self._roles)

    def get(self, role_name: str) -> RoleDefinition:
        try:
            return self._roles[role_name]
        except KeyError:
            raise UnknownRoleError(role_name) from None

    def permissions_for(self, role_name: str) -> FrozenSet[str]:
        return self.get(role_name).permissions

    def level_of(self, role_name: str) -> int:
        return self.get(role_name).level

    def is_national(self, role_name: str) -> bool:
        return self.get(role_name).is_national

    def has_permission(self, role_name: str, resource: str, action: str) -> bool:
        return permission_covers(self.permissions_for(role_name), resource, action)

    def can_manage_role(self, actor_role: str, target_role: str) -> bool:
        """A role may only manage roles strictly below it in the hierarchy."""
        return self.level_of(actor_role) > self.level_of(target_role)


_registry = None
_registry_lock = threading.Lock()


def get_role_registry() -> RoleRegistry:
    """Process-wide registry for the configured role source, built on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                if conf.role_source() == conf.ROLE_SOURCE_DATABASE:
                    _registry = RoleRegistry.from_database()
                else:
                    _registry = RoleRegistry.from_definitions()
    return _registry


def reset_role_registry():
    """Drop the process-wide registry so the next use reloads it."""
    global _registry
    with _registry_lock:
        _registry = None
