"""
Exceptions raised inside the authorization engine.

Every one of them is fatal for the request being authorized: the engine
converts them into a deny Decision with reason `authorization_error`.
"""


class AuthorizationError(Exception):
    """Base class for authorization engine failures."""

    def __init__(self, message, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self):
        return {
            'type': self.__class__.__name__,
            'message': self.message,
            **{key: str(value) for key, value in self.context.items()},
        }


class UnknownRoleError(AuthorizationError):
    """A role name is not registered in the role registry."""

    def __init__(self, role_name):
        super().__init__(f"Unknown role: {role_name!r}", role=role_name)
        self.role_name = role_name


class AssignmentResolutionError(AuthorizationError):
    """Role or resource assignments for a subject could not be read."""


class BoundaryEvaluationError(AuthorizationError):
    """The resource context is malformed and cannot be checked against a boundary."""


class CacheInvalidationError(AuthorizationError):
    """
    A cache invalidation could not be applied.

    Raised from the assignment mutation path so the enclosing transaction
    fails instead of leaving a stale allow reachable.
    """


class AuditLogImmutableError(Exception):
    """Audit records are append-only; updates and deletes are refused."""
