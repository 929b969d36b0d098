"""
DRF permission class and decorator for resource authorization.

This module provides:
- HasResourceAccess: DRF permission class that asks the authorization
  service for a Decision on every request
- @requires_permission: Decorator to declare the resource type and action
  on views
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.rbac.services import get_authorization_service
from apps.rbac.types import ResourceContext

logger = logging.getLogger(__name__)


METHOD_ACTIONS = {
    'GET': 'read',
    'HEAD': 'read',
    'OPTIONS': 'read',
    'POST': 'create',
    'PUT': 'update',
    'PATCH': 'update',
    'DELETE': 'delete',
}


def get_request_subject_id(request):
    """
    Subject making the request.

    Hosts set `request.subject_id` in their authentication layer, or expose a
    `subject_id` attribute on the authenticated user.
    """
    subject_id = getattr(request, 'subject_id', None)
    if subject_id is None:
        user = getattr(request, 'user', None)
        subject_id = getattr(user, 'subject_id', None)
    return subject_id


def resource_context_for(obj, resource_type):
    """
    Build a ResourceContext for a model instance.

    Objects can provide `to_resource_context()`; otherwise the context is read
    from `geographic_scope`, `team_id`, `region_id` and `organization_id`
    attributes.
    """
    if hasattr(obj, 'to_resource_context'):
        return obj.to_resource_context()
    return ResourceContext(
        resource_type=resource_type,
        resource_id=getattr(obj, 'id', None),
        geographic_scope=getattr(obj, 'geographic_scope', None),
        team_id=getattr(obj, 'team_id', None),
        region_id=getattr(obj, 'region_id', None),
        organization_id=getattr(obj, 'organization_id', None),
    )


class HasResourceAccess(BasePermission):
    """
    DRF permission class that enforces authorization decisions on API endpoints.

    The view declares `rbac_resource_type` and, optionally, `rbac_action`
    (otherwise derived from the HTTP method). For class-level checks the view
    implements `get_rbac_resource(request)`; object checks build the context
    from the object itself. The Decision is kept on `request.rbac_decision`.

    Usage in views:
        class ProjectDetailView(RetrieveUpdateAPIView):
            permission_classes = [HasResourceAccess]
            rbac_resource_type = 'projects'

    Or use with decorator:
        @requires_permission('projects', 'update')
        class ProjectUpdateView(APIView):
            pass
    """

    message = "Access denied."

    def _declared(self, request, view, attr):
        # Method-level @requires_permission takes precedence over the class
        handler = getattr(view, request.method.lower(), None)
        value = getattr(handler, attr, None)
        return value if value is not None else getattr(view, attr, None)

    def _action(self, request, view):
        return self._declared(request, view, 'rbac_action') or METHOD_ACTIONS.get(request.method, request.method.lower())

    def _check(self, request, view, resource):
        subject_id = get_request_subject_id(request)
        action = self._action(request, view)

        if subject_id is None:
            logger.warning(
                "Permission denied: no subject on request",
                extra={
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        decision = get_authorization_service().authorize(subject_id, action, resource)
        request.rbac_decision = decision

        if not decision.allowed:
            logger.warning(
                f"Permission denied: subject {subject_id} {action} {resource.resource_type} ({decision.reason.value})",
                extra={
                    'subject_id': str(subject_id),
                    'action': action,
                    'resource_type': resource.resource_type,
                    'reason': decision.reason.value,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        logger.debug(
            f"Permission granted: subject {subject_id} {action} {resource.resource_type} ({decision.reason.value})",
            extra={'view': view.__class__.__name__}
        )
        return True

    def has_permission(self, request, view):
        """
        Class-level check, run when the view can describe the resource
        without an object (list and create endpoints).
        """
        resource_type = self._declared(request, view, 'rbac_resource_type')
        if not resource_type:
            return True

        get_resource = getattr(view, 'get_rbac_resource', None)
        if get_resource is None:
            # Deferred to has_object_permission
            return True

        return self._check(request, view, get_resource(request))

    def has_object_permission(self, request, view, obj):
        resource_type = self._declared(request, view, 'rbac_resource_type')
        if not resource_type:
            return True
        return self._check(request, view, resource_context_for(obj, resource_type))


def requires_permission(resource_type, action=None):
    """
    Decorator to declare the authorized resource type and action on view
    classes or methods.

    Usage:
        @requires_permission('projects')
        class ProjectView(APIView):
            permission_classes = [HasResourceAccess]

    Or on individual methods:
        class ProjectView(APIView):
            permission_classes = [HasResourceAccess]

            @requires_permission('projects', 'execute')
            def post(self, request):
                pass

    Args:
        resource_type: Resource type checked by HasResourceAccess
        action: Action name; derived from the HTTP method when omitted

    Returns:
        Decorator function that sets rbac_resource_type / rbac_action
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.rbac_resource_type = resource_type
            view_or_method.rbac_action = action
            if HasResourceAccess not in getattr(view_or_method, 'permission_classes', []):
                view_or_method.permission_classes = (
                    list(getattr(view_or_method, 'permission_classes', [])) + [HasResourceAccess]
                )
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.rbac_resource_type = resource_type
            self.rbac_action = action
            return view_or_method(self, request, *args, **kwargs)

        wrapped.rbac_resource_type = resource_type
        wrapped.rbac_action = action
        return wrapped

    return decorator
