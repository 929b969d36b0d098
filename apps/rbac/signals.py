"""
Signal handlers for RBAC models.

Invalidates cached authorization decisions whenever a row that can change a
decision is written. Invalidation runs inside the saving transaction, so a
failure (CacheInvalidationError) aborts the write, and runs once more after
commit so no reader can cache the pre-commit state under the new generation.
"""
import logging
from django.db import transaction
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


def _apply(cache, model_name, instance):
    if model_name == 'subject':
        cache.invalidate_subject(instance.id)
    elif model_name in ('teammembership', 'roleassignment'):
        cache.invalidate_subject(instance.subject_id)
    elif model_name == 'resourceassignment':
        cache.invalidate_resource(instance.resource_type, instance.resource_id)
        if instance.subject_id:
            cache.invalidate_subject(instance.subject_id)
    elif model_name in ('role', 'rolepermission'):
        from apps.rbac.registry import reset_role_registry
        cache.invalidate_all()
        reset_role_registry()


def invalidate_for_instances(model, instances):
    """
    Invalidate every cached decision the given rows can affect.

    Raises:
        CacheInvalidationError: if the cache could not be updated
    """
    from apps.rbac.services import get_authorization_service

    model_name = model._meta.model_name
    instances = list(instances)
    cache = get_authorization_service().cache
    for instance in instances:
        _apply(cache, model_name, instance)

    def after_commit():
        commit_cache = get_authorization_service().cache
        for instance in instances:
            _apply(commit_cache, model_name, instance)

    transaction.on_commit(after_commit, robust=True)
    logger.debug(f"Invalidated cached decisions for {len(instances)} {model_name} row(s)")


def _previous_state(sender, instance):
    if instance._state.adding or instance.pk is None:
        return None
    return sender.objects_with_deleted.filter(pk=instance.pk).first()


@receiver(pre_save, sender='rbac.TeamMembership')
@receiver(pre_save, sender='rbac.RoleAssignment')
@receiver(pre_save, sender='rbac.ResourceAssignment')
def invalidate_previous_targets(sender, instance, raw=False, **kwargs):
    """
    A reassignment (new subject, resource or team) must also invalidate the
    targets the row pointed at before the save.
    """
    if raw:
        return
    previous = _previous_state(sender, instance)
    if previous is not None:
        invalidate_for_instances(sender, [previous])


@receiver(post_save, sender='rbac.Subject')
@receiver(post_save, sender='rbac.TeamMembership')
@receiver(post_save, sender='rbac.RoleAssignment')
@receiver(post_save, sender='rbac.ResourceAssignment')
@receiver(post_save, sender='rbac.Role')
@receiver(post_save, sender='rbac.RolePermission')
@receiver(post_delete, sender='rbac.Subject')
@receiver(post_delete, sender='rbac.TeamMembership')
@receiver(post_delete, sender='rbac.RoleAssignment')
@receiver(post_delete, sender='rbac.ResourceAssignment')
@receiver(post_delete, sender='rbac.Role')
@receiver(post_delete, sender='rbac.RolePermission')
def invalidate_cached_decisions(sender, instance, raw=False, **kwargs):
    """Invalidate decisions affected by a saved or deleted RBAC row."""
    if raw:
        return
    invalidate_for_instances(sender, [instance])
