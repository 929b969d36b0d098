"""
Row base class for the RBAC tables.

Every row gets a UUID key, created/updated stamps and a `deleted_at` stamp.
Deleting a row only stamps it; revoked grants stay readable for audits.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelQuerySet(models.QuerySet):
    """QuerySet whose delete() stamps rows instead of removing them."""

    def delete(self):
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Remove the rows from the table."""
        return super().delete()

    def alive(self):
        return self.filter(deleted_at__isnull=True)


class BaseModelManager(models.Manager.from_queryset(BaseModelQuerySet)):
    """Manager over rows that have not been deleted."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModel(models.Model):
    """
    Abstract parent of the RBAC models.

    `objects` only returns live rows, so a deleted assignment can never grant
    anything. `objects_with_deleted` reaches every row, for seeding, restores
    and invalidation of a row's previous targets.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Row key"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When the row was inserted"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the row last changed"
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the row was deleted; null while live"
    )

    objects = BaseModelManager()
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Stamp `deleted_at`; the row drops out of `objects`."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def hard_delete(self, using=None, keep_parents=False):
        return super().delete(using=using, keep_parents=keep_parents)

    def restore(self):
        """Clear `deleted_at`, making the row visible through `objects` again."""
        self.deleted_at = None
        self.save(update_fields=['deleted_at', 'updated_at'])

    @property
    def is_deleted(self):
        return self.deleted_at is not None
