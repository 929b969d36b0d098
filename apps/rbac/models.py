"""
RBAC models for field operations access control.

Implements:
- Subject (the acting identity, with its legacy primary role and home scope)
- TeamMembership (teams a subject currently belongs to)
- Role and RolePermission (database-backed role definitions)
- RoleAssignment (role granted to a subject at a team/region/org/global scope)
- ResourceAssignment (subject or team bound directly to one resource instance)
- AuditLog (append-only record of every authorization decision)

The authorization engine only reads these tables. Every write that can change
a decision invalidates the decision cache synchronously, either through the
receivers in apps.rbac.signals or, for bulk queryset writes that Django sends
no signals for, through the querysets below.
"""
import logging
from django.db import models
from django.db.models import Q
from django.utils import timezone
from apps.core.models import BaseModel, BaseModelManager, BaseModelQuerySet
from apps.rbac.exceptions import AuditLogImmutableError
from apps.rbac.types import GeographicScope, GrantedScope, ScopeType

logger = logging.getLogger(__name__)


SCOPE_TYPE_CHOICES = [(scope.value, scope.name.title()) for scope in ScopeType]
GRANTED_SCOPE_CHOICES = [(scope.value, scope.name.title()) for scope in GrantedScope]
GEOGRAPHIC_SCOPE_CHOICES = [(scope.value, scope.name.title()) for scope in GeographicScope]


def _current_filter(now=None):
    """Active rows that have not expired at `now`."""
    now = now or timezone.now()
    return Q(is_active=True) & (Q(expires_at__isnull=True) | Q(expires_at__gt=now))


class InvalidatingQuerySet(BaseModelQuerySet):
    """
    QuerySet whose bulk writes invalidate cached decisions.

    `update()` (and therefore the soft `delete()`) and `bulk_create()` bypass
    model signals, so they hand the affected rows to the same invalidation
    routine the signal receivers use.
    """

    def _invalidate(self, instances):
        if not instances:
            return
        from apps.rbac.signals import invalidate_for_instances
        invalidate_for_instances(self.model, instances)

    def update(self, **kwargs):
        affected = list(self)
        count = super().update(**kwargs)
        if count:
            self._invalidate(affected)
        return count

    def bulk_create(self, objs, *args, **kwargs):
        created = super().bulk_create(objs, *args, **kwargs)
        self._invalidate(created)
        return created


class CurrentQuerySet(InvalidatingQuerySet):

    def current(self, now=None):
        """Active and unexpired rows."""
        return self.filter(_current_filter(now))


class SubjectQuerySet(InvalidatingQuerySet):

    def active(self):
        """Return only active subjects."""
        return self.filter(is_active=True)

    def with_primary_role(self, role_name):
        return self.filter(primary_role=role_name)


class SubjectManager(BaseModelManager.from_queryset(SubjectQuerySet)):
    """Manager for Subject queries."""


class Subject(BaseModel):
    """
    An identity that requests actions: a field worker, supervisor, admin...

    `primary_role` is the legacy single-role attribute. The resolver projects
    it into a synthetic role assignment at read time; it is never copied into
    RoleAssignment.
    """

    display_name = models.CharField(
        max_length=200,
        blank=True,
        help_text="Human readable name"
    )
    primary_role = models.CharField(
        max_length=64,
        blank=True,
        db_index=True,
        help_text="Legacy primary role name (e.g., 'FIELD_SUPERVISOR')"
    )
    home_team_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Team the subject belongs to by default"
    )
    home_region_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Region the subject belongs to by default"
    )
    home_organization_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Organization the subject belongs to"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive subjects are denied every action"
    )

    objects = SubjectManager()
    objects_with_deleted = models.Manager.from_queryset(SubjectQuerySet)()

    class Meta:
        db_table = 'rbac_subjects'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['home_team_id', 'is_active'], name='rbac_subj_team_active_idx'),
            models.Index(fields=['home_region_id', 'is_active'], name='rbac_subj_region_active_idx'),
        ]

    def __str__(self):
        return self.display_name or str(self.id)

    def to_context(self):
        from apps.rbac.types import SubjectContext
        return SubjectContext(
            id=self.id,
            primary_role=self.primary_role or None,
            home_team_id=self.home_team_id,
            home_region_id=self.home_region_id,
            home_organization_id=self.home_organization_id,
            is_active=self.is_active,
        )


class TeamMembershipQuerySet(CurrentQuerySet):

    def for_subject(self, subject_id):
        return self.filter(subject_id=subject_id)


class TeamMembershipManager(BaseModelManager.from_queryset(TeamMembershipQuerySet)):
    """Manager for TeamMembership queries."""


class TeamMembership(BaseModel):
    """A subject's membership of a team beyond its home team."""

    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='team_memberships',
        help_text="Member subject"
    )
    team_id = models.UUIDField(
        db_index=True,
        help_text="Team the subject belongs to"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the membership is in effect"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Membership ends at this time (null for no expiry)"
    )

    objects = TeamMembershipManager()
    objects_with_deleted = models.Manager.from_queryset(TeamMembershipQuerySet)()

    class Meta:
        db_table = 'rbac_team_memberships'
        ordering = ['subject', 'team_id']
        indexes = [
            models.Index(fields=['subject', 'is_active'], name='rbac_team_subj_active_idx'),
        ]

    def __str__(self):
        return f"{self.subject} @ team {self.team_id}"


class RoleQuerySet(InvalidatingQuerySet):

    def active(self):
        return self.filter(is_active=True)

    def system_roles(self):
        return self.filter(is_system=True)

    def by_name(self, name):
        return self.filter(name=name).first()


class RoleManager(BaseModelManager.from_queryset(RoleQuerySet)):
    """Manager for Role queries."""


class Role(BaseModel):
    """
    Database-backed role definition.

    Used when RBAC_ROLE_SOURCE is 'database'; the built-in definitions are
    seeded here with the seed_roles command.
    """

    name = models.CharField(
        max_length=64,
        unique=True,
        help_text="Role name (e.g., 'FIELD_SUPERVISOR')"
    )
    display_name = models.CharField(
        max_length=100,
        blank=True,
        help_text="Role display name"
    )
    description = models.TextField(
        blank=True,
        help_text="Role description"
    )
    hierarchy_level = models.PositiveIntegerField(
        default=1,
        db_index=True,
        help_text="Higher is more privileged"
    )
    is_national = models.BooleanField(
        default=False,
        help_text="Role reaches resources regardless of geographic boundary"
    )
    default_scope = models.CharField(
        max_length=20,
        choices=SCOPE_TYPE_CHOICES,
        default=ScopeType.TEAM.value,
        help_text="Scope given to assignments projected from a primary role"
    )
    is_system = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a built-in role"
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive roles are not loaded into the registry"
    )

    objects = RoleManager()
    objects_with_deleted = models.Manager.from_queryset(RoleQuerySet)()

    class Meta:
        db_table = 'rbac_roles'
        ordering = ['-hierarchy_level', 'name']

    def __str__(self):
        return self.name

    def get_permissions(self):
        """Permission strings granted by this role."""
        return frozenset(rp.permission for rp in self.role_permissions.all())


class RolePermissionQuerySet(InvalidatingQuerySet):

    def for_role(self, role):
        return self.filter(role=role)


class RolePermissionManager(BaseModelManager.from_queryset(RolePermissionQuerySet)):
    """Manager for RolePermission queries."""

    def grant_permission(self, role, resource, action):
        """Grant permission to role (idempotent, restores a revoked grant)."""
        existing = self.model.objects_with_deleted.filter(
            role=role, resource=resource, action=action
        ).first()
        if existing is None:
            return self.create(role=role, resource=resource, action=action), True
        if existing.is_deleted:
            existing.restore()
            return existing, True
        return existing, False

    def revoke_permission(self, role, resource, action):
        return self.filter(role=role, resource=resource, action=action).delete()


class RolePermission(BaseModel):
    """
    One resource.action pair granted by a role.

    resource='*' with action='*' is the global wildcard; action='*' alone
    grants every action on one resource.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name='role_permissions',
        help_text="Role that grants this permission"
    )
    resource = models.CharField(
        max_length=64,
        help_text="Resource type (e.g., 'projects') or '*'"
    )
    action = models.CharField(
        max_length=64,
        help_text="Action (e.g., 'update') or '*'"
    )

    objects = RolePermissionManager()
    objects_with_deleted = models.Manager.from_queryset(RolePermissionQuerySet)()

    class Meta:
        db_table = 'rbac_role_permissions'
        unique_together = [('role', 'resource', 'action')]
        ordering = ['role', 'resource', 'action']

    def __str__(self):
        return f"{self.role.name} -> {self.permission}"

    @property
    def permission(self):
        if self.resource == '*' and self.action == '*':
            return '*'
        return f"{self.resource}.{self.action}"


class RoleAssignmentQuerySet(CurrentQuerySet):

    def for_subject(self, subject_id):
        return self.filter(subject_id=subject_id)


class RoleAssignmentManager(BaseModelManager.from_queryset(RoleAssignmentQuerySet)):
    """Manager for RoleAssignment queries."""


class RoleAssignment(BaseModel):
    """
    A role granted to a subject at a given scope.

    Inactive and expired rows are kept: they still shadow the synthetic
    assignment projected from the subject's primary role at the same scope.
    """

    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='role_assignments',
        help_text="Subject holding the role"
    )
    role_name = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Name of the assigned role"
    )
    scope_type = models.CharField(
        max_length=20,
        choices=SCOPE_TYPE_CHOICES,
        help_text="Scope the role is granted at"
    )
    scope_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Team, region or organization id (null for global)"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the assignment is in effect"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Assignment ends at this time (null for no expiry)"
    )
    assigned_by = models.ForeignKey(
        Subject,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='role_assignments_made',
        help_text="Subject who made the assignment"
    )

    objects = RoleAssignmentManager()
    objects_with_deleted = models.Manager.from_queryset(RoleAssignmentQuerySet)()

    class Meta:
        db_table = 'rbac_role_assignments'
        ordering = ['subject', 'role_name']
        indexes = [
            models.Index(fields=['subject', 'is_active'], name='rbac_ra_subject_active_idx'),
            models.Index(fields=['scope_type', 'scope_id'], name='rbac_ra_scope_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(scope_type=ScopeType.GLOBAL.value, scope_id__isnull=True)
                    | (~Q(scope_type=ScopeType.GLOBAL.value) & Q(scope_id__isnull=False))
                ),
                name='rbac_role_assignment_scope_id_matches_type',
            ),
        ]

    def __str__(self):
        return f"{self.subject} -> {self.role_name} ({self.scope_type}:{self.scope_id})"

    def is_current(self, now=None):
        now = now or timezone.now()
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class ResourceAssignmentQuerySet(CurrentQuerySet):

    def for_resource(self, resource_type, resource_id):
        return self.filter(resource_type=resource_type, resource_id=resource_id)

    def direct(self, subject_id):
        return self.filter(subject_id=subject_id)

    def for_teams(self, team_ids):
        return self.filter(team_id__in=list(team_ids))


class ResourceAssignmentManager(BaseModelManager.from_queryset(ResourceAssignmentQuerySet)):
    """Manager for ResourceAssignment queries."""


class ResourceAssignment(BaseModel):
    """
    Binds a subject or a team (exactly one) to a single resource instance.

    These grants are not subject to geographic boundary checks.
    """

    resource_type = models.CharField(
        max_length=64,
        help_text="Resource type (e.g., 'projects')"
    )
    resource_id = models.UUIDField(
        help_text="Resource instance id"
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='resource_assignments',
        help_text="Subject granted access (direct assignment)"
    )
    team_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Team granted access (team assignment)"
    )
    granted_scope = models.CharField(
        max_length=20,
        choices=GRANTED_SCOPE_CHOICES,
        help_text="Broadest action level granted on the resource"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the assignment is in effect"
    )
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Assignment ends at this time (null for no expiry)"
    )
    assigned_by = models.ForeignKey(
        Subject,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resource_assignments_made',
        help_text="Subject who made the assignment"
    )

    objects = ResourceAssignmentManager()
    objects_with_deleted = models.Manager.from_queryset(ResourceAssignmentQuerySet)()

    class Meta:
        db_table = 'rbac_resource_assignments'
        ordering = ['resource_type', 'resource_id']
        indexes = [
            models.Index(fields=['resource_type', 'resource_id'], name='rbac_res_resource_idx'),
            models.Index(fields=['subject', 'is_active'], name='rbac_res_subject_active_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(subject__isnull=False, team_id__isnull=True)
                    | Q(subject__isnull=True, team_id__isnull=False)
                ),
                name='rbac_resource_assignment_subject_xor_team',
            ),
        ]

    def __str__(self):
        holder = f"subject {self.subject_id}" if self.subject_id else f"team {self.team_id}"
        return f"{holder} -> {self.resource_type}:{self.resource_id} ({self.granted_scope})"

    @property
    def is_direct(self):
        return self.subject_id is not None


class AuditLogQuerySet(BaseModelQuerySet):
    """Append-only: bulk updates and deletes are refused."""

    def update(self, **kwargs):
        raise AuditLogImmutableError("Audit records cannot be updated")

    def delete(self):
        raise AuditLogImmutableError("Audit records cannot be deleted")

    def hard_delete(self):
        raise AuditLogImmutableError("Audit records cannot be deleted")

    def for_subject(self, subject_id):
        return self.filter(subject_id=subject_id)

    def for_resource(self, resource_type, resource_id=None):
        qs = self.filter(resource_type=resource_type)
        if resource_id:
            qs = qs.filter(resource_id=resource_id)
        return qs

    def denials(self):
        return self.filter(allowed=False)

    def by_reason(self, reason):
        return self.filter(reason=getattr(reason, 'value', reason))

    def cross_boundary(self):
        return self.filter(cross_boundary_access=True)

    def recent(self, days=30):
        """Get audit records from the last N days."""
        from datetime import timedelta
        cutoff = timezone.now() - timedelta(days=days)
        return self.filter(created_at__gte=cutoff)


class AuditLogManager(BaseModelManager.from_queryset(AuditLogQuerySet)):
    """Manager for AuditLog queries."""


class AuditLog(BaseModel):
    """
    Append-only record of one authorization decision.

    subject_id and resource_id are stored as plain UUIDs so records outlive
    the rows they describe.
    """

    subject_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Subject that requested the action"
    )
    action = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Requested action (e.g., 'update')"
    )
    resource_type = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Resource type (e.g., 'projects')"
    )
    resource_id = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Resource instance id"
    )
    resource_scope = models.CharField(
        max_length=20,
        blank=True,
        help_text="Geographic scope of the resource"
    )
    resource_context = models.JSONField(
        default=dict,
        blank=True,
        help_text="Full resource context the decision was made on"
    )

    # Outcome
    allowed = models.BooleanField(
        db_index=True,
        help_text="Whether the action was allowed"
    )
    reason = models.CharField(
        max_length=32,
        db_index=True,
        help_text="Decision reason code"
    )
    matched_rule = models.CharField(
        max_length=64,
        blank=True,
        help_text="Rule or grant that decided the outcome"
    )
    role = models.CharField(
        max_length=64,
        blank=True,
        help_text="Role that granted the action, if any"
    )
    cross_boundary_access = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Allowed through a privileged role outside normal locality"
    )
    cache_hit = models.BooleanField(
        default=False,
        help_text="Decision was served from the decision cache"
    )
    evaluated_at = models.DateTimeField(
        help_text="When the decision was evaluated"
    )

    # Diagnostics
    error_detail = models.TextField(
        blank=True,
        help_text="Failure detail for authorization_error decisions"
    )
    trace = models.JSONField(
        default=list,
        blank=True,
        help_text="Evaluated rule trace"
    )

    objects = AuditLogManager()
    objects_with_deleted = models.Manager.from_queryset(AuditLogQuerySet)()

    class Meta:
        db_table = 'rbac_audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['subject_id', 'created_at'], name='rbac_audit_subject_idx'),
            models.Index(fields=['resource_type', 'resource_id'], name='rbac_audit_resource_idx'),
            models.Index(fields=['reason', 'created_at'], name='rbac_audit_reason_idx'),
        ]

    def __str__(self):
        outcome = 'allow' if self.allowed else 'deny'
        return f"{self.subject_id} {self.action} {self.resource_type}: {outcome} ({self.reason})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise AuditLogImmutableError("Audit records cannot be updated")
        super().save(*args, **kwargs)

    def delete(self, using=None, keep_parents=False):
        raise AuditLogImmutableError("Audit records cannot be deleted")

    def hard_delete(self, using=None, keep_parents=False):
        raise AuditLogImmutableError("Audit records cannot be deleted")
