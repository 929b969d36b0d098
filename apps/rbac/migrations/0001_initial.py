# Generated migration for the field operations RBAC tables

import uuid

import django.db.models.deletion
from django.db import migrations, models


SCOPE_TYPE_CHOICES = [
    ('team', 'Team'),
    ('region', 'Region'),
    ('organization', 'Organization'),
    ('global', 'Global'),
]

GRANTED_SCOPE_CHOICES = [
    ('read', 'Read'),
    ('participate', 'Participate'),
    ('execute', 'Execute'),
    ('update', 'Update'),
    ('manage', 'Manage'),
]


def base_fields():
    return [
        ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Row key', primary_key=True, serialize=False)),
        ('created_at', models.DateTimeField(auto_now_add=True, db_index=True, help_text='When the row was inserted')),
        ('updated_at', models.DateTimeField(auto_now=True, help_text='When the row last changed')),
        ('deleted_at', models.DateTimeField(blank=True, db_index=True, help_text='When the row was deleted; null while live', null=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Subject',
            fields=base_fields() + [
                ('display_name', models.CharField(blank=True, help_text='Human readable name', max_length=200)),
                ('primary_role', models.CharField(blank=True, db_index=True, help_text="Legacy primary role name (e.g., 'FIELD_SUPERVISOR')", max_length=64)),
                ('home_team_id', models.UUIDField(blank=True, db_index=True, help_text='Team the subject belongs to by default', null=True)),
                ('home_region_id', models.UUIDField(blank=True, db_index=True, help_text='Region the subject belongs to by default', null=True)),
                ('home_organization_id', models.UUIDField(blank=True, db_index=True, help_text='Organization the subject belongs to', null=True)),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Inactive subjects are denied every action')),
            ],
            options={
                'db_table': 'rbac_subjects',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['home_team_id', 'is_active'], name='rbac_subj_team_active_idx'),
                    models.Index(fields=['home_region_id', 'is_active'], name='rbac_subj_region_active_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Role',
            fields=base_fields() + [
                ('name', models.CharField(help_text="Role name (e.g., 'FIELD_SUPERVISOR')", max_length=64, unique=True)),
                ('display_name', models.CharField(blank=True, help_text='Role display name', max_length=100)),
                ('description', models.TextField(blank=True, help_text='Role description')),
                ('hierarchy_level', models.PositiveIntegerField(db_index=True, default=1, help_text='Higher is more privileged')),
                ('is_national', models.BooleanField(default=False, help_text='Role reaches resources regardless of geographic boundary')),
                ('default_scope', models.CharField(choices=SCOPE_TYPE_CHOICES, default='team', help_text='Scope given to assignments projected from a primary role', max_length=20)),
                ('is_system', models.BooleanField(db_index=True, default=False, help_text='Whether this is a built-in role')),
                ('is_active', models.BooleanField(db_index=True, default=True, help_text='Inactive roles are not loaded into the registry')),
            ],
            options={
                'db_table': 'rbac_roles',
                'ordering': ['-hierarchy_level', 'name'],
            },
        ),
        migrations.CreateModel(
            name='AuditLog',
            fields=base_fields() + [
                ('subject_id', models.UUIDField(blank=True, db_index=True, help_text='Subject that requested the action', null=True)),
                ('action', models.CharField(db_index=True, help_text="Requested action (e.g., 'update')", max_length=64)),
                ('resource_type', models.CharField(db_index=True, help_text="Resource type (e.g., 'projects')", max_length=64)),
                ('resource_id', models.UUIDField(blank=True, db_index=True, help_text='Resource instance id', null=True)),
                ('resource_scope', models.CharField(blank=True, help_text='Geographic scope of the resource', max_length=20)),
                ('resource_context', models.JSONField(blank=True, default=dict, help_text='Full resource context the decision was made on')),
                ('allowed', models.BooleanField(db_index=True, help_text='Whether the action was allowed')),
                ('reason', models.CharField(db_index=True, help_text='Decision reason code', max_length=32)),
                ('matched_rule', models.CharField(blank=True, help_text='Rule or grant that decided the outcome', max_length=64)),
                ('role', models.CharField(blank=True, help_text='Role that granted the action, if any', max_length=64)),
                ('cross_boundary_access', models.BooleanField(db_index=True, default=False, help_text='Allowed through a privileged role outside normal locality')),
                ('cache_hit', models.BooleanField(default=False, help_text='Decision was served from the decision cache')),
                ('evaluated_at', models.DateTimeField(help_text='When the decision was evaluated')),
                ('error_detail', models.TextField(blank=True, help_text='Failure detail for authorization_error decisions')),
                ('trace', models.JSONField(blank=True, default=list, help_text='Evaluated rule trace')),
            ],
            options={
                'db_table': 'rbac_audit_logs',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['subject_id', 'created_at'], name='rbac_audit_subject_idx'),
                    models.Index(fields=['resource_type', 'resource_id'], name='rbac_audit_resource_idx'),
                    models.Index(fields=['reason', 'created_at'], name='rbac_audit_reason_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TeamMembership',
            fields=base_fields() + [
                ('team_id', models.UUIDField(db_index=True, help_text='Team the subject belongs to')),
                ('is_active', models.BooleanField(default=True, help_text='Whether the membership is in effect')),
                ('expires_at', models.DateTimeField(blank=True, help_text='Membership ends at this time (null for no expiry)', null=True)),
                ('subject', models.ForeignKey(help_text='Member subject', on_delete=django.db.models.deletion.CASCADE, related_name='team_memberships', to='rbac.subject')),
            ],
            options={
                'db_table': 'rbac_team_memberships',
                'ordering': ['subject', 'team_id'],
                'indexes': [
                    models.Index(fields=['subject', 'is_active'], name='rbac_team_subj_active_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='RolePermission',
            fields=base_fields() + [
                ('resource', models.CharField(help_text="Resource type (e.g., 'projects') or '*'", max_length=64)),
                ('action', models.CharField(help_text="Action (e.g., 'update') or '*'", max_length=64)),
                ('role', models.ForeignKey(help_text='Role that grants this permission', on_delete=django.db.models.deletion.CASCADE, related_name='role_permissions', to='rbac.role')),
            ],
            options={
                'db_table': 'rbac_role_permissions',
                'ordering': ['role', 'resource', 'action'],
                'unique_together': {('role', 'resource', 'action')},
            },
        ),
        migrations.CreateModel(
            name='RoleAssignment',
            fields=base_fields() + [
                ('role_name', models.CharField(db_index=True, help_text='Name of the assigned role', max_length=64)),
                ('scope_type', models.CharField(choices=SCOPE_TYPE_CHOICES, help_text='Scope the role is granted at', max_length=20)),
                ('scope_id', models.UUIDField(blank=True, help_text='Team, region or organization id (null for global)', null=True)),
                ('is_active', models.BooleanField(default=True, help_text='Whether the assignment is in effect')),
                ('expires_at', models.DateTimeField(blank=True, help_text='Assignment ends at this time (null for no expiry)', null=True)),
                ('assigned_by', models.ForeignKey(blank=True, help_text='Subject who made the assignment', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='role_assignments_made', to='rbac.subject')),
                ('subject', models.ForeignKey(help_text='Subject holding the role', on_delete=django.db.models.deletion.CASCADE, related_name='role_assignments', to='rbac.subject')),
            ],
            options={
                'db_table': 'rbac_role_assignments',
                'ordering': ['subject', 'role_name'],
                'indexes': [
                    models.Index(fields=['subject', 'is_active'], name='rbac_ra_subject_active_idx'),
                    models.Index(fields=['scope_type', 'scope_id'], name='rbac_ra_scope_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(scope_type='global', scope_id__isnull=True)
                            | (~models.Q(scope_type='global') & models.Q(scope_id__isnull=False))
                        ),
                        name='rbac_role_assignment_scope_id_matches_type',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ResourceAssignment',
            fields=base_fields() + [
                ('resource_type', models.CharField(help_text="Resource type (e.g., 'projects')", max_length=64)),
                ('resource_id', models.UUIDField(help_text='Resource instance id')),
                ('team_id', models.UUIDField(blank=True, db_index=True, help_text='Team granted access (team assignment)', null=True)),
                ('granted_scope', models.CharField(choices=GRANTED_SCOPE_CHOICES, help_text='Broadest action level granted on the resource', max_length=20)),
                ('is_active', models.BooleanField(default=True, help_text='Whether the assignment is in effect')),
                ('expires_at', models.DateTimeField(blank=True, help_text='Assignment ends at this time (null for no expiry)', null=True)),
                ('assigned_by', models.ForeignKey(blank=True, help_text='Subject who made the assignment', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='resource_assignments_made', to='rbac.subject')),
                ('subject', models.ForeignKey(blank=True, help_text='Subject granted access (direct assignment)', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='resource_assignments', to='rbac.subject')),
            ],
            options={
                'db_table': 'rbac_resource_assignments',
                'ordering': ['resource_type', 'resource_id'],
                'indexes': [
                    models.Index(fields=['resource_type', 'resource_id'], name='rbac_res_resource_idx'),
                    models.Index(fields=['subject', 'is_active'], name='rbac_res_subject_active_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(subject__isnull=False, team_id__isnull=True)
                            | models.Q(subject__isnull=True, team_id__isnull=False)
                        ),
                        name='rbac_resource_assignment_subject_xor_team',
                    ),
                ],
            },
        ),
    ]
