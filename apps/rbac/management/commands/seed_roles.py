"""
Management command to seed the built-in field operations roles.

Creates or updates a Role row and its RolePermission rows for every entry of
DEFAULT_ROLE_DEFINITIONS (with inherited permissions flattened in). This
command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.models import Role, RolePermission
from apps.rbac.registry import DEFAULT_ROLE_DEFINITIONS, RoleRegistry, split_permission


class Command(BaseCommand):
    help = 'Seed the built-in field operations roles and permissions (idempotent)'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--prune',
            action='store_true',
            help='Remove permissions from system roles that are no longer defined',
        )

    def handle(self, *args, **options):
        """Create or update every built-in role."""
        registry = RoleRegistry.from_definitions(DEFAULT_ROLE_DEFINITIONS)

        created_count = 0
        updated_count = 0
        pruned_count = 0

        self.stdout.write('Seeding built-in roles...\n')

        with transaction.atomic():
            for definition in registry:
                role = Role.objects_with_deleted.filter(name=definition.name).first()
                fields = {
                    'display_name': definition.display_name,
                    'description': definition.description,
                    'hierarchy_level': definition.level,
                    'is_national': definition.is_national,
                    'default_scope': definition.default_scope.value,
                    'is_system': True,
                    'is_active': True,
                }

                if role is None:
                    role = Role.objects.create(name=definition.name, **fields)
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f'✓ Created: {role.name}'))
                else:
                    changed = [name for name, value in fields.items() if getattr(role, name) != value]
                    if role.is_deleted:
                        role.deleted_at = None
                        changed.append('deleted_at')
                    if changed:
                        for name in changed:
                            if name != 'deleted_at':
                                setattr(role, name, fields[name])
                        role.save()
                        updated_count += 1
                        self.stdout.write(self.style.WARNING(f'↻ Updated: {role.name} ({", ".join(changed)})'))
                    else:
                        self.stdout.write(self.style.HTTP_INFO(f'  Exists: {role.name}'))

                wanted = {split_permission(permission) for permission in definition.permissions}
                existing = {
                    (rp.resource, rp.action): rp
                    for rp in RolePermission.objects.filter(role=role)
                }
                for resource, action in sorted(wanted - set(existing)):
                    RolePermission.objects.grant_permission(role, resource, action)

                if options['prune']:
                    for pair in set(existing) - wanted:
                        existing[pair].hard_delete()
                        pruned_count += 1
                        self.stdout.write(self.style.WARNING(f'  - Pruned: {role.name} {pair[0]}.{pair[1]}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(registry) - created_count - updated_count} unchanged'
                + (f', {pruned_count} permissions pruned' if options['prune'] else '')
            )
        )

        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Roles Summary:')
        self.stdout.write('=' * 70)
        for role in Role.objects.system_roles().order_by('-hierarchy_level'):
            flags = ' national' if role.is_national else ''
            self.stdout.write(
                f'  • {role.name:<24} level {role.hierarchy_level} '
                f'{role.default_scope:<12} {role.role_permissions.count()} permissions{flags}'
            )
