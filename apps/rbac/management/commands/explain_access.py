"""
Management command to explain an authorization decision.

Runs the full decision algorithm for one request, bypassing the decision
cache, and prints every evaluated step. The explanation is audited like any
other decision.
"""
import json
import uuid

from django.core.management.base import BaseCommand, CommandError

from apps.rbac.services import get_authorization_service
from apps.rbac.types import GeographicScope, ResourceContext


def _uuid_arg(value):
    try:
        return uuid.UUID(value)
    except ValueError:
        raise CommandError(f"Not a valid UUID: {value!r}") from None


class Command(BaseCommand):
    help = 'Explain whether a subject may perform an action on a resource'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument('subject_id', type=str, help='Subject ID')
        parser.add_argument('action', type=str, help="Action (e.g., 'update')")
        parser.add_argument('resource_type', type=str, help="Resource type (e.g., 'projects')")
        parser.add_argument(
            '--scope',
            required=True,
            choices=[scope.value for scope in GeographicScope],
            help='Geographic scope of the resource',
        )
        parser.add_argument('--resource-id', type=str, help='Resource instance ID')
        parser.add_argument('--team', type=str, help='Owning team ID')
        parser.add_argument('--region', type=str, help='Owning region ID')
        parser.add_argument('--organization', type=str, help='Owning organization ID')
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print the decision as JSON',
        )

    def handle(self, *args, **options):
        resource = ResourceContext(
            resource_type=options['resource_type'],
            geographic_scope=options['scope'],
            resource_id=_uuid_arg(options['resource_id']) if options['resource_id'] else None,
            team_id=_uuid_arg(options['team']) if options['team'] else None,
            region_id=_uuid_arg(options['region']) if options['region'] else None,
            organization_id=_uuid_arg(options['organization']) if options['organization'] else None,
        )
        subject_id = _uuid_arg(options['subject_id'])

        decision = get_authorization_service().explain(subject_id, options['action'], resource)

        if options['json']:
            self.stdout.write(json.dumps(decision.to_dict(), indent=2))
            return

        self.stdout.write(f"Subject:  {subject_id}")
        self.stdout.write(f"Request:  {resource.permission(options['action'])} on {resource.scope_key}")
        self.stdout.write('=' * 70)
        for number, step in enumerate(decision.trace, start=1):
            parts = [f"{number:>2}. {step.step:<20} {step.outcome}"]
            if step.role:
                parts.append(f"role={step.role}")
            if step.rule_id:
                parts.append(f"rule={step.rule_id}")
            if step.detail:
                parts.append(f"({step.detail})")
            self.stdout.write(' '.join(parts))
        self.stdout.write('=' * 70)

        summary = (
            f"{'ALLOW' if decision.allowed else 'DENY'}: {decision.reason.value}"
            + (f" via {decision.role}" if decision.role else '')
            + (f" [{decision.matched_rule}]" if decision.matched_rule else '')
            + (' (cross-boundary access)' if decision.cross_boundary_access else '')
        )
        style = self.style.SUCCESS if decision.allowed else self.style.ERROR
        self.stdout.write(style(summary))
