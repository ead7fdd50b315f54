# Overview: Flask CLI command groups for bootstrap, permission repair, and maintenance.

# backend/quotedesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates permission resources and default role grants.
#
# Permission inspection/repair:
# - python -m flask permissions list [--role salesperson]
#   Show the capability matrix (optionally for one role).
# - python -m flask permissions grant salesperson orders delete
#   Grant an action on a resource to a role.
# - python -m flask permissions revoke customer orders create
#   Revoke an action on a resource from a role.
#
# Role assignment (identity is external; this only records roles):
# - python -m flask roles assign user-123 salesperson --access master
#   Assign a role; --access sets client access scope for salespeople.
#
# Orders:
# - python -m flask orders regenerate-document Q-2026-00042
#   Re-render the quote PDF for an order (runs as the system actor).
#
# Maintenance:
# - python -m flask audit purge --before 2025-01-01 [--yes]
#   Delete audit entries created before the given date (retention policy).

import click
from flask.cli import with_appcontext

from .errors import QuoteDeskError
from .extensions import db
from .models import Resource, ResourcePermission, ROLES
from .permissions import ACTIONS
from .services import permission_service
from .services import access_scope_service
from .services import audit_service
from .services import document_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the permission system.

    Creates every permission resource and assigns the default grants to the
    salesperson and customer roles. Admin is implicit and has no rows.
    Safe to run multiple times (idempotent); manual changes survive.
    """
    click.echo("START Initializing quotedesk...")

    click.echo("\nLIST Creating resources...")
    resource_count = permission_service.initialize_resources()
    click.echo(f"PASS Created {resource_count} new resources")

    total_resources = db.session.query(Resource).count()
    click.echo(f"   Total resources in system: {total_resources}")

    click.echo("\nLINK Assigning default permissions to roles...")
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {assignment_count} new role-resource grants")

    click.echo("\nSTATS Grant rows by role:")
    click.echo("="*60)
    for role in ROLES:
        if role == permission_service.ROLE_ADMIN:
            click.echo(f"  {role.upper():<12} -> all (implicit)")
            continue
        rows = db.session.query(ResourcePermission).filter_by(role=role).count()
        click.echo(f"  {role.upper():<12} -> {rows} resources")
    click.echo("="*60)
    click.echo("\nDONE quotedesk initialized successfully!")
    click.echo("")


@click.group('permissions')
def permissions_group():
    """Permission inspection and repair commands."""


@permissions_group.command('list')
@click.option('--role', type=click.Choice(list(ROLES)), help='Filter by role name')
@with_appcontext
def list_permissions_cli(role):
    """Show the role x resource capability matrix."""
    roles = [role] if role else list(ROLES)
    for role_name in roles:
        click.echo(f"\n{'='*60}")
        click.echo(f"Permissions for role: {role_name.upper()}")
        click.echo(f"{'='*60}")
        click.echo(f"{'Resource':<20} {'view':<6} {'create':<7} {'edit':<6} {'delete'}")
        click.echo("-"*60)
        for row in permission_service.get_role_permissions(role_name):
            flags = [
                "yes" if row["can_view"] else "-",
                "yes" if row["can_create"] else "-",
                "yes" if row["can_edit"] else "-",
                "yes" if row["can_delete"] else "-",
            ]
            click.echo(f"{row['resource']:<20} {flags[0]:<6} {flags[1]:<7} {flags[2]:<6} {flags[3]}")
    click.echo("")


@permissions_group.command('grant')
@click.argument('role_name')
@click.argument('resource_name')
@click.argument('action', type=click.Choice(list(ACTIONS)))
@with_appcontext
def grant_permission_cli(role_name, resource_name, action):
    """Grant an action on a resource to a role."""
    try:
        permission_service.set_role_permission(role_name, resource_name, action, True)
        click.echo(f"PASS Granted '{resource_name}:{action}' to role '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@permissions_group.command('revoke')
@click.argument('role_name')
@click.argument('resource_name')
@click.argument('action', type=click.Choice(list(ACTIONS)))
@with_appcontext
def revoke_permission_cli(role_name, resource_name, action):
    """Revoke an action on a resource from a role."""
    try:
        was_allowed = permission_service.has_permission(role_name, resource_name, action)
        permission_service.set_role_permission(role_name, resource_name, action, False)
        if was_allowed:
            click.echo(f"PASS Revoked '{resource_name}:{action}' from role '{role_name}'")
        else:
            click.echo(f"WARN  '{resource_name}:{action}' was not granted to '{role_name}'")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('roles')
def roles_group():
    """Role assignment for externally authenticated users."""


@roles_group.command('assign')
@click.argument('user_id')
@click.argument('role', type=click.Choice(list(ROLES)))
@click.option('--access', 'access_type', type=click.Choice(['master', 'own']),
              help='Client access scope (salespeople only)')
@with_appcontext
def assign_role_cli(user_id, role, access_type):
    """Assign a role to a user id issued by the identity provider."""
    try:
        row = access_scope_service.assign_role(user_id, role, access_type)
        suffix = f" (client access: {row.client_access_type})" if row.client_access_type else ""
        click.echo(f"PASS Assigned role '{role}' to user '{user_id}'{suffix}")
    except ValueError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('regenerate-document')
@click.argument('order_number')
@with_appcontext
def regenerate_document_cli(order_number):
    """
    Re-render and store the quote PDF for an order.

    Overwrites the previous artifact under the same storage key.
    """
    try:
        doc = document_service.regenerate_by_order_number(
            order_number, permission_service.SYSTEM_ACTOR
        )
    except QuoteDeskError as e:
        click.echo(f"FAIL Error: {str(e)}")
        raise SystemExit(1)

    click.echo(
        f"PASS Regenerated {doc.storage_key} "
        f"({doc.page_count} pages, {doc.row_count} rows, {doc.byte_size} bytes)"
    )


@click.group('audit')
def audit_group():
    """Audit log retention commands."""


@audit_group.command('purge')
@click.option('--before', 'before', type=click.DateTime(formats=['%Y-%m-%d']), required=True,
              help='Delete entries created before this date (UTC)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def purge_audit_cli(before, yes):
    """
    Delete order audit entries older than a cutoff.

    This is the only removal path for audit entries.
    """
    cutoff = before  # naive UTC, same as stored timestamps
    if not yes:
        click.confirm(
            f"WARN  This deletes all audit entries before {cutoff.date().isoformat()}. Continue?",
            abort=True,
        )

    deleted = audit_service.purge_before(cutoff)
    click.echo(f"Deleted {deleted} audit entries created before {cutoff.date().isoformat()}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(permissions_group)
    app.cli.add_command(roles_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(audit_group)
