# Overview: Flask CLI command groups for bootstrap, tenant inspection, and smart code checks.

# backend/tenantcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="tenantcore:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent) and the platform organization.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list [--all]
#   List organizations (platform organization excluded).
# - python -m flask orgs create --name "Acme Corp" --code "ACME" [--owner-actor-id <uuid>]
#   Create a new organization (tenant), optionally with its owner.
#
# Actor identities:
# - python -m flask actors create --name "Jane Doe" [--code jane]
#   Create a platform actor identity (USER entity).
# - python -m flask actors show <actor-id>
#   Resolve an actor's memberships, roles and permissions.
#
# Smart codes:
# - python -m flask smart-codes check HERA.CRM.CUSTOMER.ENTITY.V1 [...]
#   Validate one or more smart codes; exits non-zero if any fails.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import CoreError
from .extensions import db
from .services import membership_service, organization_service
from .services.smart_code_service import SMART_CODE_PATTERN, build_smart_code, is_valid_smart_code


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """
    Create all tables and the platform organization.

    Idempotent: safe to run repeatedly. Production schemas should use
    `flask db upgrade` instead of create_all.
    """
    click.echo("START Initializing tenantcore schema...")
    db.create_all()
    platform = organization_service.ensure_platform_organization()
    db.session.commit()
    click.echo(f"PASS Schema ready. Platform organization: {platform.id}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    organization_service.ensure_platform_organization()
    db.session.commit()

    click.echo("PASS Database reset complete.")


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive organizations')
@with_appcontext
def list_orgs(include_inactive):
    """List all organizations."""
    orgs = organization_service.list_organizations(include_inactive=include_inactive)

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Name':<30} {'Code':<15} {'Status'}")
    click.echo("="*100)

    for org in orgs:
        click.echo(f"{org.id:<38} {org.organization_name[:30]:<30} {org.organization_code:<15} {org.status}")

    click.echo("="*100 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--owner-actor-id', default=None, help='Platform actor id to make owner')
@with_appcontext
def create_org_cli(name, code, owner_actor_id):
    """Create a new organization (tenant)."""
    try:
        org = organization_service.create_organization(name, code, owner_actor_id=owner_actor_id)
    except CoreError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created organization: {org.organization_name} (ID: {org.id}, Code: {org.organization_code})")
    if owner_actor_id:
        click.echo(f"PASS Owner: {owner_actor_id}")


# =============================================================================
# ACTORS
# =============================================================================

@click.group('actors')
def actors_group():
    """Platform actor identity commands."""


@actors_group.command('create')
@click.option('--name', required=True, help='Display name')
@click.option('--code', default=None, help='Unique actor code (e.g. login name)')
@with_appcontext
def create_actor_cli(name, code):
    """Create a platform actor identity."""
    namespace = current_app.config.get("SMART_CODE_NAMESPACE", "HERA")
    try:
        actor = membership_service.create_actor_identity(
            name,
            build_smart_code(namespace, "PLATFORM", "USER", "IDENTITY"),
            entity_code=code,
        )
    except CoreError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created actor: {actor.entity_name} (ID: {actor.id})")


@actors_group.command('show')
@click.argument('actor_id')
@with_appcontext
def show_actor_cli(actor_id):
    """Show an actor's resolved memberships."""
    auth = membership_service.resolve_actor(actor_id)
    if not auth.is_resolved:
        click.echo(f"DENIED {auth.reason}")
        return

    click.echo(f"Actor {auth.actor_id} (default org: {auth.default_organization_id})")
    for m in auth.memberships:
        flags = ", ".join(f for f, on in (("owner", m.is_owner), ("admin", m.is_admin)) if on) or "-"
        click.echo(f"  {m.organization_code:<15} role={m.role or '-':<10} flags={flags}")
        click.echo(f"      permissions: {', '.join(sorted(m.permissions)) or '-'}")


# =============================================================================
# SMART CODES
# =============================================================================

@click.group('smart-codes')
def smart_codes_group():
    """Smart code utilities."""


@smart_codes_group.command('check')
@click.argument('codes', nargs=-1, required=True)
@click.pass_context
def check_smart_codes(ctx, codes):
    """Validate smart codes against the format. Exits 1 if any fails."""
    failed = 0
    for code in codes:
        if is_valid_smart_code(code):
            click.echo(f"PASS {code}")
        else:
            failed += 1
            click.echo(f"FAIL {code}")

    if failed:
        click.echo(f"\nExpected pattern: {SMART_CODE_PATTERN}")
        ctx.exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(actors_group)
    app.cli.add_command(smart_codes_group)
