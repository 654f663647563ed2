# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/stationauth/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--station "Main Station"]
#   Idempotent bootstrap: creates tables, a default station and a super admin.
#
# Users:
# - python -m flask users create-super-admin --email root@example.com --password "Password123!"
#   Create (or promote) a platform super admin. The first one has no approver.
# - python -m flask users roles admin@stationauth.local
#   Show a user's grants, including pending station admin requests.
#
# Registrations:
# - python -m flask registrations list --status pending
#   List station registration requests.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Identity, Station
from .roles import Role
from .services.context import get_services
from .services.identity_provider import IdentityError
from .services.stores import RoleStore
from .time_utils import utcnow


DEFAULT_SUPER_ADMIN_EMAIL = "admin@stationauth.local"
DEFAULT_PASSWORD = "Password123!"


def _ensure_super_admin(email: str, password: str) -> tuple[Identity, bool]:
    """Create the identity if needed and give it super_admin. Returns (identity, created)."""
    provider = get_services().provider
    identity = db.session.query(Identity).filter_by(email=email.strip().lower()).first()
    created = False
    if identity is None:
        identity = provider.admin_create_user(
            email=email,
            password=password,
            email_confirm=True,
            user_metadata={"full_name": "Super Admin"},
        )
        created = True

    store = RoleStore()
    if store.find_grant(identity.id, Role.SUPER_ADMIN.value, None) is None:
        # Bootstrap grant: no approver exists yet
        store.insert_grant(
            user_id=identity.id,
            role=Role.SUPER_ADMIN.value,
            station_id=None,
            assigned_by=None,
            assigned_at=utcnow(),
        )
    return identity, created


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--station', 'station_name', default='Main Station', help='Default station name')
@with_appcontext
def init_system(station_name):
    """
    Initialize the platform: schema, one station, one super admin.

    Creates:
    - Tables (if missing)
    - Default station (if no station exists)
    - Super admin admin@stationauth.local / Password123!

    SECURITY: Change the password immediately in production!
    """
    click.echo("START Initializing station auth...")

    db.create_all()

    station = db.session.query(Station).first()
    if not station:
        station = Station(name=station_name)
        db.session.add(station)
        db.session.commit()
        click.echo(f"PASS Created default station: {station.name} (ID: {station.id})")
    else:
        click.echo(f"PASS Using existing station: {station.name} (ID: {station.id})")

    try:
        identity, created = _ensure_super_admin(DEFAULT_SUPER_ADMIN_EMAIL, DEFAULT_PASSWORD)
    except IdentityError as e:
        click.echo(f"FAIL Failed to create super admin: {str(e)}")
        return

    if created:
        click.echo(f"PASS Created super admin: {identity.email}")
    else:
        click.echo(f"WARN  Super admin '{identity.email}' already exists, skipping...")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Station auth initialized")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   {DEFAULT_SUPER_ADMIN_EMAIL} / {DEFAULT_PASSWORD}")
    click.echo("")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-super-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_super_admin_cli(email, password):
    """Create a super admin account, or promote an existing identity."""
    try:
        identity, created = _ensure_super_admin(email, password)
    except IdentityError as e:
        click.echo(f"FAIL {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return

    verb = "Created" if created else "Promoted"
    click.echo(f"PASS {verb} super admin: {identity.email}")
    click.echo(f"     User ID: {identity.id}")


@users_group.command('roles')
@click.argument('email')
@with_appcontext
def user_roles(email):
    """Show a user's role grants."""
    identity = db.session.query(Identity).filter_by(email=email.strip().lower()).first()
    if not identity:
        click.echo(f"FAIL User '{email}' not found")
        return

    grants = RoleStore().list_roles(identity.id)
    click.echo(f"\nRoles for {identity.email} ({identity.id}):")
    if not grants:
        click.echo("  (none - pending approval)")
        return
    for grant in grants:
        status = "PENDING COUNTERSIGNATURE" if grant.is_pending_request else "active"
        station = grant.station_id or "-"
        click.echo(f"  {grant.role:<14} station={station:<36} {status}")


@click.group('registrations')
def registrations_group():
    """Station registration inspection."""


@registrations_group.command('list')
@click.option('--status', type=click.Choice(['pending', 'approved', 'rejected']), help='Filter by status')
@with_appcontext
def list_registrations(status):
    """List station registration requests."""
    registrations = get_services().workflow.list_registrations(status)
    if not registrations:
        click.echo("No registration requests found.")
        return

    click.echo(f"\n{'ID':<38} {'Status':<10} {'Company':<30} Contact")
    click.echo("-" * 100)
    for r in registrations:
        click.echo(f"{r.id:<38} {r.status:<10} {r.company_name[:30]:<30} {r.contact_email}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(registrations_group)
