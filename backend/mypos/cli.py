# Overview: Flask CLI command groups for bootstrap and store access management.

# backend/mypos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Store management:
# - python -m flask stores create --name "Toko Maju" --code "MAJU"
#   Create a store (tenant).
# - python -m flask stores list
#   List all stores.
# - python -m flask stores issue-token --store-id 1 --user-ref kasir-01
#   Issue an access token; the plaintext is printed once.
# - python -m flask stores revoke-tokens --store-id 1
#   Revoke every active token of a store.

import click
from flask.cli import with_appcontext

from .errors import MyPosError
from .extensions import db
from .models import SessionToken, Store
from .services import session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask stores create' to add a store.")


@click.group('stores')
def stores_group():
    """Store (tenant) and access token management."""


@stores_group.command('list')
@with_appcontext
def list_stores():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id.asc()).all()

    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Tokens'}")
    click.echo("="*70)

    for store in stores:
        token_count = db.session.query(SessionToken).filter_by(store_id=store.id, is_revoked=False).count()
        active_str = "Yes" if store.is_active else "No"
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-':<15} {active_str:<8} {token_count}")

    click.echo("="*70 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', default=None, help='Short code (unique)')
@with_appcontext
def create_store_cli(name, code):
    """Create a new store (tenant)."""
    if code:
        existing = db.session.query(Store).filter_by(code=code).first()
        if existing:
            click.echo(f"FAIL Store with code '{code}' already exists")
            return

    store = Store(name=name, code=code, is_active=True)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code or '-'})")


@stores_group.command('issue-token')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--user-ref', default=None, help='Identity provider user id')
@click.option('--ttl-hours', type=int, default=None, help='Token lifetime (default SESSION_TTL_HOURS)')
@with_appcontext
def issue_token_cli(store_id, user_ref, ttl_hours):
    """Issue an access token for a store. The token is shown once."""
    try:
        session, token = session_service.create_session(store_id, user_ref=user_ref, ttl_hours=ttl_hours)
    except MyPosError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Token issued for store {store_id} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@stores_group.command('revoke-tokens')
@click.option('--store-id', type=int, required=True, help='Store ID')
@with_appcontext
def revoke_tokens_cli(store_id):
    """Revoke every active token of a store."""
    count = session_service.revoke_store_sessions(store_id)
    click.echo(f"PASS Revoked {count} token(s) for store {store_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
