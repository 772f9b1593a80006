# Overview: Flask CLI command groups for bootstrap and maintenance.

# backend/carparts/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply Alembic migrations (Flask-Migrate).
#
# Users:
# - python -m flask users create-superadmin --username root
#   Bootstrap the first superadmin (prompts for the password).
# - python -m flask users list
#   List all users with role and active status.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked sessions older than 30 days.

import click
from flask.cli import with_appcontext

from .errors import ValidationError
from .extensions import db
from .models import User
from .roles import SUPERADMIN
from .services import session_service
from .services.auth_service import hash_password


@click.group('users')
def users_group():
    """User bootstrap and inspection commands."""


@users_group.command('create-superadmin')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_superadmin_cli(username, password):
    """Create a superadmin account. The only way to create the first one."""
    username = username.strip()
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        raise SystemExit(1)

    try:
        password_hash = hash_password(password)
    except ValidationError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    user = User(username=username, password_hash=password_hash, role=SUPERADMIN, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created superadmin: {user.username} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Username':<30} {'Role':<12} {'Active'}")
    click.echo("="*60)
    for user in users:
        active_str = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.username:<30} {user.role:<12} {active_str}")
    click.echo("="*60 + "\n")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} expired or revoked sessions")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
