# Overview: Flask CLI command groups for bootstrap, users and audit-trail maintenance.

# backend/crm/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "crm:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-username admin --admin-email admin@crm.local --admin-password ...]
#   Idempotent: create tables and a first admin user if no admin exists.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username ana --email ana@crm.local --password "Password123" --role user
# - python -m flask users set-role ana admin
#
# Audit trail:
# - python -m flask history reconcile
#   Write transition rows left pending by failed audit writes.
# - python -m flask history verify
#   Report opportunities whose history breaks the audit-trail invariants.
#
# Schema migrations are handled by Flask-Migrate: python -m flask db upgrade

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Opportunity, ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, set_role, PasswordValidationError, UserError
from .services.opportunity_store import OpportunityStore
from .services import history_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin')
@click.option('--admin-email', default='admin@crm.local')
@click.option('--admin-password', default='Password123!', help='Change immediately in production')
@with_appcontext
def init_system(admin_username, admin_email, admin_password):
    """Create tables and a first admin user (idempotent)."""
    click.echo("START Initializing CRM...")
    db.create_all()
    click.echo("PASS Tables ready")

    admin = db.session.query(User).filter_by(role=ROLE_ADMIN).first()
    if admin:
        click.echo(f"PASS Using existing admin: {admin.username} (ID: {admin.id})")
        return

    try:
        admin = create_user(admin_username, admin_email, admin_password, role=ROLE_ADMIN, full_name="Administrador")
    except (PasswordValidationError, UserError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin: {admin.username} (ID: {admin.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        raise click.ClickException("Refusing to reset without --yes")
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users")
        return
    for u in users:
        status = "active" if u.is_active else "inactive"
        click.echo(f"{u.id:>4}  {u.username:<20} {u.email:<32} {u.role:<6} {status}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), default='user', show_default=True)
@click.option('--full-name', default=None)
@with_appcontext
def create_user_command(username, email, password, role, full_name):
    try:
        user = create_user(username, email, password, role=role, full_name=full_name)
    except (PasswordValidationError, UserError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('set-role')
@click.argument('username')
@click.argument('role', type=click.Choice(VALID_ROLES))
@with_appcontext
def set_role_command(username, role):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found")
    set_role(user.id, role)
    click.echo(f"PASS {username} is now {role}")


@click.group('history')
def history_group():
    """Opportunity audit-trail maintenance."""


@history_group.command('reconcile')
@with_appcontext
def reconcile_history():
    """Write transition rows that are still pending."""
    report = history_service.reconcile_pending(
        OpportunityStore(),
        attempts=current_app.config.get("HISTORY_WRITE_ATTEMPTS", 3),
        backoff_base=current_app.config.get("HISTORY_RETRY_BACKOFF", 0.1),
    )
    click.echo(f"PASS Written: {len(report.written)}")
    if report.failed:
        for opportunity_id, seq in report.failed:
            click.echo(f"FAIL {opportunity_id} transition {seq}")
        raise click.ClickException(f"{len(report.failed)} transition(s) still pending")


@history_group.command('verify')
@with_appcontext
def verify_history():
    """Check every opportunity's history against the audit-trail invariants."""
    store = OpportunityStore()
    ids = [row.id for row in db.session.query(Opportunity.id).order_by(Opportunity.id.asc())]
    broken = 0
    for opportunity_id in ids:
        problems = history_service.verify_history(store, opportunity_id)
        if problems:
            broken += 1
            for problem in problems:
                click.echo(f"FAIL {opportunity_id}: {problem}")
    click.echo(f"Checked {len(ids)} opportunities, {broken} with problems")
    if broken:
        raise click.ClickException("Audit trail verification failed")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(history_group)
