# Overview: Flask CLI command groups for bootstrap, sync operations and notification maintenance.

# backend/stockline/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockline (PowerShell: $env:FLASK_APP="stockline").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--demo]
#   Create remote tables (idempotent); --demo also registers a demo store and owner.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all remote tables and clear the local cache.
#
# Users:
# - python -m flask users create-developer --username dev --email dev@stockline.local --password "Password123!"
#   Create a cross-tenant developer account (no store, is_developer=True); it may
#   list every tenant's dead letters and switch sync online/offline over HTTP.
#
# Sync queue:
# - python -m flask sync run
#   Run one sync pass now and print the report.
# - python -m flask sync status
#   Show online state, pending and dead-lettered counts.
# - python -m flask sync dead-letters
#   List queue entries that exhausted their retry budget.
# - python -m flask sync requeue 12
#   Put dead-lettered entry 12 back in the queue with a fresh retry budget.
#
# Notifications:
# - python -m flask notifications reconcile [--store-id <uuid>]
#   Run a reconciliation pass for one store, or every store.
# - python -m flask notifications list --store-id <uuid> [--unread]
# - python -m flask notifications reset [--store-id <uuid>] --yes
#   Delete notifications for one store, or every store.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db, get_data_adapter, get_local_store, get_notification_engine, get_sync_manager
from .models import Store
from .services import auth_service
from .validation import ValidationError, ConflictError

DEMO_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo', is_flag=True, help='Also register a demo store and owner')
@with_appcontext
def init_system(demo):
    """Create remote tables and, optionally, a demo tenant."""
    click.echo("START Initializing Stockline...")

    db.create_all()
    click.echo("PASS Remote tables created")
    click.echo(f"PASS Local cache schema version {get_local_store().schema_version}")

    if not demo:
        return

    adapter = get_data_adapter()
    try:
        result = auth_service.register_user(
            adapter,
            username="demo",
            email="demo@stockline.local",
            password=DEMO_PASSWORD,
            store_name="Demo Store",
            subscription_tier="basic",
            trial_days=current_app.config["TRIAL_DAYS"],
        )
    except ConflictError:
        click.echo("WARN  Demo user already exists, skipping...")
        return
    except ValidationError as e:
        click.echo(f"FAIL Could not create demo tenant: {e}")
        return

    report = get_sync_manager().sync_now()
    click.echo(f"PASS Created store: {result['store']['name']} (ID: {result['store']['id']})")
    click.echo(f"PASS Created user: demo (demo@stockline.local) / {DEMO_PASSWORD}")
    click.echo(f"PASS Synced {report.synced} queued record(s)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables, recreate schema and clear the local cache.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    get_local_store().clear()
    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create-developer')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_developer_cli(username, email, password):
    """Create a developer (cross-tenant operator) account."""
    try:
        user = auth_service.create_developer(
            get_data_adapter(), username=username, email=email, password=password
        )
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        return
    except auth_service.PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        return

    report = get_sync_manager().sync_now()
    click.echo(f"PASS Created developer user: {username} ({user['email']})")
    click.echo(f"     is_developer = True, store_id = None")
    click.echo(f"     User ID: {user['id']}")
    click.echo(f"PASS Synced {report.synced} queued record(s)")


@click.group('sync')
def sync_group():
    """Sync queue inspection and repair."""


@sync_group.command('run')
@with_appcontext
def sync_run():
    """Run one sync pass now."""
    report = get_sync_manager().sync_now()
    if report.skipped:
        click.echo(f"WARN  Sync pass skipped ({report.reason})")
        return
    click.echo(
        f"PASS {report.attempted} attempted, {report.synced} synced, "
        f"{report.failed} failed, {report.dead_lettered} dead-lettered"
    )


@sync_group.command('status')
@with_appcontext
def sync_status():
    status = get_sync_manager().status()
    click.echo(f"Online:        {status['online']}")
    click.echo(f"Running:       {status['running']}")
    click.echo(f"Pending:       {status['pending']}")
    click.echo(f"Dead letters:  {status['dead_letters']}")


@sync_group.command('dead-letters')
@with_appcontext
def sync_dead_letters():
    entries = get_sync_manager().dead_letters()
    if not entries:
        click.echo("No dead-lettered operations.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<6} {'Op':<8} {'Table':<15} {'Entity':<38} {'Tries':<6} Last error")
    click.echo("=" * 100)
    for entry in entries:
        click.echo(
            f"{entry['id']:<6} {entry['operation']:<8} {entry['table']:<15} "
            f"{entry['entity_id']:<38} {entry['attempts']:<6} {entry['last_error'] or '-'}"
        )
    click.echo("=" * 100 + "\n")


@sync_group.command('requeue')
@click.argument('operation_id', type=int)
@with_appcontext
def sync_requeue(operation_id):
    if get_sync_manager().requeue(operation_id):
        click.echo(f"PASS Requeued operation {operation_id}")
    else:
        click.echo(f"FAIL No dead-lettered operation with ID {operation_id}")


@click.group('notifications')
def notifications_group():
    """Notification maintenance commands."""


def _store_ids(store_id):
    if store_id:
        return [store_id]
    return [row[0] for row in db.session.query(Store.id).order_by(Store.created_at).all()]


@notifications_group.command('reconcile')
@click.option('--store-id', help='Store ID (default: every store)')
@with_appcontext
def notifications_reconcile(store_id):
    engine = get_notification_engine()
    for sid in _store_ids(store_id):
        result = engine.reconcile(sid)
        click.echo(
            f"PASS {sid}: created {result.created}, superseded {result.superseded}, "
            f"duplicates removed {result.duplicates_removed}, expired removed {result.expired_removed}"
        )


@notifications_group.command('list')
@click.option('--store-id', required=True, help='Store ID')
@click.option('--unread', is_flag=True, help='Only unread notifications')
@with_appcontext
def notifications_list(store_id, unread):
    items = get_notification_engine().list_notifications(store_id, unread_only=unread)
    if not items:
        click.echo("No notifications found.")
        return
    for n in items:
        marker = " " if n["is_read"] else "*"
        click.echo(f"{marker} [{n['id']}] {n['priority']:<6} {n['title']}: {n['message']} ({n['created_at']})")


@notifications_group.command('reset')
@click.option('--store-id', help='Store ID (default: every store)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def notifications_reset(store_id, yes):
    if not yes:
        click.confirm(f"WARN This will delete notifications for {store_id or 'ALL stores'}. Are you sure?", abort=True)
    deleted = get_notification_engine().reset(store_id)
    click.echo(f"PASS Deleted {deleted} notification(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(notifications_group)
