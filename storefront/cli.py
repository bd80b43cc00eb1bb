# Overview: Flask CLI command groups for bootstrap, migration, and inspection.

# storefront/cli.py
# Commands Legend:
# Prereqs:
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="storefront:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Store bootstrap/migration:
# - python -m flask store init
#   Create the relational schema (if absent) and seed default settings.
# - python -m flask store migrate --source data.json
#   One-shot merge of a snapshot file into the relational store. Idempotent.
# - python -m flask store stats
#   Print dashboard counters for the active backend.
#
# User inspection/bootstrap:
# - python -m flask users list
# - python -m flask users create --username admin --password "secret" --role "Super Admin"
#
# Audit log:
# - python -m flask logs tail --limit 20
#   Newest audit entries (default: RECENT_LOG_LIMIT).

import os

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StoreError, StorageError
from .models import ROLES, ROLE_MEMBER
from .storage import SnapshotStorage, SqlStorage, get_storage


@click.group('store')
def store_group():
    """Store bootstrap and migration commands."""


@store_group.command('init')
@with_appcontext
def init_store():
    """Create the relational schema if absent and seed default settings."""
    storage = _relational_target()
    settings = storage.get_settings()
    click.echo(f"PASS Schema ready ({len(settings)} settings)")
    if storage.is_setup_required():
        click.echo("WARN  No users yet: complete setup or run `flask users create`")


@store_group.command('migrate')
@click.option('--source', 'source_path', default=None, help='Snapshot file (defaults to SNAPSHOT_PATH)')
@click.option('--strict', is_flag=True, help='Exit non-zero if any record failed')
@with_appcontext
def migrate_store(source_path, strict):
    """
    Merge a snapshot file into the relational store.

    Users are matched by username (case-insensitive), categories and products
    keep their ids, settings are upserted. Safe to re-run.

    The source file is only read; legacy plaintext credentials are hashed
    on their way into the database, not written back.

    Do not run while the application is serving traffic.
    """
    from .services.migration_service import migrate_snapshot

    source_path = source_path or current_app.config["SNAPSHOT_PATH"]
    if not os.path.exists(source_path):
        click.echo(f"No snapshot found at {source_path}. Skipping migration.")
        return

    click.echo(f"START Migrating {source_path} into {current_app.config['SQLALCHEMY_DATABASE_URI']}...")
    try:
        source = SnapshotStorage(
            source_path,
            default_password=current_app.config["DEFAULT_USER_PASSWORD"],
            bcrypt_rounds=int(current_app.config["BCRYPT_ROUNDS"]),
            seed_if_missing=False,
            upgrade_legacy=False,
        )
    except StorageError as exc:
        raise click.ClickException(f"FAIL Could not read snapshot: {exc}")

    report = migrate_snapshot(source, _relational_target())

    for name, tally in report.tallies.items():
        click.echo(
            f"{name:<12} inserted={tally.inserted:<5} skipped={tally.skipped:<5} failed={tally.failed}"
        )
    for failure in report.failures:
        click.echo(f"FAIL {failure.entity} {failure.source_id}: {failure.message}")

    if report.ok:
        click.echo("DONE Migration complete")
    elif strict:
        raise click.ClickException(f"{len(report.failures)} record(s) failed")
    else:
        click.echo(f"WARN  Migration finished with {len(report.failures)} failed record(s)")


@store_group.command('stats')
@with_appcontext
def store_stats():
    """Print dashboard counters."""
    for key, value in get_storage().dashboard_stats().items():
        click.echo(f"{key:<16} {value}")


def _relational_target() -> SqlStorage:
    storage = get_storage()
    if isinstance(storage, SqlStorage):
        return storage
    target = SqlStorage(
        default_password=current_app.config["DEFAULT_USER_PASSWORD"],
        bcrypt_rounds=int(current_app.config["BCRYPT_ROUNDS"]),
    )
    target.init_schema()
    return target


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role, status and last login."""
    users = get_storage().list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'ID':<5} {'Username':<24} {'Role':<12} {'Status':<8} {'Last login'}")
    click.echo("=" * 72)
    for user in users:
        click.echo(
            f"{user['id']:<5} {user['username']:<24} {user['role']:<12} "
            f"{user['status']:<8} {user['last_login'] or '-'}"
        )
    click.echo("=" * 72 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Unique username (case-insensitive)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), default=ROLE_MEMBER, show_default=True)
@with_appcontext
def create_user_cli(username, password, role):
    """Create a user."""
    try:
        user = get_storage().add_user(
            {"username": username, "password": password, "role": role},
            actor="cli",
        )
    except StoreError as exc:
        raise click.ClickException(f"FAIL {exc.public_message()}")
    click.echo(f"PASS Created user: {user['username']} (ID: {user['id']}) with role '{user['role']}'")


# =============================================================================
# AUDIT LOG COMMANDS
# =============================================================================

@click.group('logs')
def logs_group():
    """Audit log inspection."""


@logs_group.command('tail')
@click.option('--limit', type=int, default=None, help='Entries to show (defaults to RECENT_LOG_LIMIT)')
@with_appcontext
def tail_logs(limit):
    """Show the newest audit entries."""
    if limit is None:
        limit = current_app.config["RECENT_LOG_LIMIT"]
    try:
        entries = get_storage().list_recent_logs(limit=limit)
    except StoreError as exc:
        raise click.ClickException(exc.public_message())
    for entry in entries:
        click.echo(
            f"{entry['id']:<6} {entry['timestamp'] or '-':<21} {entry['user'] or '-':<12} "
            f"{entry['action']:<18} {entry['details'] or ''}"
        )


def register_commands(app):
    app.cli.add_command(store_group)
    app.cli.add_command(users_group)
    app.cli.add_command(logs_group)
