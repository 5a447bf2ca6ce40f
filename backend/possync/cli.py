# Overview: Flask CLI commands for the terminal's offline store and sync queue.

# backend/possync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to possync (PowerShell: $env:FLASK_APP="possync").
# - Use: python -m flask offline <command> [options]
#
# - python -m flask offline init
#   Idempotent: create local collections and upgrade the schema marker.
# - python -m flask offline status
#   Queue counts, last sync time, device id.
# - python -m flask offline sync
#   Drain the queue once against the ledger.
# - python -m flask offline cleanup [--older-than-hours 24] [--include-flagged]
#   Delete synced sales older than the retention window.
#   Sales kept for manual review stay unless --include-flagged is given.
# - python -m flask offline refresh
#   Re-download products, stock and reference data from the ledger.
# - python -m flask offline pending [--status failed]
#   List queued sales.
# - python -m flask offline clear --yes [--force]
#   Wipe every local collection (refuses with unsynced sales unless --force).
# - python -m flask offline worker [--interval 300]
#   Run sync + cleanup periodically in the foreground.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .services import local_store
from .services.local_store import LocalStoreError
from .services.reference_data_service import refresh_reference_data
from .services.sync_service import get_sync_manager


@click.group('offline')
def offline_group():
    """Offline queue and local store commands."""


@offline_group.command('init')
@with_appcontext
def init_cli():
    version = local_store.init_local_store()
    click.echo(f"Local store ready (schema v{version}, device {local_store.get_device_id()}).")


@offline_group.command('status')
@with_appcontext
def status_cli():
    status = get_sync_manager().sync_status()
    for key, value in status.items():
        click.echo(f"{key:>20}: {value}")


@offline_group.command('sync')
@with_appcontext
def sync_cli():
    summary = get_sync_manager().sync_pending_sales()
    click.echo(summary["message"])
    for result in summary["results"]:
        if result.get("needs_review"):
            click.echo(f"  REVIEW {result['local_id']} -> {result['invoice_number']}: {result['error']}")
        elif result["success"]:
            click.echo(f"  OK   {result['local_id']} -> {result['invoice_number']}")
        else:
            click.echo(f"  FAIL {result['local_id']}: {result['error']}")


@offline_group.command('cleanup')
@click.option('--older-than-hours', type=float, default=None, help='Defaults to SYNCED_RETENTION_HOURS.')
@click.option('--include-flagged', is_flag=True, help='Also delete synced sales kept for manual review.')
@with_appcontext
def cleanup_cli(older_than_hours, include_flagged):
    removed = get_sync_manager().cleanup_synced_sales(
        older_than_hours=older_than_hours, include_flagged=include_flagged
    )
    click.echo(f"Removed {removed} synced sale(s).")


@offline_group.command('refresh')
@with_appcontext
def refresh_cli():
    result = refresh_reference_data()
    for name, n in result["counts"].items():
        click.echo(f"{name:>16}: {n}")


@offline_group.command('pending')
@click.option('--status', type=click.Choice(['pending', 'syncing', 'synced', 'failed']), default=None)
@with_appcontext
def pending_cli(status):
    sales = local_store.get_pending_sales_by_status(status) if status else local_store.get_all_pending_sales()
    if not sales:
        click.echo("No queued sales.")
        return
    for sale in sales:
        click.echo(
            f"{sale.temp_invoice_number}  {sale.sync_status:<8} retries={sale.retry_count} "
            f"total={sale.total_amount} created={sale.created_at}"
            + (f"  error={sale.sync_error}" if sale.sync_error else "")
        )


@offline_group.command('clear')
@click.option('--yes', is_flag=True, help='Confirm wiping local data.')
@click.option('--force', is_flag=True, help='Also drop sales that have not synced yet.')
@with_appcontext
def clear_cli(yes, force):
    if not yes:
        raise click.UsageError("Refusing to clear local data without --yes")
    try:
        local_store.clear_all_offline_data(force=force)
    except LocalStoreError as e:
        raise click.ClickException(str(e))
    click.echo("Local data cleared.")


@offline_group.command('worker')
@click.option('--interval', type=float, default=None, help='Defaults to SYNC_INTERVAL_SECONDS.')
@with_appcontext
def worker_cli(interval):
    """Run the background sync loop until interrupted."""
    app = current_app._get_current_object()
    manager = get_sync_manager()
    manager.start_background_sync(app, interval_seconds=interval)
    click.echo("Sync worker running; Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        manager.stop_background_sync(timeout=5)
        click.echo("Sync worker stopped.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(offline_group)
