# Overview: Flask CLI command groups for bootstrap, branch registry, sync and maintenance.

# backend/chainhub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to chainhub (PowerShell: $env:FLASK_APP="chainhub").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create tables and stamp the schema version (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-schema
#   Compare the stored schema version with the running code.
#
# Branch registry:
# - python -m flask branches create --code MAIN --name "Main Street" --endpoint https://main.example/api --outbound-key s3cret
#   Register a branch; prints its inbound API key once.
# - python -m flask branches list [--all]
# - python -m flask branches rotate-key MAIN
# - python -m flask branches deactivate MAIN
# - python -m flask branches add-employee MAIN --employee-code E01 --name "Ana"
#
# Catalog:
# - python -m flask catalog import products.csv
#   Upsert products from CSV (external_id, sku, barcode, name, base_price_cents, cost_cents, is_active).
#
# Sync:
# - python -m flask sync push --type products [--branch MAIN --branch NORTH] [--since 2026-01-01T00:00:00Z] [--full]
# - python -m flask sync retry-failed --branch MAIN [--limit 50]
# - python -m flask sync check-health --branch MAIN
#
# Ledger:
# - python -m flask ledger verify [--branch MAIN]
#   Report every (branch, product) whose stock differs from its movement sum.
#
# Maintenance:
# - python -m flask maintenance cleanup-sync-logs --retention-days 90
#   Delete terminal sync logs older than the retention window.
# - python -m flask maintenance fail-abandoned --older-than-minutes 60
#   Close sync logs left started/in_progress by a dead process.

import csv

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ChainHubError
from .models import Employee
from .services import (
    branch_service,
    catalog_service,
    inventory_service,
    maintenance_service,
    schema_service,
    sync_service,
)
from .validation import to_datetime


def _fail(message: str):
    click.echo(f"FAIL {message}")
    raise SystemExit(1)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and stamp the schema version."""
    db.create_all()
    version = schema_service.stamp_schema()
    click.echo(f"PASS Database ready at schema version {version}")


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
    schema_service.stamp_schema()
    click.echo("PASS Database reset complete")


@system_group.command('check-schema')
@with_appcontext
def check_schema():
    """Exit non-zero when the stored schema version does not match the code."""
    try:
        version = schema_service.check_schema()
    except ChainHubError as e:
        _fail(e.message)
    click.echo(f"PASS Schema version {version}")


@click.group('branches')
def branches_group():
    """Branch registry commands."""


@branches_group.command('create')
@click.option('--code', required=True, help='Unique branch code')
@click.option('--name', required=True, help='Display name')
@click.option('--endpoint', default=None, help='Branch API base URL for pushes')
@click.option('--outbound-key', default=None, help='Credential the hub presents to the branch')
@with_appcontext
def create_branch(code, name, endpoint, outbound_key):
    """Register a branch and print its inbound API key (shown once)."""
    try:
        branch, api_key = branch_service.create_branch(
            code=code, name=name, api_endpoint=endpoint, outbound_api_key=outbound_key
        )
    except ChainHubError as e:
        _fail(e.message)
    click.echo(f"PASS Created branch {branch.code} (ID: {branch.id})")
    click.echo(f"     API key: {api_key}")
    click.echo("     Store it now; it cannot be shown again.")


@branches_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive branches')
@with_appcontext
def list_branches(include_inactive):
    """List branches with network status and last sync."""
    branches = branch_service.list_branches(include_inactive=include_inactive)
    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'Code':<10} {'Name':<30} {'Active':<8} {'Status':<12} {'Last seen':<22} {'Last sync'}")
    click.echo("=" * 100)
    for b in branches:
        data = b.to_dict()
        click.echo(
            f"{b.code:<10} {b.name[:30]:<30} {('Yes' if b.is_active else 'No'):<8} {b.network_status:<12} "
            f"{(data['last_seen_at'] or '-'):<22} {data['last_sync_at'] or '-'}"
        )
    click.echo("=" * 100 + "\n")


@branches_group.command('rotate-key')
@click.argument('code')
@with_appcontext
def rotate_key(code):
    """Issue a new inbound API key; the old one stops working immediately."""
    try:
        branch = branch_service.require_branch_by_code(code)
    except ChainHubError as e:
        _fail(e.message)
    api_key = branch_service.rotate_api_key(branch)
    click.echo(f"PASS New API key for {branch.code}: {api_key}")


@branches_group.command('deactivate')
@click.argument('code')
@with_appcontext
def deactivate(code):
    """Soft-deactivate a branch (never deleted)."""
    try:
        branch = branch_service.require_branch_by_code(code)
    except ChainHubError as e:
        _fail(e.message)
    branch_service.deactivate_branch(branch)
    click.echo(f"PASS Deactivated branch {branch.code}")


@branches_group.command('add-employee')
@click.argument('code')
@click.option('--employee-code', 'employee_code', required=True, help='Employee code used by the branch')
@click.option('--name', required=True)
@click.option('--role', default=None)
@with_appcontext
def add_employee(code, employee_code, name, role):
    """Add an employee reference row so branch transactions can cite it."""
    try:
        branch = branch_service.require_branch_by_code(code)
    except ChainHubError as e:
        _fail(e.message)
    employee = Employee(branch_id=branch.id, employee_code=employee_code, name=name, role=role)
    db.session.add(employee)
    db.session.commit()
    click.echo(f"PASS Added employee {employee_code} to {branch.code} (ID: {employee.id})")


@click.group('catalog')
def catalog_group():
    """Catalog import commands."""


@catalog_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_catalog(path):
    """Upsert products from a CSV file with a header row."""
    with open(path, newline='', encoding='utf-8') as fh:
        rows = [dict(row) for row in csv.DictReader(fh)]
    if not rows:
        _fail("CSV file has no rows")

    for row in rows:
        for field in ("base_price_cents", "cost_cents", "is_active"):
            if row.get(field) == "":
                row.pop(field)

    try:
        result = catalog_service.upsert_products(rows)
    except ChainHubError as e:
        _fail(e.message)

    summary = result["summary"]
    click.echo(f"PASS Imported {summary['successful']}/{summary['total']} rows")
    for r in result["results"]:
        if not r["success"]:
            click.echo(f"     row {r['index'] + 2}: {r['code']} {r['error']}")


@click.group('sync')
def sync_group():
    """Branch synchronization commands."""


@sync_group.command('push')
@click.option('--type', 'sync_type', required=True, type=click.Choice(sync_service.PUSH_TYPES))
@click.option('--branch', 'codes', multiple=True, help='Branch code (repeatable); default all active')
@click.option('--since', default=None, help='ISO-8601 watermark')
@click.option('--full', is_flag=True, help='Send a full snapshot')
@click.option('--force-all', is_flag=True, help='Prices: send every row, not only changed ones')
@with_appcontext
def push(sync_type, codes, since, full, force_all):
    """Push catalog, prices or inventory to branches."""
    try:
        branch_ids = [branch_service.require_branch_by_code(c).id for c in codes] or None
        outcomes = sync_service.push_to_branches(
            sync_type,
            branch_ids=branch_ids,
            since=to_datetime(since, "since"),
            full=full,
            force_all=force_all,
        )
    except ChainHubError as e:
        _fail(e.message)

    if not outcomes:
        click.echo("No active branches.")
        return
    for o in outcomes:
        if o["success"]:
            click.echo(f"PASS {o['branch_code']}: {o['records']} records (sync {o['sync_id']})")
        else:
            click.echo(f"FAIL {o['branch_code']}: {o['code']} {o['error']} (sync {o['sync_id']})")


@sync_group.command('retry-failed')
@click.option('--branch', 'code', required=True)
@click.option('--limit', type=int, default=None)
@with_appcontext
def retry_failed(code, limit):
    """Move the most recent failed transactions of a branch back to pending."""
    try:
        branch = branch_service.require_branch_by_code(code)
        result = sync_service.retry_failed_transactions(branch.id, limit=limit)
    except ChainHubError as e:
        _fail(e.message)
    click.echo(f"PASS Queued {result['queued']} transactions for retry (sync {result['sync_id']})")


@sync_group.command('check-health')
@click.option('--branch', 'code', required=True)
@with_appcontext
def check_health(code):
    """Probe a branch health endpoint and record its status."""
    try:
        branch = branch_service.require_branch_by_code(code)
        result = sync_service.check_branch_health(branch.id)
    except ChainHubError as e:
        _fail(e.message)
    click.echo(f"PASS {code} online ({result['response_time_ms']}ms)")


@click.group('ledger')
def ledger_group():
    """Inventory ledger audit commands."""


@ledger_group.command('verify')
@click.option('--branch', 'code', default=None)
@with_appcontext
def verify(code):
    """Check every stock aggregate against its movement sum."""
    try:
        branch_id = branch_service.require_branch_by_code(code).id if code else None
    except ChainHubError as e:
        _fail(e.message)
    mismatches = inventory_service.verify_ledger(branch_id)
    if not mismatches:
        click.echo("PASS Ledger and stock aggregates agree")
        return
    for m in mismatches:
        click.echo(
            f"FAIL branch={m['branch_id']} product={m['product_id']} "
            f"ledger={m['ledger_quantity']} aggregate={m['aggregate_quantity']}"
        )
    raise SystemExit(1)


@click.group('maintenance')
def maintenance_group():
    """Maintenance and retention commands."""


@maintenance_group.command('cleanup-sync-logs')
@click.option('--retention-days', default=90, show_default=True, type=int)
@with_appcontext
def cleanup_sync_logs(retention_days):
    """Delete terminal sync logs older than the retention window."""
    deleted = maintenance_service.cleanup_sync_logs(retention_days=retention_days)
    click.echo(f"PASS Deleted {deleted} sync logs older than {retention_days} days")


@maintenance_group.command('fail-abandoned')
@click.option('--older-than-minutes', default=60, show_default=True, type=int)
@with_appcontext
def fail_abandoned(older_than_minutes):
    """Close sync logs left active by a process that died mid-operation."""
    closed = maintenance_service.fail_abandoned_sync_logs(older_than_minutes=older_than_minutes)
    click.echo(f"PASS Closed {closed} abandoned sync logs")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(maintenance_group)
