# Overview: Flask CLI command groups for bootstrap, branch control, device tokens, and the event outbox.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (dev only; use "flask db upgrade" elsewhere).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: one org, one branch, one register, a small price list.
#
# Branch control:
# - python -m flask branches list --org-id 1
#   List branches with status.
# - python -m flask branches freeze --org-id 1 --store-id 1
#   Freeze a branch: every mutating operation against it is rejected.
# - python -m flask branches unfreeze --org-id 1 --store-id 1
#
# Device tokens:
# - python -m flask devices issue-token --org-id 1 --store-id 1 --employee-id 7 --role cashier
#   Print a new bearer token for a branch device (shown once).
# - python -m flask devices revoke --token <token>
#
# Event outbox:
# - python -m flask outbox status
#   Pending / sent / failing counts.
# - python -m flask outbox dispatch-once
#   Deliver one batch of pending events and exit.
# - python -m flask outbox run
#   Run the dispatcher in the foreground until Ctrl+C.
# - python -m flask outbox cleanup --retention-days 7
#   Delete delivered events older than the retention window.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Store, Register, Product, OutboxEvent
from .models.tenancy import BRANCH_ACTIVE, BRANCH_FROZEN
from .services import branch_service, outbox_service, session_service
from .services.branch_service import BranchError
from .services.session_service import SessionError


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to add demo data.")


@system_group.command('seed-demo')
@click.option('--org', 'org_name', default='Demo Organization', help='Organization name')
@click.option('--org-code', default='DEMO', help='Organization code')
@with_appcontext
def seed_demo(org_name, org_code):
    """
    Create demo tenant data (idempotent).

    Creates:
    - Organization (by code)
    - Branch "Main Branch" with 10% VAT
    - Register REG-01
    - Three products
    """
    click.echo("START Seeding demo data...")

    org = db.session.query(Organization).filter_by(code=org_code).first()
    if not org:
        org = Organization(name=org_name, code=org_code, is_active=True)
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    store = db.session.query(Store).filter_by(org_id=org.id, name="Main Branch").first()
    if not store:
        store = Store(org_id=org.id, name="Main Branch", code="MAIN", tax_rate_bps=1000)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created branch: {store.name} (ID: {store.id})")

    register = db.session.query(Register).filter_by(store_id=store.id, register_number="REG-01").first()
    if not register:
        register = Register(org_id=org.id, store_id=store.id, register_number="REG-01", name="Front Counter")
        db.session.add(register)
        db.session.commit()
        click.echo(f"PASS Created register: {register.register_number} (ID: {register.id})")

    demo_products = [
        ("COF-001", "Iced Coffee", 250),
        ("TEA-001", "Milk Tea", 200),
        ("SNK-001", "Croissant", 175),
    ]
    for sku, name, price_cents in demo_products:
        if not db.session.query(Product).filter_by(org_id=org.id, sku=sku).first():
            db.session.add(Product(org_id=org.id, sku=sku, name=name, price_cents=price_cents))
    db.session.commit()

    click.echo(f"PASS Demo data ready (org_id={org.id}, store_id={store.id}, register_id={register.id})")


# =============================================================================
# BRANCH COMMANDS
# =============================================================================

@click.group('branches')
def branches_group():
    """Branch status commands."""


@branches_group.command('list')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def list_branches(org_id):
    """List branches of an organization."""
    stores = db.session.query(Store).filter_by(org_id=org_id).order_by(Store.id).all()

    if not stores:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<10} {'Status':<8} {'VAT bps'}")
    click.echo("="*80)

    for store in stores:
        click.echo(f"{store.id:<5} {store.name:<30} {store.code or '-':<10} {store.status:<8} {store.tax_rate_bps}")

    click.echo("="*80 + "\n")


def _set_branch_status(org_id, store_id, status):
    try:
        store = branch_service.set_branch_status(org_id, store_id, status, actor_label="cli")
    except BranchError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Branch {store.name} (ID: {store.id}) is {store.status}")


@branches_group.command('freeze')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--store-id', type=int, required=True, help='Branch (store) ID')
@with_appcontext
def freeze_branch(org_id, store_id):
    """Freeze a branch. Offline operations targeting it will be rejected."""
    _set_branch_status(org_id, store_id, BRANCH_FROZEN)


@branches_group.command('unfreeze')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--store-id', type=int, required=True, help='Branch (store) ID')
@with_appcontext
def unfreeze_branch(org_id, store_id):
    """Unfreeze a branch. Previously rejected operations stay rejected."""
    _set_branch_status(org_id, store_id, BRANCH_ACTIVE)


# =============================================================================
# DEVICE TOKEN COMMANDS
# =============================================================================

@click.group('devices')
def devices_group():
    """Device session commands."""


@devices_group.command('issue-token')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--store-id', type=int, required=True, help='Branch (store) ID')
@click.option('--employee-id', type=int, required=True, help='Employee ID operating the device')
@click.option('--role', 'actor_role', default='cashier', show_default=True, help='Employee role')
@click.option('--label', help='Device label')
@click.option('--ttl-hours', type=int, help='Override DEVICE_SESSION_TTL_HOURS')
@with_appcontext
def issue_token(org_id, store_id, employee_id, actor_role, label, ttl_hours):
    """Issue a bearer token for a branch device. The token is shown once."""
    try:
        session, token = session_service.create_device_session(
            org_id,
            store_id,
            employee_id,
            actor_role,
            label=label,
            ttl_hours=ttl_hours or current_app.config["DEVICE_SESSION_TTL_HOURS"],
        )
    except SessionError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Device session {session.id} expires {session.expires_at}")
    click.echo(token)


@devices_group.command('revoke')
@click.option('--token', required=True, help='Plaintext device token')
@with_appcontext
def revoke_token(token):
    """Revoke a device token."""
    if session_service.revoke_session(token):
        click.echo("PASS Token revoked")
    else:
        click.echo("FAIL Token not found")
        raise SystemExit(1)


# =============================================================================
# OUTBOX COMMANDS
# =============================================================================

@click.group('outbox')
def outbox_group():
    """Event outbox inspection and delivery commands."""


@outbox_group.command('status')
@click.option('--failing', 'show_failing', is_flag=True, help='List failing events')
@click.option('--limit', type=int, default=20, help='Max failing events to show')
@with_appcontext
def outbox_status(show_failing, limit):
    """Show outbox counts (and optionally the failing events)."""
    stats = outbox_service.outbox_stats()
    click.echo(f"Pending: {stats['pending']}")
    click.echo(f"Sent:    {stats['sent']}")
    click.echo(f"Failing: {stats['failing']}")
    click.echo(f"Oldest pending: {stats['oldest_pending_at'] or '-'}")

    if not show_failing:
        return

    rows = (
        db.session.query(OutboxEvent)
        .filter(OutboxEvent.sent_at.is_(None), OutboxEvent.attempts > 0)
        .order_by(OutboxEvent.created_at.asc())
        .limit(limit)
        .all()
    )
    for row in rows:
        error = (row.last_error or "-")[:60]
        click.echo(f"{row.id:<6} {row.event_type:<28} attempts={row.attempts:<4} {error}")


@outbox_group.command('dispatch-once')
@with_appcontext
def outbox_dispatch_once():
    """Deliver one batch of pending events."""
    report = current_app.extensions["outbox_dispatcher"].run_once()
    if report.skipped:
        click.echo("WARN Another dispatch is in progress; nothing done.")
        return
    click.echo(f"PASS Fetched {report.fetched}, delivered {report.delivered}, failed {report.failed}")


@outbox_group.command('run')
@with_appcontext
def outbox_run():
    """Run the outbox dispatcher in the foreground (Ctrl+C to stop)."""
    dispatcher = current_app.extensions["outbox_dispatcher"]
    dispatcher.start()
    click.echo(f"START Outbox dispatcher polling every {dispatcher.interval_ms}ms")
    try:
        while dispatcher.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        dispatcher.stop()
        click.echo("STOP Outbox dispatcher stopped")


@outbox_group.command('cleanup')
@click.option('--retention-days', type=int, default=None, help='Defaults to OUTBOX_RETENTION_DAYS')
@with_appcontext
def outbox_cleanup(retention_days):
    """Delete delivered events older than the retention window."""
    if retention_days is None:
        retention_days = current_app.config["OUTBOX_RETENTION_DAYS"]
    deleted = outbox_service.cleanup_sent_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} delivered events older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(devices_group)
    app.cli.add_command(outbox_group)
