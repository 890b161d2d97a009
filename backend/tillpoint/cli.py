# Overview: Flask CLI command groups for bootstrap, degraded-audit recovery, and inventory export.

# backend/tillpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables (if missing) and seed the invoice number sequence.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Undo audit fallback:
# - python -m flask undo-log pending
#   List undo-log entries that were written to the local fallback file.
# - python -m flask undo-log replay
#   Insert pending fallback entries into sales_undo_log; failures stay pending.
#
# Inventory:
# - python -m flask inventory export inventory.xlsx [--include-inactive]
#   Export products as CSV or XLSX (picked from the file extension).

import os

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import InvoiceSequence
from .services import import_service, undo_service
from .services.document_service import peek_next_invoice_number


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Idempotent bootstrap: create tables and the invoice sequence row.
    """
    db.create_all()

    prefix = current_app.config["INVOICE_PREFIX"].strip().upper()
    seq = db.session.query(InvoiceSequence).filter_by(prefix=prefix).first()
    if seq is None:
        db.session.add(InvoiceSequence(prefix=prefix, next_number=int(current_app.config["INVOICE_START_NUMBER"])))
        db.session.commit()
        click.echo(f"PASS Created invoice sequence {prefix}")
    else:
        click.echo(f"SKIP Invoice sequence {prefix} already exists")

    click.echo(f"PASS System ready. Next invoice: {peek_next_invoice_number(prefix)}")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('undo-log')
def undo_log_group():
    """Recover undo-log entries written to the local fallback file."""


@undo_log_group.command('pending')
@with_appcontext
def list_pending():
    """List fallback entries not yet in the database."""
    entries = undo_service.pending_fallback_entries()
    if not entries:
        click.echo("No pending undo-log entries.")
        return

    click.echo(f"{len(entries)} pending entries in {undo_service.fallback_log_path()}:")
    for entry in entries:
        data = entry.get("sale_data", {})
        click.echo(
            f"  sale {entry.get('sale_id')}: {data.get('product_name')} x{data.get('quantity')} "
            f"by {entry.get('undone_by')} at {entry.get('undone_at')} ({entry.get('reason')})"
        )


@undo_log_group.command('replay')
@with_appcontext
def replay():
    """Insert fallback entries into sales_undo_log."""
    replayed, remaining = undo_service.replay_fallback_entries()
    click.echo(f"PASS Replayed {replayed} entries; {remaining} still pending.")
    if os.path.exists(undo_service.rejected_log_path()):
        click.echo(f"WARN Unreadable entries kept in {undo_service.rejected_log_path()}")
    if remaining:
        raise SystemExit(1)


@click.group('inventory')
def inventory_group():
    """Inventory import/export commands."""


@inventory_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@click.option('--include-inactive', is_flag=True, help='Include deactivated products')
@with_appcontext
def export_inventory(path, include_inactive):
    """Write products to PATH (.csv or .xlsx)."""
    fmt = "xlsx" if path.lower().endswith(".xlsx") else "csv"
    content, _, _ = import_service.export_products(fmt, include_inactive=include_inactive)
    with open(path, "wb") as fh:
        fh.write(content)
    click.echo(f"PASS Exported inventory to {path}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(undo_log_group)
    app.cli.add_command(inventory_group)
