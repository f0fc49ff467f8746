# Overview: Flask CLI command group for bootstrap and inspection.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock init-db [--reset --yes]
#   Create all tables (optionally dropping them first). Use `flask db upgrade` for migrations.
# - python -m flask stock pending --tenant acme
#   List pending movements and pending sale audits for a tenant.
# - python -m flask stock summary --tenant acme --product-id 3
#   Print the stock projection and ledger totals for one product.

import json

import click
from flask.cli import with_appcontext

from .context import ActorContext, ROLE_ADMIN
from .errors import NotFoundError
from .extensions import db
from .services import approval_service, inventory_service, sales_audit_service


def _cli_actor(tenant_id: str) -> ActorContext:
    return ActorContext(tenant_id=tenant_id, actor_id="cli", role=ROLE_ADMIN)


@click.group('stock')
def stock_group():
    """Stock ledger bootstrap and inspection commands."""


@stock_group.command('init-db')
@click.option('--reset', is_flag=True, help='Drop all tables first')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(reset, yes):
    """Create the schema directly from the models (dev/test)."""
    if reset:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    db.create_all()
    click.echo("PASS Schema ready")


@stock_group.command('pending')
@click.option('--tenant', 'tenant_id', required=True, help='Tenant id')
@with_appcontext
def list_pending(tenant_id):
    """List movements and sale audits waiting for approval."""
    ctx = _cli_actor(tenant_id)

    movements = approval_service.list_pending_movements(ctx)
    click.echo(f"Pending movements: {len(movements)}")
    for m in movements:
        click.echo(
            f"  #{m.id:<6} {m.movement_type:<17} product={m.product_id} "
            f"boxes={m.box_change:+d} kg={m.kg_change} by={m.performed_by}"
        )

    audits = sales_audit_service.list_sale_audits(ctx, approval_status="pending", limit=500)
    click.echo(f"Pending sale audits: {audits['total']}")
    for a in audits["items"]:
        click.echo(f"  #{a['id']:<6} {a['audit_type']:<22} sale={a['sale_id']} by={a['performed_by']}")


@stock_group.command('summary')
@click.option('--tenant', 'tenant_id', required=True, help='Tenant id')
@click.option('--product-id', type=int, required=True, help='Product id')
@with_appcontext
def product_summary(tenant_id, product_id):
    """Print the stock projection and ledger totals for a product."""
    try:
        summary = inventory_service.get_stock_summary(_cli_actor(tenant_id), product_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(summary, indent=2))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
