# Overview: Flask CLI command groups for bootstrap and site management.

# backend/stockpoint/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockpoint (PowerShell: $env:FLASK_APP="stockpoint").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (dev shortcut; use `flask db upgrade` otherwise).
# - python -m flask system seed-demo
#   Idempotent demo data: one tenant, two sites, a category and products with stock.
#
# Tenant and site management:
# - python -m flask tenants list
# - python -m flask tenants create --name "Acme Pharmacies" --code "ACME"
# - python -m flask sites list [--tenant-id 1]
# - python -m flask sites create --tenant-id 1 --name "Downtown" [--slug downtown]

import click
from flask.cli import with_appcontext

from .context import RequestContext
from .extensions import db
from .models import Category, Product, Site, Tenant
from .services import stock_service, tenant_service
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Seed a demo tenant with two sites.

    The main site gets a "Tablets" category, two products and an opening
    stock batch; the branch site gets the category only, so a transfer to it
    provisions products on first use.
    """
    tenant = db.session.query(Tenant).filter_by(code="DEMO").first()
    if not tenant:
        tenant = tenant_service.create_tenant("Demo Pharmacies", code="DEMO")
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    sites = {}
    for name, slug in (("Demo Main", "demo-main"), ("Demo Branch", "demo-branch")):
        site = db.session.query(Site).filter_by(slug=slug).first()
        if not site:
            site = tenant_service.create_site(tenant.id, name, slug)
            click.echo(f"PASS Created site: {site.name} ({site.slug})")
        sites[slug] = site

    for site in sites.values():
        if not db.session.query(Category).filter_by(site_id=site.id, name="Tablets").first():
            db.session.add(Category(site_id=site.id, name="Tablets", short_name="TAB", type="PRODUCT"))
    db.session.commit()

    main = sites["demo-main"]
    if db.session.query(Product).filter_by(site_id=main.id).first():
        click.echo("PASS Demo products already present")
        return

    category = db.session.query(Category).filter_by(site_id=main.id, name="Tablets").first()
    products = [
        Product(site_id=main.id, category_id=category.id, name="Paracetamol 500mg", short_name="PARA500",
                mrp_cents=899, sale_rate_cents=799, purchase_rate_cents=450, _current_stock=0),
        Product(site_id=main.id, category_id=category.id, name="Ibuprofen 200mg", short_name="IBU200",
                mrp_cents=1099, sale_rate_cents=999, purchase_rate_cents=600, _current_stock=0),
    ]
    db.session.add_all(products)
    db.session.commit()

    ctx = RequestContext(tenant_id=tenant.id, site_id=main.id)
    batch = stock_service.record_stock_in(ctx, [
        {"product_id": p.id, "quantity": 100, "location": "PHARMACY", "batch_number": "DEMO-001"}
        for p in products
    ])
    click.echo(f"PASS Seeded {len(products)} products with opening batch {batch.id}")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Sites'}")
    click.echo("="*70)

    for tenant in tenants:
        site_count = db.session.query(Site).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str:<8} {site_count}")

    click.echo("="*70 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', default=None, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, code):
    """Create a new tenant."""
    try:
        tenant = tenant_service.create_tenant(name, code=code)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")


@click.group('sites')
def sites_group():
    """Site management commands."""


@sites_group.command('list')
@click.option('--tenant-id', type=int, default=None, help='Only sites of this tenant')
@with_appcontext
def list_sites(tenant_id):
    """List sites with their public slugs."""
    query = db.session.query(Site)
    if tenant_id is not None:
        query = query.filter_by(tenant_id=tenant_id)
    sites = query.order_by(Site.tenant_id.asc(), Site.name.asc()).all()

    if not sites:
        click.echo("No sites found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Tenant':<8} {'Name':<30} {'Slug'}")
    click.echo("="*70)
    for site in sites:
        click.echo(f"{site.id:<5} {site.tenant_id:<8} {site.name:<30} {site.slug}")
    click.echo("="*70 + "\n")


@sites_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Owning tenant ID')
@click.option('--name', required=True, help='Site name')
@click.option('--slug', default=None, help='Public slug (defaults to the slugified name)')
@with_appcontext
def create_site_cli(tenant_id, name, slug):
    """Create a site under a tenant."""
    try:
        site = tenant_service.create_site(tenant_id, name, slug)
    except (ValidationError, ConflictError, tenant_service.TenantAccessError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created site: {site.name} (ID: {site.id}, slug: {site.slug})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(sites_group)
