"""
Pytest fixtures for StockPoint backend tests.

Provides an in-memory database, two tenants with sites, a stocked catalog
and request contexts / headers for calling services and routes.
"""

import pytest
from stockpoint import create_app
from stockpoint.context import RequestContext
from stockpoint.extensions import db
from stockpoint.models import Tenant, Site, Category, Product
from stockpoint.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_PROVINCE': 'ON',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (owns the main and branch sites)."""
    tenant = Tenant(name="Tenant A - Acme Pharmacies", code="ACME", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (owns one foreign site)."""
    tenant = Tenant(name="Tenant B - Beta Drugs", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def site_main(db_session, tenant_a):
    site = Site(tenant_id=tenant_a.id, name="Main Street", slug="main-street")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def site_branch(db_session, tenant_a):
    site = Site(tenant_id=tenant_a.id, name="Branch Office", slug="branch-office")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def site_foreign(db_session, tenant_b):
    site = Site(tenant_id=tenant_b.id, name="Beta Central", slug="beta-central")
    db_session.add(site)
    db_session.commit()
    return site


@pytest.fixture(scope='function')
def category_main(db_session, site_main):
    category = Category(site_id=site_main.id, name="Tablets", short_name="TAB", type="PRODUCT")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def category_branch(db_session, site_branch):
    category = Category(site_id=site_branch.id, name="Tablets", short_name="TAB", type="PRODUCT")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def product(db_session, site_main, category_main):
    """Paracetamol at the main site, no stock yet."""
    product = Product(
        site_id=site_main.id,
        category_id=category_main.id,
        name="Paracetamol 500mg",
        short_name="PARA500",
        mrp_cents=3500,
        sale_rate_cents=3333,
        purchase_rate_cents=2000,
        _current_stock=0,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(db_session, site_main, category_main):
    product = Product(
        site_id=site_main.id,
        category_id=category_main.id,
        name="Ibuprofen 200mg",
        short_name="IBU200",
        mrp_cents=1200,
        sale_rate_cents=1000,
        purchase_rate_cents=600,
        _current_stock=0,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def ctx_main(tenant_a, site_main):
    return RequestContext(tenant_id=tenant_a.id, site_id=site_main.id, user_id=1)


@pytest.fixture(scope='function')
def ctx_branch(tenant_a, site_branch):
    return RequestContext(tenant_id=tenant_a.id, site_id=site_branch.id, user_id=1)


@pytest.fixture(scope='function')
def ctx_foreign(tenant_b, site_foreign):
    return RequestContext(tenant_id=tenant_b.id, site_id=site_foreign.id, user_id=2)


@pytest.fixture(scope='function')
def stocked_product(ctx_main, product):
    """Paracetamol with 100 units received in one batch."""
    stock_service.record_stock_in(ctx_main, [
        {"product_id": product.id, "quantity": 100, "batch_number": "B-100"},
    ])
    return product


def receive(ctx, product, quantity, **line):
    """Helper to receive stock for one product; returns the batch."""
    line.update({"product_id": product.id, "quantity": quantity})
    return stock_service.record_stock_in(ctx, [line])


def site_headers(tenant, user_id: int = 1) -> dict:
    """Helper to create caller identity headers."""
    return {'X-Tenant-Id': str(tenant.id), 'X-User-Id': str(user_id)}
