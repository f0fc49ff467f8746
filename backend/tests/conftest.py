"""
Pytest fixtures for stockflow backend tests.

Provides test database setup, actor contexts for two tenants, a stocked
product and a test client.
"""

from decimal import Decimal

import pytest
from sqlalchemy import update
from stockflow import create_app
from stockflow.context import ActorContext
from stockflow.extensions import db
from stockflow.models import Product


TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCKFLOW_RETRY_BACKOFF': 0,
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


@pytest.fixture
def worker():
    return ActorContext(tenant_id=TENANT_A, actor_id="worker-1", role="worker")


@pytest.fixture
def other_worker():
    return ActorContext(tenant_id=TENANT_A, actor_id="worker-2", role="worker")


@pytest.fixture
def manager():
    return ActorContext(tenant_id=TENANT_A, actor_id="manager-1", role="manager")


@pytest.fixture
def foreign_manager():
    """Manager in a different tenant."""
    return ActorContext(tenant_id=TENANT_B, actor_id="manager-b", role="manager")


def make_product(session, *, tenant_id=TENANT_A, name="Tilapia", boxes=10, kg="15.5",
                 ratio="10", price_per_kg="2.60", price_per_box="25.00",
                 cost_per_kg="2.00", cost_per_box="20.00", threshold=2):
    product = Product(
        tenant_id=tenant_id,
        name=name,
        quantity_box=boxes,
        quantity_kg=Decimal(kg),
        box_to_kg_ratio=Decimal(ratio),
        price_per_kg=Decimal(price_per_kg),
        price_per_box=Decimal(price_per_box),
        cost_per_kg=Decimal(cost_per_kg),
        cost_per_box=Decimal(cost_per_box),
        boxed_low_stock_threshold=threshold,
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture
def product(db_session):
    """10 boxes / 15.5 kg, 10 kg per box, 2.60 per kg."""
    return make_product(db_session)


def headers_for(ctx: ActorContext) -> dict:
    return {
        "X-Tenant-Id": ctx.tenant_id,
        "X-Actor-Id": ctx.actor_id,
        "X-Actor-Role": ctx.role,
    }


def bump_version_behind_orm(product_id):
    """Simulate another writer: bump the row's version without telling the session."""
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(version_id=Product.version_id + 1)
        .execution_options(synchronize_session=False)
    )
