"""
Pytest fixtures for ChainHub backend tests.

Provides an in-memory database, a registered branch with its API key, an
employee and a small catalog.
"""

import pytest
from chainhub import create_app
from chainhub.extensions import db
from chainhub.models import Employee, Product
from chainhub.services import branch_service, inventory_service, schema_service


HUB_KEY = "test-hub-admin-key"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'HUB_ADMIN_API_KEY': HUB_KEY,
        'TRANSACTION_BATCH_SIZE': 2,
    })

    with app.app_context():
        db.create_all()
        schema_service.stamp_schema()
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
        # Clear all data but keep schema and its version marker
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            if table.name == "schema_meta":
                continue
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch_with_key(db_session):
    """Branch MAIN and its plaintext API key."""
    return branch_service.create_branch(
        code="MAIN",
        name="Main Street",
        api_endpoint="https://main.branch.test/api",
        outbound_api_key="main-outbound",
    )


@pytest.fixture(scope='function')
def branch(branch_with_key):
    return branch_with_key[0]


@pytest.fixture(scope='function')
def branch_key(branch_with_key):
    return branch_with_key[1]


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch, _ = branch_service.create_branch(
        code="NORTH",
        name="North Mall",
        api_endpoint="https://north.branch.test/api",
    )
    return branch


@pytest.fixture(scope='function')
def employee(db_session, branch):
    emp = Employee(branch_id=branch.id, employee_code="E01", name="Cashier One", role="cashier")
    db_session.add(emp)
    db_session.commit()
    return emp


@pytest.fixture(scope='function')
def product(db_session):
    """Product SKU1 (external id ERP-1, barcode 4006381333931)."""
    p = Product(
        external_id="ERP-1",
        sku="SKU1",
        barcode="4006381333931",
        name="Sparkling Water 1L",
        base_price_cents=150,
    )
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def second_product(db_session):
    p = Product(sku="SKU2", name="Orange Juice 1L", base_price_cents=320)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def stocked(branch, product):
    """MAIN holds 10 units of SKU1."""
    inventory_service.record_movement(branch.id, "SKU1", "purchase", 10, "Opening stock")
    return product


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def hub_headers() -> dict:
    return auth_headers(HUB_KEY)


def sale_payload(number: str = "T1", *, quantity=3, token: str = "SKU1", **overrides) -> dict:
    payload = {
        "transaction_number": number,
        "employee_id": "E01",
        "payment_method": "cash",
        "items": [{"sku": token, "quantity": quantity, "unit_price_cents": 150}],
    }
    payload.update(overrides)
    return payload
