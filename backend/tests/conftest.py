"""
Pytest fixtures for agro ERP backend tests.

Provides test database setup, two tenants with one user per default role,
credit customers and a test client.
"""

import pytest

from erp import create_app
from erp.extensions import db
from erp.models import Organization, User, Role, UserRole, Customer
from erp.services.auth_service import hash_password, create_default_roles, build_actor_context
from erp.services import permission_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'VAT_RATE_BPS': 0,
        'CREDIT_GRACE_PERIOD_DAYS': 30,
        'CREDIT_WARNING_THRESHOLD_PCT': 80,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """One bcrypt hash shared by all fixture users (cost 12 is slow)."""
    return hash_password(PASSWORD)


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


def _setup_roles(org):
    create_default_roles(org.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(org.id)


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant) with default roles."""
    org = Organization(name="Org A - Green Valley Agro", code="GVA", is_active=True)
    db_session.add(org)
    db_session.commit()
    _setup_roles(org)
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant) with default roles."""
    org = Organization(name="Org B - Delta Farms", code="DLT", is_active=True)
    db_session.add(org)
    db_session.commit()
    _setup_roles(org)
    return org


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    """
    Factory: create a user holding the given roles.

    Roles are linked directly, bypassing the role exclusion check, so tests
    can build users that hold combinations the service would refuse.
    """
    def _make(org, username, *role_names):
        user = User(
            org_id=org.id,
            username=username,
            email=f"{username}@{org.code.lower()}.test",
            password_hash=password_hash,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()

        for role_name in role_names:
            role = db_session.query(Role).filter_by(org_id=org.id, name=role_name).first()
            db_session.add(UserRole(user_id=user.id, role_id=role.id))
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def admin_a(org_a, make_user):
    return make_user(org_a, "admin_a", "admin")


@pytest.fixture(scope='function')
def approver_a(org_a, make_user):
    return make_user(org_a, "approver_a", "approver")


@pytest.fixture(scope='function')
def booking_a(org_a, make_user):
    return make_user(org_a, "booking_a", "booking_officer")


@pytest.fixture(scope='function')
def cashier_a(org_a, make_user):
    return make_user(org_a, "cashier_a", "cashier")


@pytest.fixture(scope='function')
def accountant_a(org_a, make_user):
    return make_user(org_a, "accountant_a", "accountant")


@pytest.fixture(scope='function')
def admin_b(org_b, make_user):
    return make_user(org_b, "admin_b", "admin")


@pytest.fixture(scope='function')
def credit_customer_a(db_session, org_a):
    """Credit customer in Organization A: limit 5,000,000, usage 2,150,000."""
    customer = Customer(
        org_id=org_a.id,
        customer_code="CUST-A-001",
        name="Green Farms",
        customer_type="credit",
        credit_limit_cents=5_000_000,
        outstanding_balance_cents=2_150_000,
        payment_terms_days=30,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def cash_customer_a(db_session, org_a):
    customer = Customer(
        org_id=org_a.id,
        customer_code="CUST-A-002",
        name="Walk-in Buyer",
        customer_type="cash",
        credit_limit_cents=0,
        outstanding_balance_cents=0,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, org_b):
    customer = Customer(
        org_id=org_b.id,
        customer_code="CUST-B-001",
        name="Delta Co-op",
        customer_type="credit",
        credit_limit_cents=1_000_000,
        outstanding_balance_cents=0,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


def actor(user):
    """ActorContext for a fixture user."""
    return build_actor_context(user, ip_address="127.0.0.1", user_agent="pytest")


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
