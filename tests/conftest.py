import os

os.environ["ENV"] = "test"
# Keep the module-level engine off Postgres; tests bind their own engine below
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import timedelta
from uuid import uuid4

from app.main import app
from app.db import Base, get_db, get_session_factory
from app.core.settings import settings
from app.models.tenant import Tenant, SubscriptionStatus
from app.models.user import User, UserRole
from app.services.auth import get_current_user
from app.services.billing.signature import compute_signature, SIGNATURE_FIELD
from app.utils.datetime import utc_now

TEST_PRIVATE_KEY = "test-fastspring-private-key"

# Use SQLite in-memory for test DB
TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
# For in-memory SQLite we must use a StaticPool so multiple connections share the
# same in-memory database during the test run. Background billing tasks open
# their own sessions (in a worker thread) and must see the request's rows.
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Dependency override
def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal


@pytest.fixture(autouse=True)
def setup_test_db():
    # recreate schema for each test to ensure isolation
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_auth_overrides():
    yield
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture(autouse=True)
def fastspring_key(monkeypatch):
    """Webhook verification key; tests that need it unset patch it back to None."""
    monkeypatch.setattr(settings, "fastspring_private_key", TEST_PRIVATE_KEY)
    return TEST_PRIVATE_KEY


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def db_session():
    # use the testing session factory bound to the in-memory SQLite engine
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def _make_tenant(db_session, **overrides):
    now = utc_now()
    values = dict(
        id=str(uuid4()),
        name="Acme Corp",
        slug=f"acme-{uuid4().hex[:8]}",
        billing_email=f"billing+{uuid4().hex[:8]}@acme.example",
        subscription_status=SubscriptionStatus.trialing,
        is_paid=False,
        trial_start=now,
        trial_ends=now + timedelta(days=14),
    )
    values.update(overrides)
    tenant = Tenant(**values)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture
def tenant_factory(db_session):
    def _make(**overrides):
        return _make_tenant(db_session, **overrides)
    return _make


@pytest.fixture
def trial_tenant(db_session):
    return _make_tenant(db_session, billing_email="owner@acme.example")


@pytest.fixture
def lapsed_tenant(db_session):
    now = utc_now()
    return _make_tenant(
        db_session,
        billing_email="lapsed@acme.example",
        trial_start=now - timedelta(days=30),
        trial_ends=now - timedelta(days=16),
    )


def _make_user(db_session, tenant=None, role=UserRole.member):
    user = User(
        id=str(uuid4()),
        name=f"{role.value.title()} User",
        email=f"user+{uuid4().hex[:8]}@example.com",
        role=role,
        tenant_id=tenant.id if tenant else None,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def user_factory(db_session):
    def _make(tenant=None, role=UserRole.member):
        return _make_user(db_session, tenant=tenant, role=role)
    return _make


@pytest.fixture
def login():
    """Make subsequent requests authenticate as ``user``."""
    def _login(user):
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    return _login


@pytest.fixture
def admin_user(db_session, trial_tenant, login):
    return login(_make_user(db_session, tenant=trial_tenant, role=UserRole.admin))


@pytest.fixture
def auth_headers():
    # Authentication is resolved through the overridden dependency; the header only has to parse
    return {"Authorization": "Bearer test-token"}


@pytest.fixture
def sign():
    """Attach a valid security_request_hash to a webhook payload."""
    def _sign(params, key=TEST_PRIVATE_KEY):
        signed = {k: v for k, v in params.items() if k != SIGNATURE_FIELD}
        signed[SIGNATURE_FIELD] = compute_signature(signed, key)
        return signed
    return _sign
