import pytest
from unittest.mock import Mock, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from app.config import settings
from app.database import get_db
from app.auth.dependencies import get_current_user, get_optional_user
from app.auth.rate_limiter import reset_rate_limiters
from app.integrations.base import (
    SUCCEEDED,
    CheckoutSession,
    PaymentProvider,
    ProviderPayment,
    SessionInfo,
    WebhookEvent,
    EVENT_IGNORED,
)
from app.models import Base
from app.models.order import PaymentProviderName
from app.models.user import User
from app.routers.checkout import get_payment_provider


@pytest.fixture(autouse=True)
def fresh_rate_limiters():
    reset_rate_limiters()
    yield
    reset_rate_limiters()


@pytest.fixture
def admin_allowlist(monkeypatch):
    monkeypatch.setattr(settings, "admin_emails", "admin@test.com")


@pytest.fixture
def mock_db():
    """Mock database session"""
    db = MagicMock()
    db.query.return_value = db
    db.filter.return_value = db
    db.first.return_value = None
    db.all.return_value = []
    db.count.return_value = 0
    return db


@pytest.fixture
def mock_customer():
    user = Mock(spec=User)
    user.id = 2
    user.email = "buyer@test.com"
    user.display_name = "Buyer"
    user.email_verified = True
    user.password_hash = "$2b$12$test_hash"
    return user


@pytest.fixture
def mock_admin():
    user = Mock(spec=User)
    user.id = 3
    user.email = "admin@test.com"
    user.display_name = "Admin"
    user.email_verified = True
    user.password_hash = "$2b$12$test_hash"
    return user


@pytest.fixture
def client_with_customer(mock_db, mock_customer):
    """TestClient with customer auth and mocked DB"""
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_current_user] = lambda: mock_customer
    app.dependency_overrides[get_optional_user] = lambda: mock_customer
    client = TestClient(app)
    yield client, mock_db, mock_customer
    app.dependency_overrides.clear()


@pytest.fixture
def client_with_admin(mock_db, mock_admin, admin_allowlist):
    """TestClient with admin auth and mocked DB"""
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_current_user] = lambda: mock_admin
    app.dependency_overrides[get_optional_user] = lambda: mock_admin
    client = TestClient(app)
    yield client, mock_db, mock_admin
    app.dependency_overrides.clear()


@pytest.fixture
def unauthenticated_client(mock_db):
    """TestClient with mocked DB but no auth"""
    app.dependency_overrides[get_db] = lambda: mock_db
    client = TestClient(app)
    yield client, mock_db
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


# ---------------------------------------------------------------------------
# Real database (SQLite) for reconciliation, allocation and linking
# ---------------------------------------------------------------------------

@pytest.fixture
def db_session():
    """In-memory SQLite session with working SAVEPOINTs"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def make_user(db_session):
    def _make(email, display_name=None, verified=True):
        user = User(email=email, password_hash="x", display_name=display_name, email_verified=verified)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


class FakeProvider(PaymentProvider):
    """Provider double: serves whatever ProviderPayment the test sets up"""

    def __init__(self, name=PaymentProviderName.STRIPE):
        self.name = name
        self.payments = {}
        self.session_payments = {}
        self.captured = []
        self.created = []

    def is_configured(self):
        return True

    def create_checkout(self, tier, user_id=None, customer_email=None):
        self.created.append((tier.name, user_id, customer_email))
        return CheckoutSession(session_id=f"sess_{len(self.created)}", checkout_url="https://pay.test/checkout")

    def retrieve_payment(self, reference):
        return self.payments[reference]

    def capture_payment(self, reference):
        self.captured.append(reference)
        return self.payments[reference]

    def payment_reference_for_session(self, session_id):
        return self.session_payments.get(session_id)

    def session_info(self, session_id):
        return SessionInfo(session_id=session_id, status="paid", payment_id=None, customer_email=None, amount=None)

    def verify_webhook(self, payload, headers):
        raise NotImplementedError

    def parse_webhook_event(self, event):
        return WebhookEvent(event_type=event.get("type", ""), kind=EVENT_IGNORED, raw_payload=event)

    def add_payment(self, payment_id, session_id=None, status=SUCCEEDED, amount=15000, tier="standard",
                    payer_email=None, metadata_user_id="guest"):
        payment = ProviderPayment(
            provider=self.name.value,
            status=status,
            raw_status=status,
            session_id=session_id,
            payment_id=payment_id,
            amount=amount,
            tier=tier,
            payer_email=payer_email,
            metadata_user_id=metadata_user_id,
        )
        self.payments[payment_id] = payment
        if session_id:
            self.session_payments[session_id] = payment_id
        return payment


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def sqlite_client(db_session, fake_provider):
    """TestClient on the SQLite session with the fake provider and no auth"""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider
    app.dependency_overrides[get_optional_user] = lambda: None
    client = TestClient(app)
    yield client, db_session, fake_provider
    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Authenticate requests on sqlite_client as a real user row"""
    def _login(user):
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_optional_user] = lambda: user
    return _login
