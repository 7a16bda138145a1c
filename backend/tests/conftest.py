"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import sys
import time
from pathlib import Path
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from billing_sync.main import app
from billing_sync.db.session import get_db
from billing_sync.models import Base, Plan, Shop
from billing_sync.services.stripe_service import StripeSignatureVerifier, get_signature_verifier
from billing_sync.services.webhook_service import process_stripe_webhook


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

WEBHOOK_SECRET = "whsec_test_secret"

# Mid-November to mid-December 2023
PERIOD_START = 1700000000
PERIOD_END = 1702678400


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does (HMAC-SHA256 over 't.payload')"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def verifier() -> StripeSignatureVerifier:
    return StripeSignatureVerifier(WEBHOOK_SECRET, tolerance=300)


@pytest.fixture(scope="function")
def client(db_session: Session, verifier) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and the test webhook secret"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_signature_verifier] = lambda: verifier

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def signer() -> Callable[..., str]:
    return sign


@pytest.fixture(scope="function")
def pro_plan(db_session: Session) -> Plan:
    plan = Plan(stripe_price_id="price_pro", name="Pro", tier="pro", limits={"max_shops": 3})
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture(scope="function")
def enterprise_plan(db_session: Session) -> Plan:
    plan = Plan(stripe_price_id="price_enterprise", name="Enterprise", tier="enterprise", limits={"max_shops": 25})
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture(scope="function")
def shops(db_session: Session) -> list:
    """Two shops owned by u1 and one owned by someone else"""
    rows = [
        Shop(owner_id="u1", name="Gold Street"),
        Shop(owner_id="u1", name="Diamond Row"),
        Shop(owner_id="u2", name="Silver Lane"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    for row in rows:
        db_session.refresh(row)
    return rows


@pytest.fixture(scope="function")
def subscription_event() -> Callable[..., dict]:
    """Factory for customer.subscription.* events in the current (item-level period) API shape"""
    def make(
        event_id: str = "evt_1",
        event_type: str = "customer.subscription.created",
        subscription_id: str = "sub_abc",
        status: str = "active",
        user_id: str = "u1",
        price_id: str = "price_pro",
        period_start: int = PERIOD_START,
        period_end: int = PERIOD_END,
        cancel_at_period_end: bool = False,
        **extra
    ) -> dict:
        item = {"price": {"id": price_id}}
        if period_start is not None:
            item["current_period_start"] = period_start
        if period_end is not None:
            item["current_period_end"] = period_end
        obj = {
            "id": subscription_id,
            "object": "subscription",
            "status": status,
            "metadata": {"user_id": user_id},
            "items": {"data": [item]},
            "cancel_at_period_end": cancel_at_period_end,
        }
        obj.update(extra)
        return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    return make


@pytest.fixture(scope="function")
def invoice_event() -> Callable[..., dict]:
    """Factory for invoice.* events with the subscription under parent.subscription_details"""
    def make(
        event_id: str = "evt_inv_1",
        event_type: str = "invoice.payment_failed",
        subscription_id: str = "sub_abc",
        invoice_id: str = "in_1",
    ) -> dict:
        obj = {"id": invoice_id, "object": "invoice"}
        if subscription_id is not None:
            obj["parent"] = {
                "type": "subscription_details",
                "subscription_details": {"subscription": subscription_id},
            }
        return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    return make


@pytest.fixture(scope="function")
def deliver(db_session: Session, verifier) -> Callable[[dict], object]:
    """Sign an event and run it through the reconciler as Stripe would deliver it"""
    def send(event: dict):
        payload = json.dumps(event).encode("utf-8")
        return process_stripe_webhook(payload, sign(payload), db_session, verifier)
    return send
