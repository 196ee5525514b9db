"""Shared pytest fixtures for test suite"""
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

# Settings are read at import time; point them at test values before any app import
TEST_WEBHOOK_SECRET = "test-webhook-secret"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WEBHOOK_SECRET"] = TEST_WEBHOOK_SECRET
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""
os.environ["ENVIRONMENT"] = "test"

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.security import WebhookSignatureVerifier
from app.db.session import build_engine, get_db
from app.models import Base
from app.models.user import User
from app.schemas.webhooks import WebhookPayload


# SQLite in-memory database shared by every connection of the test engine
test_engine = build_engine("sqlite://", poolclass=StaticPool)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)

    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client bound to the test database"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Session is closed by the db_session fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Keep OpenTelemetry out of tests
        with patch('app.main.initialize_otel', return_value=False):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def verifier() -> WebhookSignatureVerifier:
    return WebhookSignatureVerifier(TEST_WEBHOOK_SECRET)


@pytest.fixture
def sign(verifier):
    """Serialize a payload dict and return (body, signature)"""
    def _sign(data: dict):
        body = json.dumps(data).encode("utf-8")
        return body, verifier.compute_signature(body)
    return _sign


@pytest.fixture
def payment_data() -> dict:
    """A valid monthly payment in wire format"""
    return {
        "externalPaymentId": "pay_1001",
        "eventType": "payment.success",
        "email": "buyer@example.com",
        "amount": 999,
        "currency": "USD",
        "planType": "monthly",
        "paymentMethod": "card",
        "provider": "acmepay",
    }


@pytest.fixture
def make_payload(payment_data):
    """Build a WebhookPayload from the default payment with overrides"""
    def _make(**overrides) -> WebhookPayload:
        data = dict(payment_data)
        data.update(overrides)
        data = {key: value for key, value in data.items() if value is not None}
        return WebhookPayload.model_validate(data)
    return _make


@pytest.fixture
def test_user(db_session: Session) -> User:
    user = User(email="existing@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user
