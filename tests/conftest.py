"""
Shared fixtures for the Pocket Bounty test suite

1. In-memory SQLite engine per test, built from the production models
2. Session factory and session bound to that engine
3. User factory with balance/points
4. Stripe service replaced by a MagicMock
5. FastAPI TestClient with get_db / get_session_factory / get_stripe_service overridden
6. Bearer tokens minted with the development HS256 secret
"""

import os

# Configuration is read at import time, so the environment is set up first
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "development"
os.environ["TEST_DEPOSIT_ENABLED"] = "true"
os.environ["EXPIRY_SWEEP_ON_LIST"] = "false"
os.environ.pop("OIDC_JWKS_URL", None)
os.environ.pop("OIDC_AUDIENCE", None)

import logging
import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from config import Config
from database import build_engine, get_db, get_session_factory
from models import Base, User
from middleware.rate_limiter import rate_limiter
from services.connection_manager import connection_manager
from services.stripe_service import StripeService, get_stripe_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db_session):
    """Factory: make_user("alice", balance="100.00", points=20)"""

    def _make_user(user_id: str, balance="0.00", points: int = 0, **fields) -> User:
        user = User(
            id=user_id,
            email=fields.pop("email", f"{user_id}@example.com"),
            first_name=fields.pop("first_name", user_id.capitalize()),
            balance=Decimal(str(balance)),
            points=points,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def stripe_mock():
    """StripeService stand-in; tests set return values per call"""
    service = MagicMock(spec=StripeService)
    service.is_configured = True
    service.create_customer.return_value = "cus_test123"
    service.create_setup_intent.return_value = {"id": "seti_123", "clientSecret": "seti_123_secret"}
    service.create_payment_intent.return_value = SimpleNamespace(
        id="pi_test123", status="succeeded", client_secret="pi_test123_secret"
    )
    service.create_transfer.return_value = SimpleNamespace(id="tr_test123", reversed=False)
    return service


@pytest.fixture(autouse=True)
def reset_process_state():
    rate_limiter.reset()
    connection_manager.clear()
    yield
    rate_limiter.reset()
    connection_manager.clear()


def make_token(user_id: str, **claims) -> str:
    payload = {"sub": user_id, "exp": int(time.time()) + 3600, "email": f"{user_id}@example.com"}
    payload.update(claims)
    return jwt.encode(payload, Config.AUTH_JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str, **claims) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, **claims)}"}


@pytest.fixture
def client(session_factory, stripe_mock):
    from api_server import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_stripe_service] = lambda: stripe_mock
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
