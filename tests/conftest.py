"""Pytest fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["TWILIO_ACCOUNT_SID"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from safeguard.core.exceptions import TransportError  # noqa: E402
from safeguard.db.base import Base  # noqa: E402
from safeguard.db.session import SessionLocal, engine  # noqa: E402
from safeguard.main import create_app  # noqa: E402
from safeguard.models import AuditEntry, Guardian, User  # noqa: E402,F401 - register for create_all
from safeguard.services.notification_service import NotificationDispatcher  # noqa: E402


class FakeTransport:
    """Records calls and texts; numbers in ``failing`` raise TransportError."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []
        self.texts: list[tuple[str, str]] = []

    def call(self, to_number: str, spoken_message: str) -> str:
        if to_number in self.failing:
            raise TransportError(f"cannot reach {to_number}")
        self.calls.append((to_number, spoken_message))
        return f"CA{len(self.calls)}"

    def text(self, to_number: str, body: str) -> str:
        if to_number in self.failing:
            raise TransportError(f"cannot reach {to_number}")
        self.texts.append((to_number, body))
        return f"SM{len(self.texts)}"


@pytest.fixture
def setup_db():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(setup_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def app(setup_db, transport):
    return create_app(dispatcher=NotificationDispatcher(transport))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client, email: str, full_name: str = "Test User", phone: str = "+15550000001") -> str:
    """Register + login, returning an access token."""
    client.post(
        "/auth/register",
        json={"email": email, "password": "pass1234", "full_name": full_name, "phone": phone},
    )
    return client.post("/auth/login", json={"email": email, "password": "pass1234"}).json()["access_token"]


def add_guardian(client, token: str, name: str, phone: str, priority: int = 1, **extra):
    body = {"name": name, "phone": phone, "relationship": "friend", "priority": priority, **extra}
    return client.post("/user/contacts", headers=auth(token), json=body)


def trigger_body(lat: float = 12.9, lng: float = 77.6, note: str | None = "Help!") -> dict:
    return {"location": {"lat": lat, "lng": lng}, "accuracy": 10.0, "note": note}
