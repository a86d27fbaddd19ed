"""
Shared fixtures: a fresh SQLite file per test, seeded anglers, and in-memory
stand-ins for the payment provider and the mailer.
"""
from __future__ import annotations

import random
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from pegbook.models import PaymentStatus
from pegbook.persistence.db import get_connection, init_db, set_db_path, write_transaction
from pegbook.persistence.repositories import UserRepository
from pegbook.services.admission import AdmissionCoordinator
from pegbook.services.competition_registry import CompetitionRegistry
from pegbook.services.payment_gateway import PaymentIntent


class FakeGateway:
    """Provider double: intents start pending; tests flip them with set_status."""

    def __init__(self) -> None:
        self.intents: dict[str, PaymentIntent] = {}
        self.retrieve_calls = 0

    def create_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = PaymentIntent(
            id=intent_id, amount=amount, currency=currency, status=PaymentStatus.PENDING.value,
            client_secret=f"{intent_id}_secret", metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_ref: str) -> PaymentIntent:
        self.retrieve_calls += 1
        return self.intents[intent_ref]

    def set_status(self, intent_ref: str, status: PaymentStatus) -> None:
        self.intents[intent_ref].status = status.value


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to_email: str, subject: str, html: str) -> None:
        self.sent.append((to_email, subject, html))


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "pegbook_test.db"
    set_db_path(path)
    init_db(db_path=path)
    return path


@pytest.fixture
def db_conn(db_path):
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def make_user(db_conn):
    """Factory: make_user("alice") -> User with an email address."""
    repo = UserRepository()

    def _make(username: str, club: str | None = None, is_staff: bool = False):
        with write_transaction(db_conn):
            return repo.create(
                db_conn, username, username.title(), email=f"{username}@example.com",
                club=club, is_staff=is_staff,
            )

    return _make


@pytest.fixture
def registry():
    return CompetitionRegistry()


@pytest.fixture
def admission():
    return AdmissionCoordinator(rng=random.Random(1234))


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()
