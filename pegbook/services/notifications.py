"""
Booking confirmation notices.

Delivery is best effort: a failed send is logged and never undoes an admission.
"""
from __future__ import annotations

import sqlite3
from typing import Protocol

import httpx

from pegbook.config import Settings
from pegbook.logger import setup_logger
from pegbook.models import AdmissionResult
from pegbook.persistence.repositories import CompetitionRepository, UserRepository

logger = setup_logger("pegbook.notifications")

RESEND_API_URL = "https://api.resend.com/emails"


class Notifier(Protocol):
    def send(self, to_email: str, subject: str, html: str) -> None:
        ...


class LogNotifier:
    """Writes the notice to the log instead of sending it."""

    def send(self, to_email: str, subject: str, html: str) -> None:
        logger.info("Notification to %s: %s", to_email, subject)


class ResendNotifier:
    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._timeout = timeout

    def send(self, to_email: str, subject: str, html: str) -> None:
        with httpx.Client(timeout=self._timeout) as client:
            response = client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"from": self._from_email, "to": [to_email], "subject": subject, "html": html},
            )
            response.raise_for_status()


def get_notifier() -> Notifier:
    settings = Settings()
    if settings.resend_api_key:
        return ResendNotifier(settings.resend_api_key, settings.resend_from_email)
    return LogNotifier()


CURRENCY_SYMBOLS = {"gbp": "£", "eur": "€", "usd": "$"}


def format_fee(amount: int, currency: str) -> str:
    """Minor units to a display string: 2500 gbp -> '£25.00'. Zero is 'Free'."""
    if amount <= 0:
        return "Free"
    major = f"{amount // 100}.{amount % 100:02d}"
    symbol = CURRENCY_SYMBOLS.get(currency.lower())
    return f"{symbol}{major}" if symbol else f"{major} {currency.upper()}"


def _booking_html(
    name: str, competition_name: str, date: str, venue: str, slot_numbers: list[int], entry_fee: str
) -> str:
    pegs = ", ".join(str(s) for s in slot_numbers)
    return (
        f"<p>Hi {name},</p>"
        f"<p>You are booked into <strong>{competition_name}</strong> on {date} at {venue}.</p>"
        f"<p>Peg: <strong>{pegs}</strong></p>"
        f"<p>Entry fee: {entry_fee}</p>"
        "<p>Tight lines!</p>"
    )


def notify_booking(notifier: Notifier, conn: sqlite3.Connection, result: AdmissionResult) -> int:
    """
    Tell every newly seated angler which peg they drew. Returns how many notices went out.
    Replayed admissions are not announced again.
    """
    if result.replayed:
        return 0
    competition = CompetitionRepository().get(conn, result.competition_id)
    if competition is None:
        return 0
    users = UserRepository().get_many(conn, [p.user_id for p in result.participants])
    sent = 0
    for participant in result.participants:
        user = users.get(participant.user_id)
        if user is None or not user.email:
            continue
        slots = [participant.slot_number] if participant.slot_number is not None else result.slot_numbers
        try:
            notifier.send(
                user.email,
                f"Booking confirmed - {competition.name}",
                _booking_html(
                    user.name, competition.name, competition.date, competition.venue, slots,
                    format_fee(competition.entry_fee, competition.currency),
                ),
            )
            sent += 1
        except Exception:
            logger.exception("Failed to send booking confirmation to %s", user.email)
    return sent
