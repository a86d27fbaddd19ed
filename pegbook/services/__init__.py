"""
Service layer: peg allocation, payments, teams and scoring.
Services own their write transactions; repositories never commit.
"""
from .slot_ledger import SlotLedger
from .competition_registry import CompetitionRegistry
from .admission import AdmissionCoordinator
from .team_directory import TeamDirectory, generate_invite_code
from .payment_gateway import PaymentGateway, PaymentIntent, StripeGateway, get_gateway
from .payment_gate import FREE_INTENT, PaymentGate
from .notifications import LogNotifier, Notifier, ResendNotifier, get_notifier, notify_booking
from .scoring import ScoringAggregator

__all__ = [
    "SlotLedger",
    "CompetitionRegistry",
    "AdmissionCoordinator",
    "TeamDirectory",
    "generate_invite_code",
    "PaymentGateway",
    "PaymentIntent",
    "StripeGateway",
    "get_gateway",
    "FREE_INTENT",
    "PaymentGate",
    "LogNotifier",
    "Notifier",
    "ResendNotifier",
    "get_notifier",
    "notify_booking",
    "ScoringAggregator",
]
