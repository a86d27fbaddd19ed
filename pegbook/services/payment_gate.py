"""
Payment gate: money must have moved before a peg is handed out, and confirming
the same payment twice must seat nobody twice.

create_intent prices the entry server-side and records a pending payment.
confirm_and_admit is the single repeatable entry point that checks the provider,
seats the competitor (or team) once, and marks the payment succeeded. A repeat
call returns the stored result and repairs the booked counter if an earlier call
stopped half way.
"""
from __future__ import annotations

import sqlite3

from pegbook.errors import (
    AlreadyJoined,
    CompetitionFull,
    NotCaptain,
    NotFoundError,
    PaymentFailed,
    PaymentMismatch,
    PaymentRequired,
    TeamAlreadyPaid,
    ValidationError,
)
from pegbook.logger import setup_logger
from pegbook.models import AdmissionResult, Competition, Payment, PaymentStatus, Team
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import ParticipantRepository, PaymentRepository, TeamRepository
from pegbook.services.admission import AdmissionCoordinator
from pegbook.services.competition_registry import CompetitionRegistry
from pegbook.services.notifications import Notifier, notify_booking
from pegbook.services.payment_gateway import PaymentGateway, PaymentIntent, get_gateway

logger = setup_logger("pegbook.payment_gate")

# Intent reference for zero-fee entries; never sent to the provider.
FREE_INTENT = "free"


class PaymentGate:
    def __init__(
        self,
        gateway: PaymentGateway | None = None,
        admission: AdmissionCoordinator | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._gateway = gateway
        self._admission = admission or AdmissionCoordinator()
        self._notifier = notifier
        self._registry = CompetitionRegistry()
        self._payments = PaymentRepository()
        self._participants = ParticipantRepository()
        self._teams = TeamRepository()

    # ---------- Intent ----------

    def create_intent(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        team_id: str | None = None,
    ) -> tuple[Payment, PaymentIntent]:
        """Charge amount comes from the competition's entry fee, never from the caller."""
        competition = self._registry.require(conn, competition_id)
        if competition.is_free:
            raise ValidationError("This competition is free to enter; no payment is needed")
        if competition.slots_booked >= competition.slots_total:
            raise CompetitionFull("Competition is full. No pegs available.")

        metadata = {
            "competition_id": competition.id,
            "competition_name": competition.name,
            "user_id": user_id,
        }
        if team_id is not None:
            team = self._require_team(conn, competition, team_id)
            if team.captain_id != user_id:
                raise NotCaptain("Only the team captain can pay for the team")
            if team.is_paid:
                raise TeamAlreadyPaid("This team has already paid its entry fee")
            metadata["team_id"] = team.id
        else:
            if competition.is_team_mode:
                raise ValidationError("This competition is entered as teams; pay through your team")
            if self._participants.get_by_user(conn, competition.id, user_id) is not None:
                raise AlreadyJoined("You have already joined this competition")

        intent = self._require_gateway().create_intent(competition.entry_fee, competition.currency, metadata)
        with write_transaction(conn):
            payment = self._payments.create(
                conn, competition.id, user_id, competition.entry_fee, competition.currency,
                intent.id, team_id=team_id,
            )
        logger.info("Payment %s pending for %s in %s", intent.id, team_id or user_id, competition.id)
        return payment, intent

    # ---------- Confirm ----------

    def confirm_and_admit(
        self,
        conn: sqlite3.Connection,
        intent_ref: str,
        competition_id: str,
        user_id: str,
        team_id: str | None = None,
    ) -> AdmissionResult:
        competition = self._registry.require(conn, competition_id)
        team = self._require_team(conn, competition, team_id) if team_id is not None else None
        if team is not None and team.captain_id != user_id:
            raise NotCaptain("Only the team captain can confirm the team's payment")

        if intent_ref == FREE_INTENT:
            if not competition.is_free:
                raise PaymentRequired("Payment required. Please complete payment to join this competition.")
            return self._admit_once(conn, competition, user_id, team, payment=None)

        payment = self._payments.get_by_intent(conn, intent_ref)
        if payment is None:
            raise NotFoundError("Payment not found")
        self._check_ownership(payment, competition, user_id, team)

        if payment.status == PaymentStatus.SUCCEEDED:
            existing = self._existing_result(conn, competition, user_id, team)
            if existing is not None:
                return self._replay(conn, competition, existing)
        else:
            self._verify_with_provider(conn, payment)
        return self._admit_once(conn, competition, user_id, team, payment)

    # ---------- Internals ----------

    def _admit_once(
        self,
        conn: sqlite3.Connection,
        competition: Competition,
        user_id: str,
        team: Team | None,
        payment: Payment | None,
    ) -> AdmissionResult:
        try:
            if team is not None:
                result = self._admission.admit_team(conn, competition, team)
            else:
                result = self._admission.admit_individual(conn, competition, user_id)
        except AlreadyJoined:
            # Seated by an earlier (or concurrent) call for the same entry.
            existing = self._existing_result(conn, competition, user_id, team)
            if existing is None:
                raise
            self._mark_succeeded(conn, payment, team)
            return self._replay(conn, competition, existing)

        self._mark_succeeded(conn, payment, team)
        if self._notifier is not None:
            notify_booking(self._notifier, conn, result)
        return result

    def _verify_with_provider(self, conn: sqlite3.Connection, payment: Payment) -> None:
        intent = self._require_gateway().retrieve_intent(payment.intent_ref)
        if intent.status == PaymentStatus.SUCCEEDED:
            if intent.amount < payment.amount:
                raise PaymentMismatch("Payment amount does not cover the entry fee")
            return
        if intent.status == PaymentStatus.FAILED:
            with write_transaction(conn):
                self._payments.update_status(conn, payment.intent_ref, PaymentStatus.FAILED.value)
            logger.info("Payment %s failed at the provider", payment.intent_ref)
            raise PaymentFailed("Payment failed. Please try again with another payment method.")
        raise PaymentRequired("Payment has not completed yet")

    def _mark_succeeded(self, conn: sqlite3.Connection, payment: Payment | None, team: Team | None) -> None:
        with write_transaction(conn):
            if payment is not None:
                self._payments.update_status(conn, payment.intent_ref, PaymentStatus.SUCCEEDED.value)
            if team is not None:
                self._teams.update_payment_status(conn, team.id, PaymentStatus.SUCCEEDED.value)

    def _replay(self, conn: sqlite3.Connection, competition: Competition, existing: AdmissionResult) -> AdmissionResult:
        booked = self._registry.reconcile_booked(conn, competition.id)
        logger.info(
            "Replayed admission for %s in %s (pegs %s, booked=%s)",
            existing.team_id or existing.participants[0].user_id, competition.id,
            existing.slot_numbers, booked,
        )
        return existing

    def _existing_result(
        self,
        conn: sqlite3.Connection,
        competition: Competition,
        user_id: str,
        team: Team | None,
    ) -> AdmissionResult | None:
        if team is not None:
            team = self._teams.get(conn, team.id)
            if team is None or not team.is_admitted:
                return None
            participants = self._participants.list_by_team(conn, team.id)
            if team.slot_number is not None:
                slots = [team.slot_number]
            else:
                slots = sorted(p.slot_number for p in participants if p.slot_number is not None)
            return AdmissionResult(
                competition_id=competition.id, slot_numbers=slots, participants=participants,
                team_id=team.id, replayed=True,
            )
        participant = self._participants.get_by_user(conn, competition.id, user_id)
        if participant is None or participant.slot_number is None:
            return None
        return AdmissionResult(
            competition_id=competition.id, slot_numbers=[participant.slot_number],
            participants=[participant], replayed=True,
        )

    def _check_ownership(
        self, payment: Payment, competition: Competition, user_id: str, team: Team | None
    ) -> None:
        if payment.competition_id != competition.id:
            raise PaymentMismatch("Payment does not belong to this competition")
        if payment.team_id is not None:
            if team is None:
                raise ValidationError("team_id is required to confirm a team payment")
            if payment.team_id != team.id:
                raise PaymentMismatch("Payment does not belong to this team")
        elif team is not None:
            raise PaymentMismatch("Payment was not made for a team")
        elif payment.user_id != user_id:
            raise PaymentMismatch("Payment does not belong to you")

    def _require_team(self, conn: sqlite3.Connection, competition: Competition, team_id: str) -> Team:
        team = self._teams.get(conn, team_id)
        if team is None:
            raise NotFoundError("Team not found")
        if team.competition_id != competition.id:
            raise ValidationError("Team is not entered in this competition")
        return team

    def _require_gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = get_gateway()
        return self._gateway
