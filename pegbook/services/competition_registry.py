"""
Competition registry: metadata, capacity and the booked-peg counter.
"""
from __future__ import annotations

import sqlite3

from pegbook.errors import NotFoundError, ValidationError
from pegbook.logger import setup_logger
from pegbook.models import Competition, CompetitionMode, TeamSlotPolicy
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import CompetitionRepository
from pegbook.services.slot_ledger import SlotLedger

logger = setup_logger("pegbook.registry")


class CompetitionRegistry:
    def __init__(self) -> None:
        self._repo = CompetitionRepository()
        self._ledger = SlotLedger()

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        date: str,
        venue: str,
        slots_total: int,
        entry_fee: int = 0,
        currency: str = "gbp",
        mode: str = CompetitionMode.INDIVIDUAL.value,
        team_slot_policy: str = TeamSlotPolicy.ONE_PER_TEAM.value,
        max_team_members: int | None = None,
    ) -> Competition:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Competition name is required")
        if slots_total < 1:
            raise ValidationError("A competition needs at least one peg")
        if entry_fee < 0:
            raise ValidationError("Entry fee cannot be negative")
        if mode not in {m.value for m in CompetitionMode}:
            raise ValidationError(f"mode must be one of: {', '.join(m.value for m in CompetitionMode)}")
        if team_slot_policy not in {p.value for p in TeamSlotPolicy}:
            raise ValidationError(
                f"team_slot_policy must be one of: {', '.join(p.value for p in TeamSlotPolicy)}"
            )
        if max_team_members is not None and max_team_members < 1:
            raise ValidationError("max_team_members must be at least 1")
        with write_transaction(conn):
            competition = self._repo.create(
                conn, name, date, venue, slots_total, entry_fee, currency.lower(), mode,
                team_slot_policy, max_team_members,
            )
        logger.info("Created competition %s (%s pegs, mode=%s)", competition.id, slots_total, mode)
        return competition

    def get(self, conn: sqlite3.Connection, competition_id: str) -> Competition | None:
        return self._repo.get(conn, competition_id)

    def require(self, conn: sqlite3.Connection, competition_id: str) -> Competition:
        competition = self._repo.get(conn, competition_id)
        if competition is None:
            raise NotFoundError("Competition not found")
        return competition

    def list_all(self, conn: sqlite3.Connection) -> list[Competition]:
        return self._repo.list_all(conn)

    def available_slots(self, conn: sqlite3.Connection, competition_id: str) -> list[int]:
        competition = self.require(conn, competition_id)
        return self._ledger.free_slots(conn, competition_id, competition.slots_total)

    def add_booked(self, conn: sqlite3.Connection, competition_id: str, delta: int) -> None:
        """Relative change inside the caller's transaction, alongside the claim writes."""
        self._repo.add_booked(conn, competition_id, delta)

    def reconcile_booked(self, conn: sqlite3.Connection, competition_id: str) -> int:
        """
        Make slots_booked equal the number of claimed pegs again.
        Repairs a counter left behind by an interrupted admission. Returns the count.
        """
        with write_transaction(conn):
            competition = self.require(conn, competition_id)
            actual = self._ledger.claim_count(conn, competition_id)
            if competition.slots_booked != actual:
                logger.warning(
                    "Booked count drift on %s: stored=%s claimed=%s; repairing",
                    competition_id, competition.slots_booked, actual,
                )
                self._repo.set_booked(conn, competition_id, actual)
        return actual
