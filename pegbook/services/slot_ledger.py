"""
Slot ledger: which pegs of a competition are taken, and by whom.

Reservation is an INSERT against the (competition_id, slot_number) primary key.
A lost race surfaces as a rejected insert, never as a double booking.
"""
from __future__ import annotations

import sqlite3

from pegbook.persistence.repositories import SlotClaimRepository, violated_table


class SlotLedger:
    def __init__(self) -> None:
        self._claims = SlotClaimRepository()

    def occupied_slots(self, conn: sqlite3.Connection, competition_id: str) -> set[int]:
        """Pegs held by individual participants, teams and per-member team seats."""
        return set(self._claims.list_slot_numbers(conn, competition_id))

    def free_slots(self, conn: sqlite3.Connection, competition_id: str, slots_total: int) -> list[int]:
        occupied = self.occupied_slots(conn, competition_id)
        return [s for s in range(1, slots_total + 1) if s not in occupied]

    def claim_count(self, conn: sqlite3.Connection, competition_id: str) -> int:
        return self._claims.count(conn, competition_id)

    def reserve(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        slot_number: int,
        owner_kind: str,
        owner_id: str,
    ) -> bool:
        """
        Claim one peg inside the caller's write transaction.
        Returns False when the peg is already claimed; any other failure propagates.
        """
        try:
            self._claims.insert(conn, competition_id, slot_number, owner_kind, owner_id)
        except sqlite3.IntegrityError as e:
            if violated_table(e) == "slot_claims":
                return False
            raise
        return True

    def release(self, conn: sqlite3.Connection, competition_id: str, owner_kind: str, owner_id: str) -> int:
        """Drop every claim held by the owner. Returns how many pegs were freed."""
        return self._claims.delete_by_owner(conn, competition_id, owner_kind, owner_id)
