#!/usr/bin/env python3
"""
Demo: create a competition, seat anglers on random pegs, record weights, print the board.
Run from project root: python3 scripts/demo_booking.py
"""
from __future__ import annotations

import random
import sys
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pegbook.persistence import UserRepository, get_connection, init_db, set_db_path, write_transaction
from pegbook.services import FREE_INTENT, AdmissionCoordinator, CompetitionRegistry, PaymentGate, ScoringAggregator

ANGLERS = [("ada", "Carp Club"), ("ben", None), ("cleo", "Tench AC"), ("dev", None), ("eli", "Carp Club")]


def main() -> None:
    # Use data/demo_booking.db for demo (distinct from pegbook.db)
    db_path = PROJECT_ROOT / "data" / "demo_booking.db"
    db_path.unlink(missing_ok=True)
    set_db_path(db_path)
    init_db(db_path=db_path)

    rng = random.Random(42)
    conn = get_connection()
    try:
        registry = CompetitionRegistry()
        gate = PaymentGate(admission=AdmissionCoordinator(rng=rng))
        scoring = ScoringAggregator()
        users = UserRepository()

        comp = registry.create(conn, "Demo Open", "2026-11-14", "Mill Pond", slots_total=8)
        print(f"Competition {comp.name}: {comp.slots_total} pegs")

        for username, club in ANGLERS:
            with write_transaction(conn):
                user = users.create(conn, username, username.title(), club=club)
            result = gate.confirm_and_admit(conn, FREE_INTENT, comp.id, user.id)
            print(f"  {user.name:<6} drew peg {result.slot_number}")
            for _ in range(rng.randint(1, 3)):
                scoring.record_entry(conn, comp.id, result.slot_number, rng.randint(200, 2500), user_id=user.id)

        print(f"Free pegs left: {registry.available_slots(conn, comp.id)}")
        print("\nLeaderboard")
        for row in scoring.compute_leaderboard(conn, comp.id):
            d = row.to_dict()
            print(f"  {d['position']}. {d['name']:<6} peg {d['slot_number']}  {d['weight_kg']} kg ({d['weight_lb_oz']})  fish={d['fish_count']}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
