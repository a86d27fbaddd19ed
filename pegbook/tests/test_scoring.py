"""
Tests for leaderboard aggregation and staff weight entries.
"""
from __future__ import annotations

import pytest

from pegbook.errors import NotFoundError, ValidationError
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import LeaderboardEntryRepository, TeamMemberRepository, TeamRepository
from pegbook.services.scoring import ScoringAggregator


@pytest.fixture
def scoring():
    return ScoringAggregator()


def test_individual_totals_sorted_descending(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Open", "2026-09-01", "Lake", 10)
    x = make_user("xavier", club="Carp Club")
    y = make_user("yvonne")
    scoring.record_entry(db_conn, comp.id, 3, "2kg", user_id=x.id)
    scoring.record_entry(db_conn, comp.id, 5, "3kg", user_id=y.id)
    scoring.record_entry(db_conn, comp.id, 3, 1500, user_id=x.id)

    rows = scoring.compute_leaderboard(db_conn, comp.id)
    assert [(r.position, r.user_id, r.weight, r.fish_count) for r in rows] == [
        (1, x.id, 3500, 2),
        (2, y.id, 3000, 1),
    ]
    assert rows[0].club == "Carp Club"
    assert rows[0].slot_number == 3
    assert rows[0].to_dict()["weight_kg"] == "3.500"


def test_ties_go_to_first_weigh_in(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Open", "2026-09-01", "Lake", 10)
    early, late = make_user("early"), make_user("late")
    entries = LeaderboardEntryRepository()
    with write_transaction(db_conn):
        entries.create(db_conn, comp.id, 2, 2000, user_id=late.id, created_at="2026-09-01T10:30:00+00:00")
        entries.create(db_conn, comp.id, 1, 2000, user_id=early.id, created_at="2026-09-01T10:00:00+00:00")
    rows = scoring.compute_leaderboard(db_conn, comp.id)
    assert [r.user_id for r in rows] == [early.id, late.id]
    assert [r.position for r in rows] == [1, 2]


def test_team_mode_groups_by_team(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Team Cup", "2026-09-01", "Lake", 10, mode="team")
    cap, mate, rival = make_user("cap"), make_user("mate"), make_user("rival")
    teams, members = TeamRepository(), TeamMemberRepository()
    with write_transaction(db_conn):
        ours = teams.create(db_conn, comp.id, "Pike Pack", "PIKE01", cap.id)
        members.create(db_conn, ours.id, comp.id, cap.id, "captain")
        members.create(db_conn, ours.id, comp.id, mate.id, "member")
        theirs = teams.create(db_conn, comp.id, "Zander Gang", "ZAND01", rival.id)
        members.create(db_conn, theirs.id, comp.id, rival.id, "captain")

    scoring.record_entry(db_conn, comp.id, 1, 1200, user_id=cap.id, team_id=ours.id)
    # No team reference: attributed through membership.
    scoring.record_entry(db_conn, comp.id, 1, 900, user_id=mate.id)
    scoring.record_entry(db_conn, comp.id, 2, 2000, team_id=theirs.id)
    # Someone with no team at all is left off the board.
    scoring.record_entry(db_conn, comp.id, 4, 5000, user_id=make_user("loner").id)

    rows = scoring.compute_leaderboard(db_conn, comp.id)
    assert [(r.name, r.weight, r.fish_count) for r in rows] == [
        ("Pike Pack", 2100, 2),
        ("Zander Gang", 2000, 1),
    ]
    assert rows[0].team_id == ours.id


def test_update_and_delete_entries(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Open", "2026-09-01", "Lake", 10)
    angler = make_user("angler")
    entry = scoring.record_entry(db_conn, comp.id, 4, "1 lb 0 oz", user_id=angler.id)
    assert entry.weight == 454

    updated = scoring.update_entry(db_conn, entry.id, weight="1kg", slot_number=6)
    assert updated.weight == 1000
    assert updated.slot_number == 6

    entries, total = scoring.list_entries(db_conn, comp.id, user_id=angler.id)
    assert [e.id for e in entries] == [entry.id]
    assert total == 1000

    scoring.delete_entry(db_conn, entry.id)
    assert scoring.compute_leaderboard(db_conn, comp.id) == []
    with pytest.raises(NotFoundError):
        scoring.delete_entry(db_conn, entry.id)


def test_entry_validation(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Open", "2026-09-01", "Lake", 10)
    angler = make_user("angler")
    with pytest.raises(ValidationError):
        scoring.record_entry(db_conn, comp.id, 1, "-5", user_id=angler.id)
    with pytest.raises(ValidationError):
        scoring.record_entry(db_conn, comp.id, 11, 100, user_id=angler.id)
    with pytest.raises(ValidationError):
        scoring.record_entry(db_conn, comp.id, 1, 100)
    with pytest.raises(ValidationError):
        scoring.record_entry(db_conn, comp.id, 1, "a few", user_id=angler.id)


def test_leaderboard_is_stable_across_reads(db_conn, registry, scoring, make_user):
    comp = registry.create(db_conn, "Open", "2026-09-01", "Lake", 10)
    for i, weight in enumerate((1200, 1200, 800, 2500)):
        scoring.record_entry(db_conn, comp.id, i + 1, weight, user_id=make_user(f"angler{i}").id)
    first = [r.to_dict() for r in scoring.compute_leaderboard(db_conn, comp.id)]
    second = [r.to_dict() for r in scoring.compute_leaderboard(db_conn, comp.id)]
    assert first == second
    assert [r["position"] for r in first] == [1, 2, 3, 4]
