"""
Scoring aggregator: raw weight entries in, ordered leaderboard out.

Entries are never pre-aggregated; the board is recomputed on every read.
Grouping follows the competition's mode: by team in team competitions,
by angler otherwise.
"""
from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from pegbook.errors import NotFoundError, ValidationError
from pegbook.logger import setup_logger
from pegbook.models import Competition, LeaderboardEntry, LeaderboardRow
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import (
    LeaderboardEntryRepository,
    TeamMemberRepository,
    TeamRepository,
    UserRepository,
)
from pegbook.services.competition_registry import CompetitionRegistry
from pegbook.weights import parse_weight

logger = setup_logger("pegbook.scoring")


@dataclass
class _Group:
    key: str
    total: int = 0
    fish_count: int = 0
    first_created_at: datetime | None = None
    latest: LeaderboardEntry | None = None
    entries: list[LeaderboardEntry] = field(default_factory=list)

    def add(self, entry: LeaderboardEntry) -> None:
        self.entries.append(entry)
        self.total += entry.weight
        self.fish_count += 1
        if self.first_created_at is None or entry.created_at < self.first_created_at:
            self.first_created_at = entry.created_at
        if self.latest is None or entry.updated_at >= self.latest.updated_at:
            self.latest = entry


def rank_groups(groups: list[_Group]) -> list[_Group]:
    """Heaviest first; equal totals go to whoever weighed in first, then by key."""
    return sorted(groups, key=lambda g: (-g.total, g.first_created_at, g.key))


class ScoringAggregator:
    def __init__(self) -> None:
        self._registry = CompetitionRegistry()
        self._entries = LeaderboardEntryRepository()
        self._users = UserRepository()
        self._teams = TeamRepository()
        self._members = TeamMemberRepository()

    # ---------- Leaderboard ----------

    def compute_leaderboard(self, conn: sqlite3.Connection, competition_id: str) -> list[LeaderboardRow]:
        competition = self._registry.require(conn, competition_id)
        entries = self._entries.list_by_competition(conn, competition_id)
        if competition.is_team_mode:
            groups = self._group_by_team(conn, competition, entries)
        else:
            groups = self._group_by_user(competition, entries)

        ranked = rank_groups(list(groups.values()))
        if competition.is_team_mode:
            teams = self._teams.get_many(conn, [g.key for g in ranked])
            users = {}
        else:
            teams = {}
            users = self._users.get_many(conn, [g.key for g in ranked])

        rows = []
        for position, group in enumerate(ranked, start=1):
            if competition.is_team_mode:
                team = teams.get(group.key)
                row = LeaderboardRow(
                    position=position,
                    name=team.name if team else "Unknown team",
                    slot_number=group.latest.slot_number,
                    weight=group.total,
                    fish_count=group.fish_count,
                    team_id=group.key,
                )
            else:
                user = users.get(group.key)
                row = LeaderboardRow(
                    position=position,
                    name=user.name if user else "Unknown angler",
                    slot_number=group.latest.slot_number,
                    weight=group.total,
                    fish_count=group.fish_count,
                    club=user.club if user else None,
                    user_id=group.key,
                )
            rows.append(row)
        return rows

    def _group_by_user(self, competition: Competition, entries: list[LeaderboardEntry]) -> dict[str, _Group]:
        groups: dict[str, _Group] = {}
        for entry in entries:
            if entry.user_id is None:
                logger.warning("Entry %s in %s has no angler; skipped", entry.id, competition.id)
                continue
            groups.setdefault(entry.user_id, _Group(entry.user_id)).add(entry)
        return groups

    def _group_by_team(
        self, conn: sqlite3.Connection, competition: Competition, entries: list[LeaderboardEntry]
    ) -> dict[str, _Group]:
        team_of = {m.user_id: m.team_id for m in self._members.list_by_competition(conn, competition.id)}
        groups: dict[str, _Group] = {}
        for entry in entries:
            key = entry.team_id or team_of.get(entry.user_id or "")
            if key is None:
                logger.warning("Entry %s in %s belongs to no team; skipped", entry.id, competition.id)
                continue
            groups.setdefault(key, _Group(key)).add(entry)
        return groups

    # ---------- Weight entries (staff) ----------

    def record_entry(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        slot_number: int,
        weight: int | float | str,
        user_id: str | None = None,
        team_id: str | None = None,
    ) -> LeaderboardEntry:
        competition = self._registry.require(conn, competition_id)
        grams = self._parse(weight)
        self._check_slot(competition, slot_number)
        if user_id is None and team_id is None:
            raise ValidationError("An entry needs an angler or a team")
        if team_id is not None:
            team = self._teams.get(conn, team_id)
            if team is None or team.competition_id != competition_id:
                raise ValidationError("Team is not entered in this competition")
        if user_id is not None and self._users.get(conn, user_id) is None:
            raise NotFoundError("User not found")
        with write_transaction(conn):
            entry = self._entries.create(conn, competition_id, slot_number, grams, user_id=user_id, team_id=team_id)
        logger.info("Recorded %sg on peg %s in %s", grams, slot_number, competition_id)
        return entry

    def update_entry(
        self,
        conn: sqlite3.Connection,
        entry_id: str,
        weight: int | float | str | None = None,
        slot_number: int | None = None,
    ) -> LeaderboardEntry:
        entry = self._entries.get(conn, entry_id)
        if entry is None:
            raise NotFoundError("Leaderboard entry not found")
        grams = self._parse(weight) if weight is not None else None
        if slot_number is not None:
            self._check_slot(self._registry.require(conn, entry.competition_id), slot_number)
        with write_transaction(conn):
            self._entries.update(conn, entry_id, weight=grams, slot_number=slot_number)
        return self._entries.get(conn, entry_id)

    def delete_entry(self, conn: sqlite3.Connection, entry_id: str) -> None:
        with write_transaction(conn):
            deleted = self._entries.delete(conn, entry_id)
        if not deleted:
            raise NotFoundError("Leaderboard entry not found")

    def list_entries(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str | None = None,
        team_id: str | None = None,
    ) -> tuple[list[LeaderboardEntry], int]:
        """Raw entries (oldest first) and their total in grams."""
        self._registry.require(conn, competition_id)
        entries = self._entries.list_by_competition(conn, competition_id, user_id=user_id, team_id=team_id)
        return entries, sum(e.weight for e in entries)

    @staticmethod
    def _parse(weight: int | float | str) -> int:
        try:
            return parse_weight(weight)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    @staticmethod
    def _check_slot(competition: Competition, slot_number: int) -> None:
        if slot_number < 1 or slot_number > competition.slots_total:
            raise ValidationError(f"Peg {slot_number} is not valid for this competition")
