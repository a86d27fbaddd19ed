"""
Repository interfaces for peg booking data.
No business logic: only read/write operations.

Write methods never commit: callers group them inside
persistence.db.write_transaction so a booking lands all-or-nothing.
"""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone

from pegbook.models import (
    Competition,
    LeaderboardEntry,
    MemberStatus,
    Participant,
    Payment,
    PaymentStatus,
    SlotClaim,
    Team,
    TeamMember,
    User,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def violated_table(exc: sqlite3.IntegrityError) -> str | None:
    """
    Table named by a UNIQUE/PRIMARY KEY violation message, "check" for CHECK failures.
    e.g. "UNIQUE constraint failed: slot_claims.competition_id, slot_claims.slot_number" -> "slot_claims"
    """
    msg = str(exc)
    if msg.startswith("CHECK constraint failed"):
        return "check"
    if "constraint failed:" not in msg:
        return None
    target = msg.split("constraint failed:", 1)[1].strip()
    return target.split(".", 1)[0] if "." in target else None


# ---------- UserRepository ----------


class UserRepository:
    """CRUD for users. username unique; password_hash for auth."""

    _COLS = "id, username, name, email, club, password_hash, is_staff, created_at"

    def create(
        self,
        conn: sqlite3.Connection,
        username: str,
        name: str,
        password_hash: str = "",
        email: str | None = None,
        club: str | None = None,
        is_staff: bool = False,
        id: str | None = None,
    ) -> User:
        uid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO users ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (uid, username, name, email, club, password_hash, int(is_staff), now),
        )
        return User(
            id=uid, username=username, name=name, email=email, club=club,
            password_hash=password_hash, is_staff=is_staff, created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, user_id: str) -> User | None:
        row = conn.execute(f"SELECT {self._COLS} FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_by_username(self, conn: sqlite3.Connection, username: str) -> User | None:
        row = conn.execute(f"SELECT {self._COLS} FROM users WHERE username = ?", (username,)).fetchone()
        return self._from_row(row) if row else None

    def get_many(self, conn: sqlite3.Connection, user_ids: list[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        marks = ", ".join("?" for _ in user_ids)
        rows = conn.execute(f"SELECT {self._COLS} FROM users WHERE id IN ({marks})", tuple(user_ids)).fetchall()
        return {r["id"]: self._from_row(r) for r in rows}

    def set_staff(self, conn: sqlite3.Connection, user_id: str, is_staff: bool) -> None:
        conn.execute("UPDATE users SET is_staff = ? WHERE id = ?", (int(is_staff), user_id))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> User:
        return User(
            id=r["id"],
            username=r["username"],
            name=r["name"],
            email=r["email"],
            club=r["club"],
            password_hash=r["password_hash"],
            is_staff=bool(r["is_staff"]),
            created_at=_parse_datetime(r["created_at"]),
        )


# ---------- CompetitionRepository ----------


class CompetitionRepository:
    """CRUD for competitions plus the booked-counter increments."""

    _COLS = (
        "id, name, date, venue, slots_total, slots_booked, entry_fee, currency, "
        "mode, team_slot_policy, max_team_members, created_at"
    )

    def create(
        self,
        conn: sqlite3.Connection,
        name: str,
        date: str,
        venue: str,
        slots_total: int,
        entry_fee: int,
        currency: str,
        mode: str,
        team_slot_policy: str,
        max_team_members: int | None = None,
        id: str | None = None,
    ) -> Competition:
        cid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO competitions ({self._COLS}) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?)",
            (cid, name, date, venue, slots_total, entry_fee, currency, mode, team_slot_policy, max_team_members, now),
        )
        return Competition(
            id=cid, name=name, date=date, venue=venue, slots_total=slots_total, slots_booked=0,
            entry_fee=entry_fee, currency=currency, mode=mode, team_slot_policy=team_slot_policy,
            max_team_members=max_team_members, created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, competition_id: str) -> Competition | None:
        row = conn.execute(f"SELECT {self._COLS} FROM competitions WHERE id = ?", (competition_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_all(self, conn: sqlite3.Connection) -> list[Competition]:
        rows = conn.execute(f"SELECT {self._COLS} FROM competitions ORDER BY date, created_at").fetchall()
        return [self._from_row(r) for r in rows]

    def add_booked(self, conn: sqlite3.Connection, competition_id: str, delta: int) -> None:
        """Atomic relative update; the table CHECK keeps 0 <= booked <= total."""
        conn.execute(
            "UPDATE competitions SET slots_booked = slots_booked + ? WHERE id = ?",
            (delta, competition_id),
        )

    def set_booked(self, conn: sqlite3.Connection, competition_id: str, booked: int) -> None:
        conn.execute("UPDATE competitions SET slots_booked = ? WHERE id = ?", (booked, competition_id))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> Competition:
        return Competition(
            id=r["id"],
            name=r["name"],
            date=r["date"],
            venue=r["venue"],
            slots_total=r["slots_total"],
            slots_booked=r["slots_booked"],
            entry_fee=r["entry_fee"],
            currency=r["currency"],
            mode=r["mode"],
            team_slot_policy=r["team_slot_policy"],
            max_team_members=r["max_team_members"],
            created_at=_parse_datetime(r["created_at"]),
        )


# ---------- SlotClaimRepository ----------


class SlotClaimRepository:
    """Rows of the slot ledger. Inserting a taken peg raises sqlite3.IntegrityError."""

    def insert(
        self, conn: sqlite3.Connection, competition_id: str, slot_number: int, owner_kind: str, owner_id: str
    ) -> None:
        conn.execute(
            "INSERT INTO slot_claims (competition_id, slot_number, owner_kind, owner_id, claimed_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (competition_id, slot_number, owner_kind, owner_id, _now()),
        )

    def list_slot_numbers(self, conn: sqlite3.Connection, competition_id: str) -> list[int]:
        rows = conn.execute(
            "SELECT slot_number FROM slot_claims WHERE competition_id = ? ORDER BY slot_number",
            (competition_id,),
        ).fetchall()
        return [r["slot_number"] for r in rows]

    def list_by_competition(self, conn: sqlite3.Connection, competition_id: str) -> list[SlotClaim]:
        rows = conn.execute(
            "SELECT competition_id, slot_number, owner_kind, owner_id, claimed_at FROM slot_claims "
            "WHERE competition_id = ? ORDER BY slot_number",
            (competition_id,),
        ).fetchall()
        return [
            SlotClaim(
                competition_id=r["competition_id"],
                slot_number=r["slot_number"],
                owner_kind=r["owner_kind"],
                owner_id=r["owner_id"],
                claimed_at=_parse_datetime(r["claimed_at"]),
            )
            for r in rows
        ]

    def count(self, conn: sqlite3.Connection, competition_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) FROM slot_claims WHERE competition_id = ?", (competition_id,)).fetchone()
        return int(row[0])

    def delete_by_owner(self, conn: sqlite3.Connection, competition_id: str, owner_kind: str, owner_id: str) -> int:
        cur = conn.execute(
            "DELETE FROM slot_claims WHERE competition_id = ? AND owner_kind = ? AND owner_id = ?",
            (competition_id, owner_kind, owner_id),
        )
        return cur.rowcount


# ---------- ParticipantRepository ----------


class ParticipantRepository:
    """One row per (competition, user)."""

    _COLS = "id, competition_id, user_id, slot_number, team_id, joined_at"

    def create(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        slot_number: int | None,
        team_id: str | None = None,
        id: str | None = None,
    ) -> Participant:
        pid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO participants ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?)",
            (pid, competition_id, user_id, slot_number, team_id, now),
        )
        return Participant(
            id=pid, competition_id=competition_id, user_id=user_id, slot_number=slot_number,
            team_id=team_id, joined_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, participant_id: str) -> Participant | None:
        row = conn.execute(f"SELECT {self._COLS} FROM participants WHERE id = ?", (participant_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_by_user(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> Participant | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM participants WHERE competition_id = ? AND user_id = ?",
            (competition_id, user_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_by_competition(self, conn: sqlite3.Connection, competition_id: str) -> list[Participant]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM participants WHERE competition_id = ? ORDER BY joined_at",
            (competition_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def list_by_team(self, conn: sqlite3.Connection, team_id: str) -> list[Participant]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM participants WHERE team_id = ? ORDER BY joined_at",
            (team_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def update_slot(self, conn: sqlite3.Connection, participant_id: str, slot_number: int | None) -> None:
        conn.execute("UPDATE participants SET slot_number = ? WHERE id = ?", (slot_number, participant_id))

    def update_slot_by_team(self, conn: sqlite3.Connection, team_id: str, slot_number: int) -> None:
        conn.execute("UPDATE participants SET slot_number = ? WHERE team_id = ?", (slot_number, team_id))

    def delete(self, conn: sqlite3.Connection, participant_id: str) -> None:
        conn.execute("DELETE FROM participants WHERE id = ?", (participant_id,))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> Participant:
        return Participant(
            id=r["id"],
            competition_id=r["competition_id"],
            user_id=r["user_id"],
            slot_number=r["slot_number"],
            team_id=r["team_id"],
            joined_at=_parse_datetime(r["joined_at"]),
        )


# ---------- TeamRepository ----------


class TeamRepository:
    """CRUD for teams. invite_code unique."""

    _COLS = "id, competition_id, name, invite_code, captain_id, payment_status, slot_number, admitted_at, created_at"

    def create(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        name: str,
        invite_code: str,
        captain_id: str,
        id: str | None = None,
    ) -> Team:
        tid = id or str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO teams ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, NULL, NULL, ?)",
            (tid, competition_id, name, invite_code, captain_id, PaymentStatus.PENDING.value, now),
        )
        return Team(
            id=tid, competition_id=competition_id, name=name, invite_code=invite_code,
            captain_id=captain_id, payment_status=PaymentStatus.PENDING.value,
            created_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, team_id: str) -> Team | None:
        row = conn.execute(f"SELECT {self._COLS} FROM teams WHERE id = ?", (team_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_by_invite_code(self, conn: sqlite3.Connection, invite_code: str) -> Team | None:
        row = conn.execute(f"SELECT {self._COLS} FROM teams WHERE invite_code = ?", (invite_code,)).fetchone()
        return self._from_row(row) if row else None

    def list_by_competition(self, conn: sqlite3.Connection, competition_id: str) -> list[Team]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM teams WHERE competition_id = ? ORDER BY created_at",
            (competition_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def get_many(self, conn: sqlite3.Connection, team_ids: list[str]) -> dict[str, Team]:
        if not team_ids:
            return {}
        marks = ", ".join("?" for _ in team_ids)
        rows = conn.execute(f"SELECT {self._COLS} FROM teams WHERE id IN ({marks})", tuple(team_ids)).fetchall()
        return {r["id"]: self._from_row(r) for r in rows}

    def mark_admitted(self, conn: sqlite3.Connection, team_id: str, slot_number: int | None) -> bool:
        """Set admitted_at (and the shared peg) once. False if the team was already admitted."""
        cur = conn.execute(
            "UPDATE teams SET admitted_at = ?, slot_number = ? WHERE id = ? AND admitted_at IS NULL",
            (_now(), slot_number, team_id),
        )
        return cur.rowcount == 1

    def update_slot(self, conn: sqlite3.Connection, team_id: str, slot_number: int) -> None:
        conn.execute("UPDATE teams SET slot_number = ? WHERE id = ?", (slot_number, team_id))

    def clear_admission(self, conn: sqlite3.Connection, team_id: str) -> None:
        conn.execute("UPDATE teams SET admitted_at = NULL, slot_number = NULL WHERE id = ?", (team_id,))

    def update_payment_status(self, conn: sqlite3.Connection, team_id: str, status: str) -> None:
        conn.execute("UPDATE teams SET payment_status = ? WHERE id = ?", (status, team_id))

    def update_captain(self, conn: sqlite3.Connection, team_id: str, captain_id: str) -> None:
        conn.execute("UPDATE teams SET captain_id = ? WHERE id = ?", (captain_id, team_id))

    def delete(self, conn: sqlite3.Connection, team_id: str) -> None:
        conn.execute("DELETE FROM teams WHERE id = ?", (team_id,))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> Team:
        return Team(
            id=r["id"],
            competition_id=r["competition_id"],
            name=r["name"],
            invite_code=r["invite_code"],
            captain_id=r["captain_id"],
            payment_status=r["payment_status"],
            slot_number=r["slot_number"],
            admitted_at=_parse_datetime(r["admitted_at"]) if r["admitted_at"] else None,
            created_at=_parse_datetime(r["created_at"]),
        )


# ---------- TeamMemberRepository ----------


class TeamMemberRepository:
    """Membership rows. One team per user per competition."""

    _COLS = "id, team_id, competition_id, user_id, role, status, joined_at"

    def create(
        self,
        conn: sqlite3.Connection,
        team_id: str,
        competition_id: str,
        user_id: str,
        role: str,
        status: str = MemberStatus.ACCEPTED.value,
    ) -> TeamMember:
        mid = str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO team_members ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (mid, team_id, competition_id, user_id, role, status, now),
        )
        return TeamMember(
            id=mid, team_id=team_id, competition_id=competition_id, user_id=user_id,
            role=role, status=status, joined_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, team_id: str, user_id: str) -> TeamMember | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM team_members WHERE team_id = ? AND user_id = ?",
            (team_id, user_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def get_by_competition_user(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> TeamMember | None:
        row = conn.execute(
            f"SELECT {self._COLS} FROM team_members WHERE competition_id = ? AND user_id = ?",
            (competition_id, user_id),
        ).fetchone()
        return self._from_row(row) if row else None

    def list_by_team(self, conn: sqlite3.Connection, team_id: str, status: str | None = None) -> list[TeamMember]:
        sql = f"SELECT {self._COLS} FROM team_members WHERE team_id = ?"
        args: tuple = (team_id,)
        if status is not None:
            sql += " AND status = ?"
            args = args + (status,)
        rows = conn.execute(sql + " ORDER BY joined_at", args).fetchall()
        return [self._from_row(r) for r in rows]

    def list_by_competition(self, conn: sqlite3.Connection, competition_id: str) -> list[TeamMember]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM team_members WHERE competition_id = ?",
            (competition_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def count_accepted(self, conn: sqlite3.Connection, team_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) FROM team_members WHERE team_id = ? AND status = ?",
            (team_id, MemberStatus.ACCEPTED.value),
        ).fetchone()
        return int(row[0])

    def update_role(self, conn: sqlite3.Connection, member_id: str, role: str) -> None:
        conn.execute("UPDATE team_members SET role = ? WHERE id = ?", (role, member_id))

    def delete(self, conn: sqlite3.Connection, member_id: str) -> None:
        conn.execute("DELETE FROM team_members WHERE id = ?", (member_id,))

    def delete_by_team(self, conn: sqlite3.Connection, team_id: str) -> None:
        conn.execute("DELETE FROM team_members WHERE team_id = ?", (team_id,))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> TeamMember:
        return TeamMember(
            id=r["id"],
            team_id=r["team_id"],
            competition_id=r["competition_id"],
            user_id=r["user_id"],
            role=r["role"],
            status=r["status"],
            joined_at=_parse_datetime(r["joined_at"]),
        )


# ---------- PaymentRepository ----------


class PaymentRepository:
    """One row per external intent (intent_ref unique)."""

    _COLS = "id, competition_id, user_id, team_id, amount, currency, intent_ref, status, created_at"

    def create(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        amount: int,
        currency: str,
        intent_ref: str,
        team_id: str | None = None,
    ) -> Payment:
        pid = str(uuid.uuid4())
        now = _now()
        conn.execute(
            f"INSERT INTO payments ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (pid, competition_id, user_id, team_id, amount, currency, intent_ref, PaymentStatus.PENDING.value, now),
        )
        return Payment(
            id=pid, competition_id=competition_id, user_id=user_id, team_id=team_id, amount=amount,
            currency=currency, intent_ref=intent_ref, status=PaymentStatus.PENDING.value,
            created_at=_parse_datetime(now),
        )

    def get_by_intent(self, conn: sqlite3.Connection, intent_ref: str) -> Payment | None:
        row = conn.execute(f"SELECT {self._COLS} FROM payments WHERE intent_ref = ?", (intent_ref,)).fetchone()
        return self._from_row(row) if row else None

    def has_succeeded(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> bool:
        """True if the user holds a succeeded individual payment for the competition."""
        row = conn.execute(
            "SELECT 1 FROM payments WHERE competition_id = ? AND user_id = ? AND team_id IS NULL AND status = ?",
            (competition_id, user_id, PaymentStatus.SUCCEEDED.value),
        ).fetchone()
        return row is not None

    def list_by_competition(self, conn: sqlite3.Connection, competition_id: str) -> list[Payment]:
        rows = conn.execute(
            f"SELECT {self._COLS} FROM payments WHERE competition_id = ? ORDER BY created_at",
            (competition_id,),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def update_status(self, conn: sqlite3.Connection, intent_ref: str, status: str) -> None:
        conn.execute("UPDATE payments SET status = ? WHERE intent_ref = ?", (status, intent_ref))

    @staticmethod
    def _from_row(r: sqlite3.Row) -> Payment:
        return Payment(
            id=r["id"],
            competition_id=r["competition_id"],
            user_id=r["user_id"],
            team_id=r["team_id"],
            amount=r["amount"],
            currency=r["currency"],
            intent_ref=r["intent_ref"],
            status=r["status"],
            created_at=_parse_datetime(r["created_at"]),
        )


# ---------- LeaderboardEntryRepository ----------


class LeaderboardEntryRepository:
    """Raw weight entries; never aggregated here."""

    _COLS = "id, competition_id, user_id, team_id, slot_number, weight, created_at, updated_at"

    def create(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        slot_number: int,
        weight: int,
        user_id: str | None = None,
        team_id: str | None = None,
        created_at: str | None = None,
    ) -> LeaderboardEntry:
        eid = str(uuid.uuid4())
        now = created_at or _now()
        conn.execute(
            f"INSERT INTO leaderboard_entries ({self._COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (eid, competition_id, user_id, team_id, slot_number, weight, now, now),
        )
        return LeaderboardEntry(
            id=eid, competition_id=competition_id, user_id=user_id, team_id=team_id,
            slot_number=slot_number, weight=weight,
            created_at=_parse_datetime(now), updated_at=_parse_datetime(now),
        )

    def get(self, conn: sqlite3.Connection, entry_id: str) -> LeaderboardEntry | None:
        row = conn.execute(f"SELECT {self._COLS} FROM leaderboard_entries WHERE id = ?", (entry_id,)).fetchone()
        return self._from_row(row) if row else None

    def list_by_competition(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str | None = None,
        team_id: str | None = None,
    ) -> list[LeaderboardEntry]:
        sql = f"SELECT {self._COLS} FROM leaderboard_entries WHERE competition_id = ?"
        args: tuple = (competition_id,)
        if user_id is not None:
            sql += " AND user_id = ?"
            args = args + (user_id,)
        if team_id is not None:
            sql += " AND team_id = ?"
            args = args + (team_id,)
        rows = conn.execute(sql + " ORDER BY created_at, id", args).fetchall()
        return [self._from_row(r) for r in rows]

    def update(
        self,
        conn: sqlite3.Connection,
        entry_id: str,
        weight: int | None = None,
        slot_number: int | None = None,
    ) -> None:
        sets = ["updated_at = ?"]
        args: list = [_now()]
        if weight is not None:
            sets.append("weight = ?")
            args.append(weight)
        if slot_number is not None:
            sets.append("slot_number = ?")
            args.append(slot_number)
        args.append(entry_id)
        conn.execute(f"UPDATE leaderboard_entries SET {', '.join(sets)} WHERE id = ?", tuple(args))

    def delete(self, conn: sqlite3.Connection, entry_id: str) -> bool:
        cur = conn.execute("DELETE FROM leaderboard_entries WHERE id = ?", (entry_id,))
        return cur.rowcount == 1

    @staticmethod
    def _from_row(r: sqlite3.Row) -> LeaderboardEntry:
        return LeaderboardEntry(
            id=r["id"],
            competition_id=r["competition_id"],
            user_id=r["user_id"],
            team_id=r["team_id"],
            slot_number=r["slot_number"],
            weight=r["weight"],
            created_at=_parse_datetime(r["created_at"]),
            updated_at=_parse_datetime(r["updated_at"]),
        )
