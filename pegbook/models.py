"""
Data models for the peg booking backend.
Domain objects only; no persistence or API logic.

A competition owns a fixed set of numbered pegs (slots 1..slots_total). Anglers
take a peg individually, or as a team that shares one peg or takes one per member.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pegbook.weights import format_kg, format_lb_oz


class CompetitionMode(str, Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class TeamSlotPolicy(str, Enum):
    """How many pegs an admitted team consumes."""
    ONE_PER_TEAM = "team"      # one shared peg
    ONE_PER_MEMBER = "members"  # one peg per accepted member


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MemberRole(str, Enum):
    CAPTAIN = "captain"
    MEMBER = "member"


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class ClaimOwner(str, Enum):
    """Holder kind of a slot claim."""
    PARTICIPANT = "participant"
    TEAM = "team"


# ---------- User ----------
@dataclass
class User:
    """An angler (or staff member). username unique; password_hash never plain text."""
    id: str
    username: str
    name: str
    created_at: datetime
    email: str | None = None
    club: str | None = None
    password_hash: str | None = None
    is_staff: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "is_staff": self.is_staff,
        }
        if self.email is not None:
            d["email"] = self.email
        if self.club is not None:
            d["club"] = self.club
        return d


# ---------- Competition ----------
@dataclass
class Competition:
    """
    Event with a fixed peg capacity.
    Invariant: 0 <= slots_booked <= slots_total and slots_booked == number of claims.
    entry_fee is in minor currency units (pence); zero means free entry.
    """
    id: str
    name: str
    date: str
    venue: str
    slots_total: int
    slots_booked: int
    entry_fee: int
    currency: str
    mode: str  # CompetitionMode value
    team_slot_policy: str  # TeamSlotPolicy value
    created_at: datetime
    max_team_members: int | None = None

    @property
    def is_free(self) -> bool:
        return self.entry_fee <= 0

    @property
    def is_team_mode(self) -> bool:
        return self.mode == CompetitionMode.TEAM

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "date": self.date,
            "venue": self.venue,
            "slots_total": self.slots_total,
            "slots_booked": self.slots_booked,
            "entry_fee": self.entry_fee,
            "currency": self.currency,
            "mode": self.mode,
            "team_slot_policy": self.team_slot_policy,
            "max_team_members": self.max_team_members,
            "created_at": self.created_at.isoformat(),
        }


# ---------- SlotClaim ----------
@dataclass
class SlotClaim:
    """One occupied peg. (competition_id, slot_number) is the primary key."""
    competition_id: str
    slot_number: int
    owner_kind: str  # ClaimOwner value
    owner_id: str
    claimed_at: datetime


# ---------- Participant ----------
@dataclass
class Participant:
    """
    A seated angler. Team members under one-slot-per-team share the team's peg;
    everyone else holds their own claim. One row per (competition, user).
    """
    id: str
    competition_id: str
    user_id: str
    joined_at: datetime
    slot_number: int | None = None
    team_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "slot_number": self.slot_number,
            "joined_at": self.joined_at.isoformat(),
        }
        if self.team_id is not None:
            d["team_id"] = self.team_id
        return d


# ---------- Team ----------
@dataclass
class Team:
    """
    A team entered in a team-mode competition.
    slot_number is set when the team is admitted under one-slot-per-team.
    admitted_at is set once for both policies; it marks the team as seated.
    """
    id: str
    competition_id: str
    name: str
    invite_code: str
    captain_id: str
    payment_status: str  # PaymentStatus value
    created_at: datetime
    slot_number: int | None = None
    admitted_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCEEDED

    @property
    def is_admitted(self) -> bool:
        return self.admitted_at is not None

    def to_dict(self, include_invite_code: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "competition_id": self.competition_id,
            "name": self.name,
            "captain_id": self.captain_id,
            "payment_status": self.payment_status,
            "slot_number": self.slot_number,
            "admitted": self.is_admitted,
            "created_at": self.created_at.isoformat(),
        }
        if include_invite_code:
            d["invite_code"] = self.invite_code
        return d


# ---------- TeamMember ----------
@dataclass
class TeamMember:
    id: str
    team_id: str
    competition_id: str
    user_id: str
    role: str  # MemberRole value
    status: str  # MemberStatus value
    joined_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "joined_at": self.joined_at.isoformat(),
        }


# ---------- Payment ----------
@dataclass
class Payment:
    """One row per external payment intent. amount in minor units."""
    id: str
    competition_id: str
    user_id: str
    amount: int
    currency: str
    intent_ref: str
    status: str  # PaymentStatus value
    created_at: datetime
    team_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "amount": self.amount,
            "currency": self.currency,
            "intent_ref": self.intent_ref,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }
        if self.team_id is not None:
            d["team_id"] = self.team_id
        return d


# ---------- LeaderboardEntry (raw catch) ----------
@dataclass
class LeaderboardEntry:
    """One recorded weight (grams). Several entries per angler/team are summed."""
    id: str
    competition_id: str
    slot_number: int
    weight: int
    created_at: datetime
    updated_at: datetime
    user_id: str | None = None
    team_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "team_id": self.team_id,
            "slot_number": self.slot_number,
            "weight": self.weight,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------- Results ----------
@dataclass
class AdmissionResult:
    """
    Outcome of a seated admission. replayed=True when an earlier call already
    admitted this competitor/team and the stored result is returned unchanged.
    """
    competition_id: str
    slot_numbers: list[int]
    participants: list[Participant] = field(default_factory=list)
    team_id: str | None = None
    replayed: bool = False

    @property
    def slot_number(self) -> int | None:
        return self.slot_numbers[0] if self.slot_numbers else None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "competition_id": self.competition_id,
            "slot_number": self.slot_number,
            "slot_numbers": list(self.slot_numbers),
            "participants": [p.to_dict() for p in self.participants],
            "replayed": self.replayed,
        }
        if self.team_id is not None:
            d["team_id"] = self.team_id
        return d


@dataclass
class LeaderboardRow:
    position: int
    name: str
    slot_number: int
    weight: int
    fish_count: int
    club: str | None = None
    user_id: str | None = None
    team_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "name": self.name,
            "slot_number": self.slot_number,
            "weight": self.weight,
            "weight_kg": format_kg(self.weight),
            "weight_lb_oz": format_lb_oz(self.weight),
            "fish_count": self.fish_count,
            "club": self.club,
            "user_id": self.user_id,
            "team_id": self.team_id,
        }
