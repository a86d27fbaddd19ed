"""
Admission coordinator: turns a validated join request into seated participants.

Pegs are handed out without a lock. Each attempt reads the occupied set, picks
free pegs at random, and commits claim rows + participant rows + the booked
counter in one write transaction. A lost race shows up as a rejected claim
insert; the transaction rolls back and the attempt starts over with a fresh
snapshot. Attempts are bounded by the number of pegs, since every lost race
means another request took a distinct peg.
"""
from __future__ import annotations

import random
import sqlite3
import uuid
from typing import Callable

from pegbook.errors import (
    AlreadyJoined,
    AssignmentExhausted,
    CompetitionFull,
    InsufficientSlots,
    NotFoundError,
    PaymentRequired,
    SlotTaken,
    ValidationError,
)
from pegbook.logger import setup_logger
from pegbook.models import (
    AdmissionResult,
    ClaimOwner,
    Competition,
    MemberStatus,
    Participant,
    Team,
    TeamMember,
    TeamSlotPolicy,
)
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import (
    ParticipantRepository,
    PaymentRepository,
    TeamMemberRepository,
    TeamRepository,
    violated_table,
)
from pegbook.services.competition_registry import CompetitionRegistry
from pegbook.services.slot_ledger import SlotLedger

logger = setup_logger("pegbook.admission")

ROSTER_ATTEMPTS = 5


class _LostRace(Exception):
    """A candidate peg was claimed between snapshot and insert."""

    def __init__(self, slot_number: int) -> None:
        super().__init__(slot_number)
        self.slot_number = slot_number


class _RosterChanged(Exception):
    """Team membership changed between the peg draw and the commit."""


class AdmissionCoordinator:
    """
    Only writer of Participant.slot_number, Team.slot_number and the booked counter.
    rng is injectable so tests can make peg choice reproducible.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()
        self._ledger = SlotLedger()
        self._registry = CompetitionRegistry()
        self._participants = ParticipantRepository()
        self._payments = PaymentRepository()
        self._teams = TeamRepository()
        self._members = TeamMemberRepository()

    # ---------- Individual ----------

    def join(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        slot_number: int | None = None,
    ) -> AdmissionResult:
        """
        Direct join. Paid competitions require a succeeded payment first
        (the usual route is PaymentGate.confirm_and_admit).
        """
        competition = self._registry.require(conn, competition_id)
        if not competition.is_free and not self._payments.has_succeeded(conn, competition_id, user_id):
            raise PaymentRequired("Payment required. Please complete payment to join this competition.")
        return self.admit_individual(conn, competition, user_id, slot_number)

    def admit_individual(
        self,
        conn: sqlite3.Connection,
        competition: Competition,
        user_id: str,
        slot_number: int | None = None,
    ) -> AdmissionResult:
        if competition.is_team_mode:
            raise ValidationError("This competition is entered as teams")
        if self._participants.get_by_user(conn, competition.id, user_id) is not None:
            raise AlreadyJoined("You have already joined this competition")

        participant_id = str(uuid.uuid4())

        def commit(slots: list[int]) -> AdmissionResult:
            slot = slots[0]
            if not self._ledger.reserve(conn, competition.id, slot, ClaimOwner.PARTICIPANT.value, participant_id):
                raise _LostRace(slot)
            participant = self._create_participant(conn, competition.id, user_id, slot, id=participant_id)
            self._registry.add_booked(conn, competition.id, 1)
            return AdmissionResult(competition_id=competition.id, slot_numbers=[slot], participants=[participant])

        if slot_number is not None:
            result = self._reserve_explicit(conn, competition, slot_number, commit)
        else:
            result = self._allocate(conn, competition, 1, commit)
        logger.info("Seated %s on peg %s in %s", user_id, result.slot_number, competition.id)
        return result

    def leave(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> int | None:
        """Individual leaves; frees their peg. Returns the released peg number."""
        participant = self._participants.get_by_user(conn, competition_id, user_id)
        if participant is None:
            raise NotFoundError("Not in this competition")
        if participant.team_id is not None:
            raise ValidationError("Team members leave through their team")
        with write_transaction(conn):
            self._release_participant(conn, participant)
        logger.info("Released peg %s in %s (%s left)", participant.slot_number, competition_id, user_id)
        return participant.slot_number

    def move_participant(self, conn: sqlite3.Connection, participant_id: str, slot_number: int) -> Participant:
        """Staff reassignment of a participant's own peg. Booked count is unchanged."""
        participant = self._participants.get(conn, participant_id)
        if participant is None:
            raise NotFoundError("Participant not found")
        competition = self._registry.require(conn, participant.competition_id)
        self._validate_slot(competition, slot_number)
        if participant.slot_number == slot_number:
            return participant
        with write_transaction(conn):
            released = self._ledger.release(
                conn, competition.id, ClaimOwner.PARTICIPANT.value, participant.id
            )
            if released == 0:
                raise ValidationError("This angler shares a team peg; move the team instead")
            if not self._ledger.reserve(conn, competition.id, slot_number, ClaimOwner.PARTICIPANT.value, participant.id):
                raise SlotTaken(slot_number)
            self._participants.update_slot(conn, participant.id, slot_number)
        logger.info("Moved participant %s from peg %s to %s", participant.id, participant.slot_number, slot_number)
        participant.slot_number = slot_number
        return participant

    def admit_by_staff(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        slot_number: int | None = None,
    ) -> AdmissionResult:
        """Staff seat an angler directly, e.g. a cash entry on the bank. No payment check."""
        competition = self._registry.require(conn, competition_id)
        result = self.admit_individual(conn, competition, user_id, slot_number)
        logger.info("Staff seated %s on peg %s in %s", user_id, result.slot_number, competition_id)
        return result

    def remove_participant(self, conn: sqlite3.Connection, participant_id: str) -> int | None:
        """Staff removal of an individual entry. Returns the released peg number."""
        participant = self._participants.get(conn, participant_id)
        if participant is None:
            raise NotFoundError("Participant not found")
        if participant.team_id is not None:
            raise ValidationError("This angler fishes for a team; remove them from the team instead")
        with write_transaction(conn):
            self._release_participant(conn, participant)
        logger.info("Staff removed participant %s from peg %s", participant.id, participant.slot_number)
        return participant.slot_number

    def move_team(self, conn: sqlite3.Connection, team_id: str, slot_number: int) -> Team:
        """Staff reassignment of a team's shared peg; every member moves with it."""
        team = self._teams.get(conn, team_id)
        if team is None:
            raise NotFoundError("Team not found")
        competition = self._registry.require(conn, team.competition_id)
        self._validate_slot(competition, slot_number)
        if not team.is_admitted:
            raise ValidationError("Team does not hold a peg yet")
        if competition.team_slot_policy == TeamSlotPolicy.ONE_PER_MEMBER:
            raise ValidationError("Each member holds their own peg; move the anglers individually")
        if team.slot_number == slot_number:
            return team
        with write_transaction(conn):
            self._ledger.release(conn, competition.id, ClaimOwner.TEAM.value, team.id)
            if not self._ledger.reserve(conn, competition.id, slot_number, ClaimOwner.TEAM.value, team.id):
                raise SlotTaken(slot_number)
            self._teams.update_slot(conn, team.id, slot_number)
            self._participants.update_slot_by_team(conn, team.id, slot_number)
        logger.info("Moved team %s from peg %s to %s", team.id, team.slot_number, slot_number)
        team.slot_number = slot_number
        return team

    # ---------- Team ----------

    def admit_team(self, conn: sqlite3.Connection, competition: Competition, team: Team) -> AdmissionResult:
        """
        one-slot-per-team: one shared peg, every accepted member seated on it.
        one-slot-per-member: N distinct pegs claimed together before any member is seated.

        The roster is read again under the write lock, so only current members are seated.
        """
        if not competition.is_team_mode:
            raise ValidationError("This competition does not support teams")
        if team.is_admitted:
            raise AlreadyJoined("Team already holds its pegs")

        for attempt in range(1, ROSTER_ATTEMPTS + 1):
            members = self._accepted_members(conn, team.id)
            try:
                if competition.team_slot_policy == TeamSlotPolicy.ONE_PER_MEMBER:
                    result = self._admit_team_per_member(conn, competition, team, members)
                else:
                    result = self._admit_team_shared(conn, competition, team)
            except _RosterChanged:
                logger.debug("Roster of team %s changed during admission (attempt %s); retrying", team.id, attempt)
                continue
            logger.info(
                "Seated team %s (%s members) on pegs %s in %s",
                team.id, len(result.participants), result.slot_numbers, competition.id,
            )
            return result
        logger.warning("Gave up admitting team %s: roster kept changing", team.id)
        raise AssignmentExhausted()

    def _admit_team_per_member(
        self, conn: sqlite3.Connection, competition: Competition, team: Team, members: list[TeamMember]
    ) -> AdmissionResult:
        expected = {m.user_id for m in members}

        def commit(slots: list[int]) -> AdmissionResult:
            current = self._accepted_members(conn, team.id)
            if {m.user_id for m in current} != expected:
                raise _RosterChanged()
            if not self._teams.mark_admitted(conn, team.id, None):
                raise AlreadyJoined("Team already holds its pegs")
            participants = []
            for member, slot in zip(current, slots):
                pid = str(uuid.uuid4())
                if not self._ledger.reserve(conn, competition.id, slot, ClaimOwner.PARTICIPANT.value, pid):
                    raise _LostRace(slot)
                participants.append(
                    self._create_participant(conn, competition.id, member.user_id, slot, team_id=team.id, id=pid)
                )
            self._registry.add_booked(conn, competition.id, len(slots))
            return AdmissionResult(
                competition_id=competition.id, slot_numbers=sorted(slots),
                participants=participants, team_id=team.id,
            )

        return self._allocate(conn, competition, len(members), commit)

    def _admit_team_shared(self, conn: sqlite3.Connection, competition: Competition, team: Team) -> AdmissionResult:
        def commit(slots: list[int]) -> AdmissionResult:
            slot = slots[0]
            current = self._accepted_members(conn, team.id)
            if not self._ledger.reserve(conn, competition.id, slot, ClaimOwner.TEAM.value, team.id):
                raise _LostRace(slot)
            if not self._teams.mark_admitted(conn, team.id, slot):
                raise AlreadyJoined("Team already holds its pegs")
            participants = [
                self._create_participant(conn, competition.id, m.user_id, slot, team_id=team.id)
                for m in current
            ]
            self._registry.add_booked(conn, competition.id, 1)
            return AdmissionResult(
                competition_id=competition.id, slot_numbers=[slot],
                participants=participants, team_id=team.id,
            )

        return self._allocate(conn, competition, 1, commit)

    def _accepted_members(self, conn: sqlite3.Connection, team_id: str) -> list[TeamMember]:
        members = self._members.list_by_team(conn, team_id, status=MemberStatus.ACCEPTED.value)
        if not members:
            raise ValidationError("Team has no accepted members")
        return members

    def seat_member(
        self, conn: sqlite3.Connection, competition: Competition, team: Team, user_id: str
    ) -> Participant:
        """Seat a member who joined after the team was admitted, without a new payment."""
        existing = self._participants.get_by_user(conn, competition.id, user_id)
        if existing is not None and existing.team_id == team.id:
            # Joined while the team admission was committing; already seated by it.
            return existing
        if competition.team_slot_policy == TeamSlotPolicy.ONE_PER_MEMBER:
            pid = str(uuid.uuid4())

            def commit(slots: list[int]) -> AdmissionResult:
                slot = slots[0]
                if not self._ledger.reserve(conn, competition.id, slot, ClaimOwner.PARTICIPANT.value, pid):
                    raise _LostRace(slot)
                participant = self._create_participant(conn, competition.id, user_id, slot, team_id=team.id, id=pid)
                self._registry.add_booked(conn, competition.id, 1)
                return AdmissionResult(competition_id=competition.id, slot_numbers=[slot], participants=[participant])

            participant = self._allocate(conn, competition, 1, commit).participants[0]
        else:
            with write_transaction(conn):
                participant = self._create_participant(
                    conn, competition.id, user_id, team.slot_number, team_id=team.id
                )
        logger.info("Seated late member %s of team %s on peg %s", user_id, team.id, participant.slot_number)
        return participant

    def release_member(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> None:
        """Unseat one team member (their own peg, if any, is freed). Caller owns the transaction."""
        participant = self._participants.get_by_user(conn, competition_id, user_id)
        if participant is not None:
            self._release_participant(conn, participant)

    def release_team(self, conn: sqlite3.Connection, team: Team) -> int:
        """Unseat a whole team and free all of its pegs. Caller owns the transaction."""
        freed = 0
        for participant in self._participants.list_by_team(conn, team.id):
            freed += self._ledger.release(conn, team.competition_id, ClaimOwner.PARTICIPANT.value, participant.id)
            self._participants.delete(conn, participant.id)
        freed += self._ledger.release(conn, team.competition_id, ClaimOwner.TEAM.value, team.id)
        if freed:
            self._registry.add_booked(conn, team.competition_id, -freed)
        self._teams.clear_admission(conn, team.id)
        logger.info("Released %s peg(s) held by team %s", freed, team.id)
        return freed

    # ---------- Allocation core ----------

    def _allocate(
        self,
        conn: sqlite3.Connection,
        competition: Competition,
        count: int,
        commit: Callable[[list[int]], AdmissionResult],
    ) -> AdmissionResult:
        """
        Random-pick allocation of `count` distinct free pegs with bounded retry.
        commit runs inside one write transaction and raises _LostRace on a taken peg.
        """
        total = competition.slots_total
        attempts = 0
        while True:
            occupied = self._ledger.occupied_slots(conn, competition.id)
            free = [s for s in range(1, total + 1) if s not in occupied]
            if not free:
                raise CompetitionFull()
            if len(free) < count:
                raise InsufficientSlots(count, len(free))
            if attempts >= total:
                break
            attempts += 1
            candidates = self._rng.sample(free, count)
            try:
                with write_transaction(conn):
                    return commit(candidates)
            except _LostRace as race:
                logger.debug(
                    "Peg %s in %s taken concurrently (attempt %s/%s); retrying",
                    race.slot_number, competition.id, attempts, total,
                )
                continue
            except sqlite3.IntegrityError as e:
                raise self._translate_integrity(e, competition) from e
        logger.warning("Gave up assigning a peg in %s after %s attempts", competition.id, attempts)
        raise AssignmentExhausted()

    def _reserve_explicit(
        self,
        conn: sqlite3.Connection,
        competition: Competition,
        slot_number: int,
        commit: Callable[[list[int]], AdmissionResult],
    ) -> AdmissionResult:
        """Caller asked for one specific peg: a single attempt, no retry."""
        self._validate_slot(competition, slot_number)
        try:
            with write_transaction(conn):
                return commit([slot_number])
        except _LostRace:
            raise SlotTaken(slot_number)
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity(e, competition) from e

    def _validate_slot(self, competition: Competition, slot_number: int) -> None:
        if slot_number < 1 or slot_number > competition.slots_total:
            raise ValidationError(f"Peg {slot_number} is not valid for this competition")

    def _translate_integrity(self, e: sqlite3.IntegrityError, competition: Competition) -> Exception:
        table = violated_table(e)
        if table == "participants":
            return AlreadyJoined("You have already joined this competition")
        if table == "check":
            return CompetitionFull()
        return e

    def _create_participant(
        self,
        conn: sqlite3.Connection,
        competition_id: str,
        user_id: str,
        slot_number: int | None,
        team_id: str | None = None,
        id: str | None = None,
    ) -> Participant:
        return self._participants.create(conn, competition_id, user_id, slot_number, team_id=team_id, id=id)

    def _release_participant(self, conn: sqlite3.Connection, participant: Participant) -> None:
        freed = self._ledger.release(conn, participant.competition_id, ClaimOwner.PARTICIPANT.value, participant.id)
        self._participants.delete(conn, participant.id)
        if freed:
            self._registry.add_booked(conn, participant.competition_id, -freed)
