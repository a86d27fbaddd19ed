"""
Team directory: team creation, invite codes and membership.

Seating is delegated to the AdmissionCoordinator: a member who joins a team that
already holds its pegs is seated straight away, and a member who leaves a seated
team gives their seat back.
"""
from __future__ import annotations

import secrets
import sqlite3
import string

from pegbook.errors import (
    AlreadyInTeam,
    NotCaptain,
    NotFoundError,
    TeamFull,
    ValidationError,
)
from pegbook.logger import setup_logger
from pegbook.models import Competition, MemberRole, MemberStatus, Team, TeamMember
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import TeamMemberRepository, TeamRepository, violated_table
from pegbook.services.admission import AdmissionCoordinator
from pegbook.services.competition_registry import CompetitionRegistry

logger = setup_logger("pegbook.teams")

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6
INVITE_CODE_ATTEMPTS = 10
MAX_TEAM_NAME_LENGTH = 100


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


class TeamDirectory:
    def __init__(self, admission: AdmissionCoordinator | None = None) -> None:
        self._admission = admission or AdmissionCoordinator()
        self._registry = CompetitionRegistry()
        self._teams = TeamRepository()
        self._members = TeamMemberRepository()

    # ---------- Create / join ----------

    def create_team(self, conn: sqlite3.Connection, competition_id: str, captain_id: str, name: str) -> Team:
        competition = self._registry.require(conn, competition_id)
        if not competition.is_team_mode:
            raise ValidationError("This competition does not support teams")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Team name is required")
        if len(name) > MAX_TEAM_NAME_LENGTH:
            raise ValidationError(f"Team name must be at most {MAX_TEAM_NAME_LENGTH} characters")
        if self._members.get_by_competition_user(conn, competition_id, captain_id) is not None:
            raise AlreadyInTeam("You are already in a team for this competition")

        for _ in range(INVITE_CODE_ATTEMPTS):
            code = generate_invite_code()
            try:
                with write_transaction(conn):
                    team = self._teams.create(conn, competition_id, name, code, captain_id)
                    self._members.create(conn, team.id, competition_id, captain_id, MemberRole.CAPTAIN.value)
            except sqlite3.IntegrityError as e:
                table = violated_table(e)
                if table == "teams":
                    logger.debug("Invite code %s already in use; drawing another", code)
                    continue
                if table == "team_members":
                    raise AlreadyInTeam("You are already in a team for this competition") from e
                raise
            logger.info("Team %s (%s) created in %s by %s", team.id, name, competition_id, captain_id)
            return team
        raise RuntimeError("Could not generate a unique invite code")

    def join_by_invite_code(self, conn: sqlite3.Connection, invite_code: str, user_id: str) -> TeamMember:
        code = (invite_code or "").strip().upper()
        team = self._teams.get_by_invite_code(conn, code)
        if team is None:
            raise NotFoundError("Invalid invite code")
        competition = self._registry.require(conn, team.competition_id)
        if self._members.get(conn, team.id, user_id) is not None:
            raise AlreadyInTeam("You are already a member of this team")
        if self._members.get_by_competition_user(conn, team.competition_id, user_id) is not None:
            raise AlreadyInTeam("You are already in a team for this competition")

        try:
            with write_transaction(conn):
                # Counted under the write lock so two joiners cannot both take the last place.
                if (
                    competition.max_team_members is not None
                    and self._members.count_accepted(conn, team.id) >= competition.max_team_members
                ):
                    raise TeamFull(f"Team is full (maximum {competition.max_team_members} members)")
                member = self._members.create(
                    conn, team.id, team.competition_id, user_id, MemberRole.MEMBER.value,
                )
        except sqlite3.IntegrityError as e:
            if violated_table(e) == "team_members":
                raise AlreadyInTeam("You are already in a team for this competition") from e
            raise

        team = self._teams.get(conn, team.id)
        if team is not None and team.is_admitted:
            self._seat_late_member(conn, competition, team, member)
        logger.info("User %s joined team %s", user_id, member.team_id)
        return member

    def _seat_late_member(
        self, conn: sqlite3.Connection, competition: Competition, team: Team, member: TeamMember
    ) -> None:
        try:
            self._admission.seat_member(conn, competition, team, member.user_id)
        except Exception:
            with write_transaction(conn):
                self._members.delete(conn, member.id)
            logger.warning("Could not seat %s in team %s; membership withdrawn", member.user_id, team.id)
            raise

    # ---------- Leave / remove ----------

    def leave(self, conn: sqlite3.Connection, team_id: str, user_id: str) -> bool:
        """
        Member leaves. The captain may only leave as the last member, which dissolves the team.
        Returns True when the team was dissolved.
        """
        team = self._require_team(conn, team_id)
        member = self._members.get(conn, team_id, user_id)
        if member is None:
            raise NotFoundError("You are not a member of this team")

        if team.captain_id == user_id:
            others = [
                m for m in self._members.list_by_team(conn, team_id, status=MemberStatus.ACCEPTED.value)
                if m.user_id != user_id
            ]
            if others:
                raise ValidationError(
                    "Captain cannot leave while other members remain; transfer the captaincy or remove them first"
                )
            with write_transaction(conn):
                if team.is_admitted:
                    self._admission.release_team(conn, team)
                self._members.delete_by_team(conn, team_id)
                self._teams.delete(conn, team_id)
            logger.info("Team %s dissolved when its captain %s left", team_id, user_id)
            return True

        with write_transaction(conn):
            self._admission.release_member(conn, team.competition_id, user_id)
            self._members.delete(conn, member.id)
        logger.info("User %s left team %s", user_id, team_id)
        return False

    def remove_member(self, conn: sqlite3.Connection, team_id: str, captain_id: str, user_id: str) -> None:
        team = self._require_team(conn, team_id)
        if team.captain_id != captain_id:
            raise NotCaptain("Only the team captain can remove members")
        if user_id == captain_id:
            raise ValidationError("The captain cannot remove themselves; leave the team instead")
        member = self._members.get(conn, team_id, user_id)
        if member is None:
            raise NotFoundError("Member not found")
        with write_transaction(conn):
            self._admission.release_member(conn, team.competition_id, user_id)
            self._members.delete(conn, member.id)
        logger.info("Captain %s removed %s from team %s", captain_id, user_id, team_id)

    def transfer_captain(self, conn: sqlite3.Connection, team_id: str, captain_id: str, new_captain_id: str) -> Team:
        team = self._require_team(conn, team_id)
        if team.captain_id != captain_id:
            raise NotCaptain("Only the team captain can hand over the captaincy")
        if new_captain_id == captain_id:
            return team
        new_member = self._members.get(conn, team_id, new_captain_id)
        if new_member is None or new_member.status != MemberStatus.ACCEPTED:
            raise ValidationError("New captain must be an accepted member of the team")
        old_member = self._members.get(conn, team_id, captain_id)
        with write_transaction(conn):
            self._teams.update_captain(conn, team_id, new_captain_id)
            self._members.update_role(conn, new_member.id, MemberRole.CAPTAIN.value)
            if old_member is not None:
                self._members.update_role(conn, old_member.id, MemberRole.MEMBER.value)
        logger.info("Team %s captaincy passed from %s to %s", team_id, captain_id, new_captain_id)
        team.captain_id = new_captain_id
        return team

    # ---------- Reads ----------

    def get_team(self, conn: sqlite3.Connection, team_id: str) -> Team | None:
        return self._teams.get(conn, team_id)

    def get_user_team(self, conn: sqlite3.Connection, competition_id: str, user_id: str) -> Team | None:
        member = self._members.get_by_competition_user(conn, competition_id, user_id)
        if member is None:
            return None
        return self._teams.get(conn, member.team_id)

    def list_members(self, conn: sqlite3.Connection, team_id: str) -> list[TeamMember]:
        return self._members.list_by_team(conn, team_id)

    def _require_team(self, conn: sqlite3.Connection, team_id: str) -> Team:
        team = self._teams.get(conn, team_id)
        if team is None:
            raise NotFoundError("Team not found")
        return team
