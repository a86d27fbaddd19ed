"""
Tests for the team directory: invite codes, membership rules, captaincy and
seating of members who join or leave a team that already holds its peg.
"""
from __future__ import annotations

import pytest

from pegbook.errors import AlreadyInTeam, CompetitionFull, NotCaptain, NotFoundError, TeamFull, ValidationError
from pegbook.models import MemberRole, TeamSlotPolicy
from pegbook.persistence.repositories import ParticipantRepository, TeamMemberRepository, TeamRepository
from pegbook.services.team_directory import INVITE_CODE_ALPHABET, INVITE_CODE_LENGTH, TeamDirectory


@pytest.fixture
def directory(admission):
    return TeamDirectory(admission=admission)


@pytest.fixture
def team_comp(db_conn, registry):
    return registry.create(db_conn, "Team Cup", "2026-08-01", "Lake", 4, mode="team", max_team_members=3)


def test_create_team_makes_captain_member(db_conn, directory, team_comp, make_user):
    captain = make_user("cap")
    team = directory.create_team(db_conn, team_comp.id, captain.id, "  Tench Tribe  ")
    assert team.name == "Tench Tribe"
    assert len(team.invite_code) == INVITE_CODE_LENGTH
    assert set(team.invite_code) <= set(INVITE_CODE_ALPHABET)
    members = directory.list_members(db_conn, team.id)
    assert [(m.user_id, m.role) for m in members] == [(captain.id, MemberRole.CAPTAIN.value)]
    assert directory.get_user_team(db_conn, team_comp.id, captain.id).id == team.id


def test_create_team_rules(db_conn, directory, registry, team_comp, make_user):
    captain = make_user("cap")
    directory.create_team(db_conn, team_comp.id, captain.id, "One")
    with pytest.raises(AlreadyInTeam):
        directory.create_team(db_conn, team_comp.id, captain.id, "Two")
    with pytest.raises(ValidationError):
        directory.create_team(db_conn, team_comp.id, make_user("x").id, " ")
    solo = registry.create(db_conn, "Solo", "2026-08-01", "Lake", 4)
    with pytest.raises(ValidationError):
        directory.create_team(db_conn, solo.id, make_user("y").id, "Nope")


def test_join_by_invite_code_is_case_insensitive(db_conn, directory, team_comp, make_user):
    team = directory.create_team(db_conn, team_comp.id, make_user("cap").id, "Roach")
    member = directory.join_by_invite_code(db_conn, team.invite_code.lower(), make_user("mate").id)
    assert member.team_id == team.id
    with pytest.raises(NotFoundError):
        directory.join_by_invite_code(db_conn, "ZZZZZZ9", make_user("lost").id)


def test_join_rules(db_conn, directory, team_comp, make_user):
    team = directory.create_team(db_conn, team_comp.id, make_user("cap").id, "Roach")
    mate = make_user("mate")
    directory.join_by_invite_code(db_conn, team.invite_code, mate.id)
    with pytest.raises(AlreadyInTeam):
        directory.join_by_invite_code(db_conn, team.invite_code, mate.id)

    other = directory.create_team(db_conn, team_comp.id, make_user("cap2").id, "Rudd")
    with pytest.raises(AlreadyInTeam):
        directory.join_by_invite_code(db_conn, other.invite_code, mate.id)

    directory.join_by_invite_code(db_conn, team.invite_code, make_user("third").id)
    with pytest.raises(TeamFull):
        directory.join_by_invite_code(db_conn, team.invite_code, make_user("fourth").id)
    assert TeamMemberRepository().count_accepted(db_conn, team.id) == 3


def test_late_joiner_shares_team_peg(db_conn, directory, admission, team_comp, make_user, registry):
    team = directory.create_team(db_conn, team_comp.id, make_user("cap").id, "Perch")
    result = admission.admit_team(db_conn, team_comp, team)
    late = make_user("late")
    directory.join_by_invite_code(db_conn, team.invite_code, late.id)
    seated = ParticipantRepository().get_by_user(db_conn, team_comp.id, late.id)
    assert seated.slot_number == result.slot_number
    assert registry.require(db_conn, team_comp.id).slots_booked == 1


def test_late_joiner_without_free_peg_is_turned_away(db_conn, directory, admission, registry, make_user):
    comp = registry.create(
        db_conn, "Squad", "2026-08-01", "Lake", 1, mode="team",
        team_slot_policy=TeamSlotPolicy.ONE_PER_MEMBER.value,
    )
    team = directory.create_team(db_conn, comp.id, make_user("cap").id, "Chub")
    admission.admit_team(db_conn, comp, team)
    late = make_user("late")
    with pytest.raises(CompetitionFull):
        directory.join_by_invite_code(db_conn, team.invite_code, late.id)
    assert TeamMemberRepository().get(db_conn, team.id, late.id) is None


def test_member_leave_and_captain_rules(db_conn, directory, admission, team_comp, make_user, registry):
    captain, mate = make_user("cap"), make_user("mate")
    team = directory.create_team(db_conn, team_comp.id, captain.id, "Dace")
    directory.join_by_invite_code(db_conn, team.invite_code, mate.id)
    admission.admit_team(db_conn, team_comp, team)

    with pytest.raises(ValidationError):
        directory.leave(db_conn, team.id, captain.id)

    assert directory.leave(db_conn, team.id, mate.id) is False
    assert ParticipantRepository().get_by_user(db_conn, team_comp.id, mate.id) is None
    assert registry.require(db_conn, team_comp.id).slots_booked == 1

    assert directory.leave(db_conn, team.id, captain.id) is True
    assert TeamRepository().get(db_conn, team.id) is None
    assert registry.require(db_conn, team_comp.id).slots_booked == 0
    assert registry.available_slots(db_conn, team_comp.id) == [1, 2, 3, 4]


def test_remove_member_and_transfer_captain(db_conn, directory, team_comp, make_user):
    captain, mate, other = make_user("cap"), make_user("mate"), make_user("other")
    team = directory.create_team(db_conn, team_comp.id, captain.id, "Gudgeon")
    directory.join_by_invite_code(db_conn, team.invite_code, mate.id)
    directory.join_by_invite_code(db_conn, team.invite_code, other.id)

    with pytest.raises(NotCaptain):
        directory.remove_member(db_conn, team.id, mate.id, other.id)
    directory.remove_member(db_conn, team.id, captain.id, other.id)
    assert TeamMemberRepository().get(db_conn, team.id, other.id) is None

    with pytest.raises(ValidationError):
        directory.transfer_captain(db_conn, team.id, captain.id, other.id)
    updated = directory.transfer_captain(db_conn, team.id, captain.id, mate.id)
    assert updated.captain_id == mate.id
    roles = {m.user_id: m.role for m in directory.list_members(db_conn, team.id)}
    assert roles == {captain.id: MemberRole.MEMBER.value, mate.id: MemberRole.CAPTAIN.value}
    # Old captain can now leave as an ordinary member.
    assert directory.leave(db_conn, team.id, captain.id) is False
