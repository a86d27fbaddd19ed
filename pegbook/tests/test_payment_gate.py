"""
Tests for the payment gate: intent creation guards, provider verification,
idempotent confirmation and booked-count self-heal.
"""
from __future__ import annotations

import pytest

from pegbook.errors import (
    AlreadyJoined,
    CompetitionFull,
    InsufficientSlots,
    NotCaptain,
    PaymentFailed,
    PaymentMismatch,
    PaymentRequired,
    TeamAlreadyPaid,
    ValidationError,
)
from pegbook.models import PaymentStatus, TeamSlotPolicy
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import (
    CompetitionRepository,
    ParticipantRepository,
    PaymentRepository,
    TeamRepository,
)
from pegbook.services.payment_gate import FREE_INTENT, PaymentGate
from pegbook.services.team_directory import TeamDirectory


@pytest.fixture
def gate(fake_gateway, admission, notifier):
    return PaymentGate(gateway=fake_gateway, admission=admission, notifier=notifier)


@pytest.fixture
def paid_comp(db_conn, registry):
    return registry.create(db_conn, "Paid Open", "2026-07-04", "Lake", 5, entry_fee=2500)


def test_create_intent_uses_entry_fee(db_conn, gate, paid_comp, make_user, fake_gateway):
    user = make_user("alice")
    payment, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    assert payment.amount == 2500
    assert payment.status == PaymentStatus.PENDING
    assert fake_gateway.intents[intent.id].metadata["competition_id"] == paid_comp.id
    assert PaymentRepository().get_by_intent(db_conn, intent.id) is not None


def test_create_intent_rejects_free_and_full(db_conn, gate, registry, make_user):
    free = registry.create(db_conn, "Free", "2026-07-04", "Lake", 5)
    with pytest.raises(ValidationError):
        gate.create_intent(db_conn, free.id, make_user("alice").id)

    full = registry.create(db_conn, "Full", "2026-07-04", "Lake", 1, entry_fee=1000)
    with write_transaction(db_conn):
        CompetitionRepository().set_booked(db_conn, full.id, 1)
    with pytest.raises(CompetitionFull):
        gate.create_intent(db_conn, full.id, make_user("bob").id)


def test_confirm_admits_once_then_replays(db_conn, gate, paid_comp, make_user, fake_gateway, notifier):
    user = make_user("alice")
    _, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)

    first = gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    assert not first.replayed
    assert PaymentRepository().get_by_intent(db_conn, intent.id).status == PaymentStatus.SUCCEEDED
    assert len(notifier.sent) == 1

    second = gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    assert second.replayed
    assert second.slot_number == first.slot_number
    assert CompetitionRepository().get(db_conn, paid_comp.id).slots_booked == 1
    assert len(notifier.sent) == 1
    assert fake_gateway.retrieve_calls == 1


def test_replay_heals_booked_count(db_conn, gate, paid_comp, make_user, fake_gateway):
    user = make_user("alice")
    _, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)
    gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    with write_transaction(db_conn):
        CompetitionRepository().set_booked(db_conn, paid_comp.id, 0)

    result = gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    assert result.replayed
    assert CompetitionRepository().get(db_conn, paid_comp.id).slots_booked == 1


def test_seated_but_unmarked_payment_is_completed_on_retry(db_conn, gate, paid_comp, make_user, fake_gateway, admission):
    user = make_user("alice")
    _, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)
    # An earlier call seated the angler but stopped before marking the payment.
    seated = admission.admit_individual(db_conn, paid_comp, user.id)

    result = gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    assert result.replayed
    assert result.slot_number == seated.slot_number
    assert PaymentRepository().get_by_intent(db_conn, intent.id).status == PaymentStatus.SUCCEEDED


def test_pending_and_failed_payments(db_conn, gate, paid_comp, make_user, fake_gateway):
    user = make_user("alice")
    _, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    with pytest.raises(PaymentRequired):
        gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)

    fake_gateway.set_status(intent.id, PaymentStatus.FAILED)
    with pytest.raises(PaymentFailed):
        gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    assert PaymentRepository().get_by_intent(db_conn, intent.id).status == PaymentStatus.FAILED
    assert ParticipantRepository().list_by_competition(db_conn, paid_comp.id) == []


def test_payment_of_someone_else_is_rejected(db_conn, gate, paid_comp, make_user, fake_gateway):
    alice = make_user("alice")
    mallory = make_user("mallory")
    _, intent = gate.create_intent(db_conn, paid_comp.id, alice.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)
    with pytest.raises(PaymentMismatch):
        gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, mallory.id)


def test_free_sentinel(db_conn, gate, registry, paid_comp, make_user):
    free = registry.create(db_conn, "Free", "2026-07-04", "Lake", 5)
    user = make_user("alice")
    result = gate.confirm_and_admit(db_conn, FREE_INTENT, free.id, user.id)
    assert result.slot_number is not None
    assert gate.confirm_and_admit(db_conn, FREE_INTENT, free.id, user.id).replayed
    with pytest.raises(PaymentRequired):
        gate.confirm_and_admit(db_conn, FREE_INTENT, paid_comp.id, user.id)


def test_already_seated_angler_cannot_pay_again(db_conn, gate, paid_comp, make_user, fake_gateway):
    user = make_user("alice")
    _, intent = gate.create_intent(db_conn, paid_comp.id, user.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)
    gate.confirm_and_admit(db_conn, intent.id, paid_comp.id, user.id)
    with pytest.raises(AlreadyJoined):
        gate.create_intent(db_conn, paid_comp.id, user.id)


# ---------- Team payments ----------


@pytest.fixture
def team_comp(db_conn, registry):
    return registry.create(db_conn, "Team Cup", "2026-07-04", "Lake", 4, entry_fee=6000, mode="team")


def test_team_payment_flow(db_conn, gate, team_comp, make_user, fake_gateway, admission):
    captain, member = make_user("cap"), make_user("mate")
    directory = TeamDirectory(admission=admission)
    team = directory.create_team(db_conn, team_comp.id, captain.id, "Bream Team")
    directory.join_by_invite_code(db_conn, team.invite_code, member.id)

    with pytest.raises(NotCaptain):
        gate.create_intent(db_conn, team_comp.id, member.id, team_id=team.id)
    _, intent = gate.create_intent(db_conn, team_comp.id, captain.id, team_id=team.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)

    with pytest.raises(NotCaptain):
        gate.confirm_and_admit(db_conn, intent.id, team_comp.id, member.id, team_id=team.id)
    with pytest.raises(ValidationError):
        gate.confirm_and_admit(db_conn, intent.id, team_comp.id, captain.id)

    result = gate.confirm_and_admit(db_conn, intent.id, team_comp.id, captain.id, team_id=team.id)
    assert result.team_id == team.id
    assert {p.user_id for p in result.participants} == {captain.id, member.id}
    assert TeamRepository().get(db_conn, team.id).is_paid
    assert CompetitionRepository().get(db_conn, team_comp.id).slots_booked == 1

    replay = gate.confirm_and_admit(db_conn, intent.id, team_comp.id, captain.id, team_id=team.id)
    assert replay.replayed
    assert replay.slot_numbers == result.slot_numbers

    with pytest.raises(TeamAlreadyPaid):
        gate.create_intent(db_conn, team_comp.id, captain.id, team_id=team.id)


def test_team_per_member_short_of_pegs_seats_nobody(db_conn, registry, gate, make_user, fake_gateway, admission):
    comp = registry.create(
        db_conn, "Squad", "2026-07-04", "Lake", 3, entry_fee=3000, mode="team",
        team_slot_policy=TeamSlotPolicy.ONE_PER_MEMBER.value,
    )
    # Another team already holds one of the three pegs.
    directory = TeamDirectory(admission=admission)
    other = directory.create_team(db_conn, comp.id, make_user("solo").id, "Solo")
    admission.admit_team(db_conn, comp, other)

    captain = make_user("cap")
    team = directory.create_team(db_conn, comp.id, captain.id, "Trio")
    for name in ("m1", "m2"):
        directory.join_by_invite_code(db_conn, team.invite_code, make_user(name).id)
    _, intent = gate.create_intent(db_conn, comp.id, captain.id, team_id=team.id)
    fake_gateway.set_status(intent.id, PaymentStatus.SUCCEEDED)

    with pytest.raises(InsufficientSlots):
        gate.confirm_and_admit(db_conn, intent.id, comp.id, captain.id, team_id=team.id)
    assert CompetitionRepository().get(db_conn, comp.id).slots_booked == 1
    assert ParticipantRepository().list_by_team(db_conn, team.id) == []
    assert PaymentRepository().get_by_intent(db_conn, intent.id).status == PaymentStatus.PENDING


def test_failed_team_payment_leaves_team_pending(db_conn, gate, team_comp, make_user, fake_gateway, admission):
    captain = make_user("cap")
    team = TeamDirectory(admission=admission).create_team(db_conn, team_comp.id, captain.id, "Roach Riders")
    _, intent = gate.create_intent(db_conn, team_comp.id, captain.id, team_id=team.id)
    fake_gateway.set_status(intent.id, PaymentStatus.FAILED)

    with pytest.raises(PaymentFailed):
        gate.confirm_and_admit(db_conn, intent.id, team_comp.id, captain.id, team_id=team.id)
    assert PaymentRepository().get_by_intent(db_conn, intent.id).status == PaymentStatus.FAILED
    stored = TeamRepository().get(db_conn, team.id)
    assert stored.payment_status == PaymentStatus.PENDING
    assert not stored.is_admitted

    # A fresh intent can still be raised for the team.
    _, retry = gate.create_intent(db_conn, team_comp.id, captain.id, team_id=team.id)
    assert retry.id != intent.id
