"""
REST API for the peg booking backend.
Thin wrappers around the services; domain errors become HTTP statuses in one handler.
"""
from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncGenerator, Generator

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from pegbook.auth import authenticate, create_access_token, decode_token, register_angler
from pegbook.config import Settings
from pegbook.errors import (
    AuthenticationError,
    AuthorizationError,
    BookingError,
    ContentionError,
    NotFoundError,
    PaymentGatewayUnavailable,
)
from pegbook.logger import setup_logger
from pegbook.models import CompetitionMode, TeamSlotPolicy, User
from pegbook.persistence import (
    ParticipantRepository,
    UserRepository,
    get_connection,
    get_db_path,
    init_db,
)
from pegbook.services import (
    AdmissionCoordinator,
    CompetitionRegistry,
    Notifier,
    PaymentGate,
    PaymentGateway,
    ScoringAggregator,
    TeamDirectory,
    get_gateway,
    get_notifier,
    notify_booking,
)

logger = setup_logger("pegbook.api")


@contextmanager
def db_conn() -> Generator:
    """Yield a DB connection, ensure close on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


# ---------- Lifespan ----------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    init_db(db_path=get_db_path())
    yield


# ---------- FastAPI app ----------
app = FastAPI(
    title="Peg Booking API",
    description="Fishing competition peg booking, payments, teams and leaderboards",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    headers = {}
    if isinstance(exc, ContentionError):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


# ---------- Request models ----------

security = HTTPBearer(auto_error=False)


class SignupRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6)
    name: str | None = Field(None, max_length=200)
    email: str | None = None
    club: str | None = Field(None, max_length=200)


class LoginRequest(BaseModel):
    username: str
    password: str


class CreateCompetitionRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    date: str = Field(..., description="ISO date of the match")
    venue: str = Field(..., min_length=1, max_length=200)
    slots_total: int = Field(..., ge=1, description="Number of pegs")
    entry_fee: int = Field(0, ge=0, description="Minor currency units (pence)")
    currency: str | None = Field(None, description="Defaults to PAYMENT_CURRENCY")
    mode: CompetitionMode = CompetitionMode.INDIVIDUAL
    team_slot_policy: TeamSlotPolicy = TeamSlotPolicy.ONE_PER_TEAM
    max_team_members: int | None = Field(None, ge=1)


class JoinRequest(BaseModel):
    slot_number: int | None = Field(None, ge=1, description="Specific peg; omit for a random draw")


class PaymentIntentRequest(BaseModel):
    competition_id: str
    team_id: str | None = None


class ConfirmPaymentRequest(BaseModel):
    intent_ref: str = Field(..., description="Provider intent id, or 'free' for zero-fee entries")
    competition_id: str
    team_id: str | None = None


class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class JoinTeamRequest(BaseModel):
    invite_code: str = Field(..., min_length=1)


class TransferCaptainRequest(BaseModel):
    user_id: str


class WeightEntryRequest(BaseModel):
    competition_id: str
    slot_number: int = Field(..., ge=1)
    weight: int | str = Field(..., description="Grams, '2.5kg' or '5 lb 3 oz'")
    user_id: str | None = None
    team_id: str | None = None


class UpdateWeightEntryRequest(BaseModel):
    weight: int | str | None = None
    slot_number: int | None = Field(None, ge=1)


class MoveParticipantRequest(BaseModel):
    slot_number: int = Field(..., ge=1)


class AddParticipantRequest(BaseModel):
    user_id: str
    slot_number: int | None = Field(None, ge=1, description="Specific peg; omit for a random draw")


# ---------- Dependencies ----------


def _get_current_user_id(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str | None:
    """Return user_id from JWT or None if no/invalid token."""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


def _require_user_id(user_id: str | None = Depends(_get_current_user_id)) -> str:
    if user_id is None:
        raise AuthenticationError("Login required")
    return user_id


def _require_staff(user_id: str = Depends(_require_user_id)) -> str:
    with db_conn() as conn:
        user = UserRepository().get(conn, user_id)
    if user is None or not user.is_staff:
        raise AuthorizationError("Staff only")
    return user_id


def get_payment_gateway() -> PaymentGateway | None:
    """Configured gateway, or None; paid flows then answer 503."""
    try:
        return get_gateway()
    except PaymentGatewayUnavailable:
        return None


def get_booking_notifier() -> Notifier:
    return get_notifier()


def _auth_response(user: User) -> dict[str, Any]:
    return {"user_id": user.id, "username": user.username, "token": create_access_token(user)}


# ---------- Accounts ----------


@app.post("/signup")
def signup(req: SignupRequest) -> dict[str, Any]:
    """Create an angler account. Passwords hashed, never stored plain."""
    with db_conn() as conn:
        user = register_angler(conn, req.username, req.password, name=req.name, email=req.email, club=req.club)
        return _auth_response(user)


@app.post("/login")
def login(req: LoginRequest) -> dict[str, Any]:
    with db_conn() as conn:
        return _auth_response(authenticate(conn, req.username, req.password))


@app.get("/me")
def me(user_id: str = Depends(_require_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        user = UserRepository().get(conn, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user.to_dict()


# ---------- Competitions ----------


@app.post("/competitions")
def create_competition(req: CreateCompetitionRequest, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        competition = CompetitionRegistry().create(
            conn, req.name, req.date, req.venue, req.slots_total,
            entry_fee=req.entry_fee,
            currency=req.currency or Settings().payment_currency,
            mode=req.mode.value,
            team_slot_policy=req.team_slot_policy.value,
            max_team_members=req.max_team_members,
        )
        return competition.to_dict()


@app.get("/competitions")
def list_competitions() -> dict[str, Any]:
    with db_conn() as conn:
        return {"competitions": [c.to_dict() for c in CompetitionRegistry().list_all(conn)]}


@app.get("/competitions/{competition_id}")
def get_competition(competition_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        return CompetitionRegistry().require(conn, competition_id).to_dict()


@app.get("/competitions/{competition_id}/available-slots")
def available_slots(competition_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        slots = CompetitionRegistry().available_slots(conn, competition_id)
        return {"competition_id": competition_id, "available_slots": slots, "count": len(slots)}


@app.get("/competitions/{competition_id}/participants")
def list_participants(competition_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        CompetitionRegistry().require(conn, competition_id)
        participants = ParticipantRepository().list_by_competition(conn, competition_id)
        users = UserRepository().get_many(conn, [p.user_id for p in participants])
        rows = []
        for p in participants:
            d = p.to_dict()
            user = users.get(p.user_id)
            d["name"] = user.name if user else None
            d["club"] = user.club if user else None
            rows.append(d)
        return {"participants": rows}


# ---------- Individual admission ----------


@app.post("/competitions/{competition_id}/join")
def join_competition(
    competition_id: str,
    req: JoinRequest | None = None,
    user_id: str = Depends(_require_user_id),
    notifier: Notifier = Depends(get_booking_notifier),
) -> dict[str, Any]:
    """Direct join: free competitions, or paid ones the caller has already paid for."""
    slot_number = req.slot_number if req else None
    with db_conn() as conn:
        result = AdmissionCoordinator().join(conn, competition_id, user_id, slot_number)
        notify_booking(notifier, conn, result)
        return result.to_dict()


@app.delete("/competitions/{competition_id}/leave")
def leave_competition(competition_id: str, user_id: str = Depends(_require_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        released = AdmissionCoordinator().leave(conn, competition_id, user_id)
        return {"competition_id": competition_id, "released_slot": released}


# ---------- Payments ----------


@app.post("/payments/intent")
def create_payment_intent(
    req: PaymentIntentRequest,
    user_id: str = Depends(_require_user_id),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
) -> dict[str, Any]:
    with db_conn() as conn:
        payment, intent = PaymentGate(gateway=gateway).create_intent(
            conn, req.competition_id, user_id, team_id=req.team_id
        )
        return {
            "intent_ref": intent.id,
            "client_secret": intent.client_secret,
            "amount": payment.amount,
            "currency": payment.currency,
        }


@app.post("/payments/confirm")
def confirm_payment(
    req: ConfirmPaymentRequest,
    user_id: str = Depends(_require_user_id),
    gateway: PaymentGateway | None = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_booking_notifier),
) -> dict[str, Any]:
    """Idempotent: repeating the call returns the same pegs with replayed=true."""
    with db_conn() as conn:
        gate = PaymentGate(gateway=gateway, notifier=notifier)
        result = gate.confirm_and_admit(conn, req.intent_ref, req.competition_id, user_id, team_id=req.team_id)
        return result.to_dict()


# ---------- Teams ----------


@app.post("/competitions/{competition_id}/teams")
def create_team(
    competition_id: str, req: CreateTeamRequest, user_id: str = Depends(_require_user_id)
) -> dict[str, Any]:
    with db_conn() as conn:
        team = TeamDirectory().create_team(conn, competition_id, user_id, req.name)
        return team.to_dict(include_invite_code=True)


@app.get("/competitions/{competition_id}/my-team")
def get_my_team(competition_id: str, user_id: str = Depends(_require_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        directory = TeamDirectory()
        team = directory.get_user_team(conn, competition_id, user_id)
        if team is None:
            return {"team": None}
        members = directory.list_members(conn, team.id)
        users = UserRepository().get_many(conn, [m.user_id for m in members])
        member_rows = []
        for m in members:
            d = m.to_dict()
            user = users.get(m.user_id)
            d["name"] = user.name if user else None
            member_rows.append(d)
        return {"team": team.to_dict(include_invite_code=True), "members": member_rows}


@app.post("/teams/join")
def join_team(
    req: JoinTeamRequest,
    user_id: str = Depends(_require_user_id),
) -> dict[str, Any]:
    with db_conn() as conn:
        member = TeamDirectory().join_by_invite_code(conn, req.invite_code, user_id)
        return member.to_dict()


@app.delete("/teams/{team_id}/leave")
def leave_team(team_id: str, user_id: str = Depends(_require_user_id)) -> dict[str, Any]:
    with db_conn() as conn:
        dissolved = TeamDirectory().leave(conn, team_id, user_id)
        return {"team_id": team_id, "dissolved": dissolved}


@app.delete("/teams/{team_id}/members/{member_user_id}")
def remove_team_member(
    team_id: str, member_user_id: str, user_id: str = Depends(_require_user_id)
) -> dict[str, Any]:
    with db_conn() as conn:
        TeamDirectory().remove_member(conn, team_id, user_id, member_user_id)
        return {"team_id": team_id, "removed": member_user_id}


@app.post("/teams/{team_id}/captain")
def transfer_captain(
    team_id: str, req: TransferCaptainRequest, user_id: str = Depends(_require_user_id)
) -> dict[str, Any]:
    with db_conn() as conn:
        team = TeamDirectory().transfer_captain(conn, team_id, user_id, req.user_id)
        return team.to_dict()


# ---------- Leaderboard ----------


@app.get("/competitions/{competition_id}/leaderboard")
def get_leaderboard(competition_id: str) -> dict[str, Any]:
    with db_conn() as conn:
        rows = ScoringAggregator().compute_leaderboard(conn, competition_id)
        return {"competition_id": competition_id, "leaderboard": [r.to_dict() for r in rows]}


# ---------- Staff ----------


@app.post("/admin/leaderboard")
def record_weight(req: WeightEntryRequest, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        entry = ScoringAggregator().record_entry(
            conn, req.competition_id, req.slot_number, req.weight, user_id=req.user_id, team_id=req.team_id
        )
        return entry.to_dict()


@app.put("/admin/leaderboard/{entry_id}")
def update_weight(entry_id: str, req: UpdateWeightEntryRequest, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        entry = ScoringAggregator().update_entry(conn, entry_id, weight=req.weight, slot_number=req.slot_number)
        return entry.to_dict()


@app.delete("/admin/leaderboard/{entry_id}")
def delete_weight(entry_id: str, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        ScoringAggregator().delete_entry(conn, entry_id)
        return {"deleted": entry_id}


@app.put("/admin/participants/{participant_id}/slot")
def move_participant(
    participant_id: str, req: MoveParticipantRequest, _: str = Depends(_require_staff)
) -> dict[str, Any]:
    with db_conn() as conn:
        participant = AdmissionCoordinator().move_participant(conn, participant_id, req.slot_number)
        return participant.to_dict()


@app.post("/admin/competitions/{competition_id}/reconcile")
def reconcile_competition(competition_id: str, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        booked = CompetitionRegistry().reconcile_booked(conn, competition_id)
        return {"competition_id": competition_id, "slots_booked": booked}


@app.post("/admin/competitions/{competition_id}/participants")
def add_participant(
    competition_id: str, req: AddParticipantRequest, _: str = Depends(_require_staff)
) -> dict[str, Any]:
    """Seat an angler without going through payment (entries taken on the bank)."""
    with db_conn() as conn:
        if UserRepository().get(conn, req.user_id) is None:
            raise NotFoundError("User not found")
        result = AdmissionCoordinator().admit_by_staff(conn, competition_id, req.user_id, req.slot_number)
        return result.to_dict()


@app.delete("/admin/participants/{participant_id}")
def remove_participant(participant_id: str, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        released = AdmissionCoordinator().remove_participant(conn, participant_id)
        return {"deleted": participant_id, "released_slot": released}


@app.put("/admin/teams/{team_id}/slot")
def move_team(team_id: str, req: MoveParticipantRequest, _: str = Depends(_require_staff)) -> dict[str, Any]:
    with db_conn() as conn:
        team = AdmissionCoordinator().move_team(conn, team_id, req.slot_number)
        return team.to_dict()
