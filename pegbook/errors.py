"""
Domain error taxonomy for booking, payment and scoring.

Every error a caller can act on derives from BookingError and carries the HTTP
status the API boundary answers with. Storage and transport failures
(sqlite3.OperationalError, httpx.HTTPError, ...) are never wrapped here.
"""
from __future__ import annotations


class BookingError(Exception):
    """Base for user-facing domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------- Validation (400) ----------


class ValidationError(BookingError):
    """Bad input: no state change, caller can correct and resend."""


# ---------- Not found (404) ----------


class NotFoundError(BookingError):
    status_code = 404


# ---------- Conflict (409) ----------


class ConflictError(BookingError):
    status_code = 409


class SlotTaken(ConflictError):
    """A specifically requested slot is held by someone else."""

    def __init__(self, slot_number: int) -> None:
        super().__init__(f"Peg {slot_number} is already assigned to another angler")
        self.slot_number = slot_number


class AlreadyJoined(ConflictError):
    """Competitor (or team) already holds a place in this competition."""


class AlreadyInTeam(ConflictError):
    """Competitor already belongs to a team in this competition."""


class TeamAlreadyPaid(ConflictError):
    """Team already has a succeeded payment; charging again is refused."""


# ---------- Capacity (409, terminal for this attempt) ----------


class CapacityError(BookingError):
    status_code = 409


class CompetitionFull(CapacityError):
    def __init__(self, message: str = "No available pegs - competition is full") -> None:
        super().__init__(message)


class TeamFull(CapacityError):
    pass


class InsufficientSlots(CapacityError):
    """Fewer free slots than accepted members under one-slot-per-member."""

    def __init__(self, needed: int, free: int) -> None:
        super().__init__(f"Team needs {needed} pegs but only {free} are free")
        self.needed = needed
        self.free = free


# ---------- Contention (503, transient) ----------


class ContentionError(BookingError):
    status_code = 503
    retry_after_seconds = 2


class AssignmentExhausted(ContentionError):
    def __init__(self) -> None:
        super().__init__("Unable to reserve a peg due to high demand. Please try again in a moment.")


# ---------- Authorization (403) ----------


class AuthorizationError(BookingError):
    status_code = 403


class NotCaptain(AuthorizationError):
    pass


class PaymentMismatch(AuthorizationError):
    """Payment belongs to another competitor, team or competition."""


# ---------- Authentication (401) ----------


class AuthenticationError(BookingError):
    status_code = 401


# ---------- Payment ----------


class PaymentRequired(BookingError):
    status_code = 402


class PaymentFailed(BookingError):
    status_code = 402


class PaymentGatewayUnavailable(BookingError):
    """No payment gateway configured (e.g. STRIPE_SECRET_KEY unset)."""

    status_code = 503
