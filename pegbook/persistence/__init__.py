"""
Persistence layer for peg booking.
No business logic: only connections, transactions and read/write interfaces.
"""
from .db import get_connection, init_db, set_db_path, get_db_path, write_transaction
from .repositories import (
    UserRepository,
    CompetitionRepository,
    SlotClaimRepository,
    ParticipantRepository,
    TeamRepository,
    TeamMemberRepository,
    PaymentRepository,
    LeaderboardEntryRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "set_db_path",
    "get_db_path",
    "write_transaction",
    "UserRepository",
    "CompetitionRepository",
    "SlotClaimRepository",
    "ParticipantRepository",
    "TeamRepository",
    "TeamMemberRepository",
    "PaymentRepository",
    "LeaderboardEntryRepository",
]
