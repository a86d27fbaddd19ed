"""
SQLite schema for peg booking.
Migration-friendly: each table created with IF NOT EXISTS.

The uniqueness constraints here are what make concurrent booking safe:
  slot_claims PK (competition_id, slot_number)  one holder per peg
  participants UNIQUE (competition_id, user_id) one seat per angler
  team_members UNIQUE (competition_id, user_id) one team per angler per competition
  teams UNIQUE (invite_code)
  payments UNIQUE (intent_ref)                  one record per external intent
"""
from __future__ import annotations


def users_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT,
        club TEXT,
        password_hash TEXT NOT NULL DEFAULT '',
        is_staff INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_users_username ON users(username);
    """


def competitions_schema() -> str:
    """mode: individual | team. team_slot_policy: team | members. entry_fee in minor units."""
    return """
    CREATE TABLE IF NOT EXISTS competitions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        date TEXT NOT NULL,
        venue TEXT NOT NULL,
        slots_total INTEGER NOT NULL CHECK (slots_total >= 1),
        slots_booked INTEGER NOT NULL DEFAULT 0,
        entry_fee INTEGER NOT NULL DEFAULT 0 CHECK (entry_fee >= 0),
        currency TEXT NOT NULL DEFAULT 'gbp',
        mode TEXT NOT NULL DEFAULT 'individual',
        team_slot_policy TEXT NOT NULL DEFAULT 'team',
        max_team_members INTEGER,
        created_at TEXT NOT NULL,
        CHECK (slots_booked >= 0 AND slots_booked <= slots_total)
    );
    """


def slot_claims_schema() -> str:
    """Slot ledger. owner_kind: participant | team; owner_id is the participant or team id."""
    return """
    CREATE TABLE IF NOT EXISTS slot_claims (
        competition_id TEXT NOT NULL,
        slot_number INTEGER NOT NULL CHECK (slot_number >= 1),
        owner_kind TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        claimed_at TEXT NOT NULL,
        PRIMARY KEY (competition_id, slot_number),
        FOREIGN KEY (competition_id) REFERENCES competitions(id)
    );
    CREATE INDEX IF NOT EXISTS ix_slot_claims_owner ON slot_claims(owner_kind, owner_id);
    """


def participants_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS participants (
        id TEXT PRIMARY KEY,
        competition_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        slot_number INTEGER,
        team_id TEXT,
        joined_at TEXT NOT NULL,
        FOREIGN KEY (competition_id) REFERENCES competitions(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_participants_competition_user ON participants(competition_id, user_id);
    CREATE INDEX IF NOT EXISTS ix_participants_team ON participants(team_id);
    """


def teams_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS teams (
        id TEXT PRIMARY KEY,
        competition_id TEXT NOT NULL,
        name TEXT NOT NULL,
        invite_code TEXT NOT NULL,
        captain_id TEXT NOT NULL,
        payment_status TEXT NOT NULL DEFAULT 'pending',
        slot_number INTEGER,
        admitted_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (competition_id) REFERENCES competitions(id),
        FOREIGN KEY (captain_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_teams_invite_code ON teams(invite_code);
    CREATE INDEX IF NOT EXISTS ix_teams_competition ON teams(competition_id);
    """


def team_members_schema() -> str:
    """role: captain | member. status: pending | accepted."""
    return """
    CREATE TABLE IF NOT EXISTS team_members (
        id TEXT PRIMARY KEY,
        team_id TEXT NOT NULL,
        competition_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        joined_at TEXT NOT NULL,
        FOREIGN KEY (team_id) REFERENCES teams(id),
        FOREIGN KEY (user_id) REFERENCES users(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_team_members_team_user ON team_members(team_id, user_id);
    CREATE UNIQUE INDEX IF NOT EXISTS ix_team_members_competition_user ON team_members(competition_id, user_id);
    """


def payments_schema() -> str:
    """status: pending | succeeded | failed. amount in minor units."""
    return """
    CREATE TABLE IF NOT EXISTS payments (
        id TEXT PRIMARY KEY,
        competition_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        team_id TEXT,
        amount INTEGER NOT NULL,
        currency TEXT NOT NULL,
        intent_ref TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        FOREIGN KEY (competition_id) REFERENCES competitions(id)
    );
    CREATE UNIQUE INDEX IF NOT EXISTS ix_payments_intent_ref ON payments(intent_ref);
    CREATE INDEX IF NOT EXISTS ix_payments_competition_user ON payments(competition_id, user_id);
    """


def leaderboard_entries_schema() -> str:
    """Raw catches. weight in grams."""
    return """
    CREATE TABLE IF NOT EXISTS leaderboard_entries (
        id TEXT PRIMARY KEY,
        competition_id TEXT NOT NULL,
        user_id TEXT,
        team_id TEXT,
        slot_number INTEGER NOT NULL,
        weight INTEGER NOT NULL CHECK (weight >= 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (competition_id) REFERENCES competitions(id)
    );
    CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_competition ON leaderboard_entries(competition_id);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution."""
    return "\n".join([
        users_schema(),
        competitions_schema(),
        slot_claims_schema(),
        participants_schema(),
        teams_schema(),
        team_members_schema(),
        payments_schema(),
        leaderboard_entries_schema(),
    ])
