"""
Tests for angler registration, password login and bearer tokens.
"""
from __future__ import annotations

import pytest
from jose import jwt

from pegbook.auth import ALGORITHM, authenticate, create_access_token, decode_token, register_angler
from pegbook.config import Settings
from pegbook.errors import AuthenticationError, ValidationError


def test_register_then_authenticate(db_conn):
    user = register_angler(db_conn, " alice ", "secret123", name="Alice Angler", club="Tight Lines AC")
    assert user.username == "alice"
    assert user.name == "Alice Angler"
    assert user.password_hash != "secret123"

    assert authenticate(db_conn, "alice", "secret123").id == user.id
    with pytest.raises(AuthenticationError):
        authenticate(db_conn, "alice", "wrong-pass")
    with pytest.raises(AuthenticationError):
        authenticate(db_conn, "nobody", "secret123")


def test_duplicate_username_rejected(db_conn):
    register_angler(db_conn, "bob", "secret123")
    with pytest.raises(ValidationError):
        register_angler(db_conn, "bob", "another1")


def test_accounts_without_password_cannot_log_in(db_conn, make_user):
    make_user("marshal", is_staff=True)
    with pytest.raises(AuthenticationError):
        authenticate(db_conn, "marshal", "")


def test_token_carries_user_and_staff_flag(db_conn, make_user):
    marshal = make_user("marshal", is_staff=True)
    token = create_access_token(marshal)
    assert decode_token(token) == marshal.id
    claims = jwt.decode(token, Settings().jwt_secret_key, algorithms=[ALGORITHM])
    assert claims["staff"] is True


def test_tampered_token_is_ignored(db_conn, make_user):
    token = create_access_token(make_user("carol"))
    assert decode_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB")) is None
