"""
Angler accounts: registration, password check and JWT bearer tokens.
Passwords are stored as pbkdf2 hashes only. Staff rights live on the user row
and are looked up per request; the token's "staff" claim is informational.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from pegbook.config import Settings
from pegbook.errors import AuthenticationError, ValidationError
from pegbook.logger import setup_logger
from pegbook.models import User
from pegbook.persistence.db import write_transaction
from pegbook.persistence.repositories import UserRepository, violated_table

logger = setup_logger("pegbook.auth")

# pbkdf2_sha256 avoids the bcrypt backend and its 72-byte password limit
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def create_access_token(user: User) -> str:
    settings = Settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user.id,
        "staff": user.is_staff,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> str | None:
    """User id from a bearer token, or None when it is forged or expired."""
    try:
        payload = jwt.decode(token, Settings().jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


def register_angler(
    conn: sqlite3.Connection,
    username: str,
    password: str,
    name: str | None = None,
    email: str | None = None,
    club: str | None = None,
) -> User:
    users = UserRepository()
    username = username.strip()
    if users.get_by_username(conn, username) is not None:
        raise ValidationError("Username already taken")
    try:
        with write_transaction(conn):
            user = users.create(
                conn, username, (name or "").strip() or username, hash_password(password),
                email=email, club=club,
            )
    except sqlite3.IntegrityError as e:
        if violated_table(e) == "users":
            raise ValidationError("Username already taken") from e
        raise
    logger.info("Registered angler %s (%s)", user.id, username)
    return user


def authenticate(conn: sqlite3.Connection, username: str, password: str) -> User:
    user = UserRepository().get_by_username(conn, username.strip())
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid username or password")
    return user
