"""
Process-wide settings, read once from the environment (and a local .env file).
"""
from __future__ import annotations

import os
from typing import ClassVar

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Singleton: Settings() returns the same instance everywhere."""

    _instance: ClassVar["Settings | None"] = None

    def __new__(cls) -> "Settings":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self.database_path = os.getenv("DATABASE_PATH", "")
        self.db_busy_timeout_seconds = float(os.getenv("DB_BUSY_TIMEOUT_SECONDS", "30"))
        self.jwt_secret_key = os.getenv("JWT_SECRET_KEY", "pegbook-dev-secret-change-in-production")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY", "").strip()
        self.stripe_api_base = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1")
        self.payment_currency = os.getenv("PAYMENT_CURRENCY", "gbp").lower()
        self.resend_api_key = os.getenv("RESEND_API_KEY", "").strip()
        self.resend_from_email = os.getenv("RESEND_FROM_EMAIL", "noreply@pegslam.co.uk")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
        self.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]

        self._initialized = True

    @classmethod
    def reload(cls) -> "Settings":
        """Drop the cached instance and re-read the environment (tests)."""
        cls._instance = None
        return cls()
