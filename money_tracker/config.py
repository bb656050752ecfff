from __future__ import annotations

import os
from datetime import timedelta


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/money-tracker.db")
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

AUTH_USERNAME = os.getenv("AUTH_USERNAME")
# bcrypt hash, base64 encoded so the "$" characters survive shell expansion
AUTH_PASSWORD_HASH_B64 = os.getenv("AUTH_PASSWORD_HASH_B64")
AUTH_SECRET = os.getenv("AUTH_SECRET")
AUTH_COOKIE_NAME = "auth-token"
AUTH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
COOKIE_SECURE = _env_flag("COOKIE_SECURE", False)

RATE_API_URL = os.getenv("RATE_API_URL", "https://api.frankfurter.app")
RATE_API_TIMEOUT = float(os.getenv("RATE_API_TIMEOUT", "8"))
RATE_STALE_AFTER = timedelta(hours=24)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
