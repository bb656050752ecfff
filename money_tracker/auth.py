"""Single-user authentication.

Credentials come from the environment: a username and a bcrypt hash stored
base64 encoded. A session is a cookie holding ``base64("<timestamp>:<secret>")``;
it is valid when the embedded secret matches ``AUTH_SECRET``.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import time

import bcrypt

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def encode_password_hash(password_hash: str) -> str:
    return base64.b64encode(password_hash.encode("utf-8")).decode("ascii")


def verify_password(password: str, password_hash_b64: str | None) -> bool:
    if not password_hash_b64:
        logger.error("AUTH_PASSWORD_HASH_B64 not set")
        return False
    try:
        password_hash = base64.b64decode(password_hash_b64).decode("utf-8")
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        logger.error("AUTH_PASSWORD_HASH_B64 is not a base64 encoded bcrypt hash")
        return False


def verify_credentials(
    username: str,
    password: str,
    expected_username: str | None,
    password_hash_b64: str | None,
) -> bool:
    if not expected_username or username != expected_username:
        return False
    return verify_password(password, password_hash_b64)


def create_session_token(secret: str | None, now: float | None = None) -> str:
    if not secret:
        raise RuntimeError("AUTH_SECRET not set")
    timestamp = int((now if now is not None else time.time()) * 1000)
    return base64.b64encode(f"{timestamp}:{secret}".encode("utf-8")).decode("ascii")


def is_valid_session_token(token: str | None, secret: str | None) -> bool:
    if not token or not secret:
        return False
    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    _, separator, token_secret = decoded.partition(":")
    if not separator:
        return False
    return hmac.compare_digest(token_secret.encode("utf-8"), secret.encode("utf-8"))
