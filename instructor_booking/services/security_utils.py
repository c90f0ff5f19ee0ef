"""Password hashing and HMAC-signed tokens.

Tokens are ``<payload>.<signature>`` where both segments are unpadded base64url.
Every token carries a ``purpose`` claim so a calendar OAuth ``state`` value can
never be replayed as a bearer token and vice versa.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any

PASSWORD_SCHEME = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 390_000
PASSWORD_SALT_BYTES = 16

TOKEN_PURPOSE_ACCESS = "access"
TOKEN_PURPOSE_CALENDAR_STATE = "calendar_oauth_state"


def hash_password(password: str) -> str:
    salt = os.urandom(PASSWORD_SALT_BYTES)
    digest = _derive(password, salt, PASSWORD_ITERATIONS)
    return "$".join(
        (PASSWORD_SCHEME, str(PASSWORD_ITERATIONS), _b64url_encode(salt), _b64url_encode(digest)),
    )


def verify_password(password: str, stored_hash: str) -> bool:
    parts = stored_hash.split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME:
        return False
    try:
        iterations = int(parts[1])
        salt = _b64url_decode(parts[2])
        expected = _b64url_decode(parts[3])
    except (ValueError, binascii.Error):
        return False
    return hmac.compare_digest(_derive(password, salt, iterations), expected)


def sign_token(
    *,
    purpose: str,
    claims: dict[str, Any],
    secret_key: str,
    ttl: timedelta,
) -> tuple[str, int]:
    """Return a signed token and its lifetime in seconds."""
    issued_at = datetime.now(UTC)
    payload = {
        **claims,
        "purpose": purpose,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
    }
    body = _b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_sign(body, secret_key)}", max(int(ttl.total_seconds()), 0)


def verify_token(token: str, *, purpose: str, secret_key: str) -> dict[str, Any] | None:
    """Return the claims of a valid, unexpired token issued for ``purpose``."""
    body, separator, signature = token.partition(".")
    if not separator or not hmac.compare_digest(_sign(body, secret_key), signature):
        return None
    try:
        payload = json.loads(_b64url_decode(body).decode("utf-8"))
    except (ValueError, binascii.Error):
        return None
    if not isinstance(payload, dict) or payload.get("purpose") != purpose:
        return None
    expires_at = payload.get("exp")
    if not isinstance(expires_at, int) or expires_at < int(datetime.now(UTC).timestamp()):
        return None
    return payload


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _sign(body: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode("utf-8"), body.encode("ascii"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
