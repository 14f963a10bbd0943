# (c) Copyright Datacraft, 2026
import base64
import hashlib
import secrets

from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_session_token() -> str:
    """20 random bytes, lowercase base32 without padding."""
    raw = secrets.token_bytes(20)
    return base64.b32encode(raw).decode("ascii").rstrip("=").lower()


def generate_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """Server-side identifier for a bearer secret (hex SHA-256)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def constant_time_equals(received: str | None, expected: str | None) -> bool:
    if not received or not expected:
        return False
    return secrets.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def from_header(request: Request) -> str | None:
    authorization = request.headers.get("Authorization")
    scheme, token = get_authorization_scheme_param(authorization)

    if not authorization or scheme.lower() != "bearer":
        return None

    return token


def from_cookie(request: Request, cookie_name: str) -> str | None:
    return request.cookies.get(cookie_name, None)
