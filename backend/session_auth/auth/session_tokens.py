# session_auth/auth/session_tokens.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from session_auth.core.config import settings

SESSION_TOKEN_USE = "session"


class SessionTokenError(Exception):
    """Session credential is malformed, mis-signed or of the wrong kind."""


class SessionTokenExpiredError(SessionTokenError):
    """Session credential is past its ``exp``."""


# -------------------------
# JWT helpers
# -------------------------
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_session_secret() -> str:
    secret = (settings.SESSION_SECRET or "").strip()
    if not secret:
        raise RuntimeError("SESSION_SECRET must be set (session credentials are signed with it).")
    return secret


def encode_session_token(
    *,
    subject: str,
    username: str | None = None,
    email: str | None,
    name: str | None,
    generation: int,
    auth_time: int,
    ttl: timedelta,
) -> str:
    """
    Sign a session credential.

    ``generation`` is the subject's revocation generation at mint time; the
    credential stops verifying once the provider-side generation moves past it.
    ``username`` is the Cognito username used for admin lookups; it differs
    from ``sub`` for federated users.
    """
    secret = _require_session_secret()

    now = _now_utc()
    exp = now + ttl

    payload: dict[str, Any] = {
        "sub": subject,
        "iss": settings.SESSION_ISSUER,
        "token_use": SESSION_TOKEN_USE,
        "gen": int(generation),
        "auth_time": int(auth_time),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
        "jti": uuid.uuid4().hex,
    }
    if username:
        payload["username"] = username
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name

    return jwt.encode(payload, secret, algorithm=settings.SESSION_ALGORITHM)


def decode_session_token(token: str) -> dict[str, Any]:
    """
    Verify signature, expiry, issuer and token kind; return the claims.

    Raises SessionTokenExpiredError or SessionTokenError.
    """
    secret = _require_session_secret()

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[settings.SESSION_ALGORITHM],
            issuer=settings.SESSION_ISSUER,
        )
    except jwt.ExpiredSignatureError as e:
        raise SessionTokenExpiredError("Session credential has expired") from e
    except JWTError as e:
        raise SessionTokenError(f"Invalid session credential: {e}") from e

    if claims.get("token_use") != SESSION_TOKEN_USE:
        raise SessionTokenError("Invalid token purpose")
    if not claims.get("sub"):
        raise SessionTokenError("Session credential missing subject")
    if not isinstance(claims.get("gen"), int):
        raise SessionTokenError("Session credential missing generation")

    return claims
