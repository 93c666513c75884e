"""
Credential verifier.

Single seam between the session layer and the identity provider:
- verify Cognito ID tokens
- mint / verify session credentials (the value stored in the session cookie)
- revoke every outstanding session credential for a subject

Nothing here keeps local state. The revocation generation lives on the
Cognito user (``custom:session_generation``) and is read back on every
revocation-checked verification.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Any

from session_auth.auth.cognito import (
    CognitoInvalidTokenError,
    CognitoTokenExpiredError,
    CognitoVerificationError,
    verify_cognito_id_token,
)
from session_auth.auth.session_tokens import (
    SessionTokenError,
    SessionTokenExpiredError,
    decode_session_token,
    encode_session_token,
)
from session_auth.core.config import settings
from session_auth.services.cognito_client import (
    SESSION_GENERATION_ATTRIBUTE,
    CognitoClientError,
    cognito_admin_get_user,
    cognito_admin_set_session_generation,
    cognito_admin_user_global_sign_out,
)

logger = logging.getLogger(__name__)

MIN_SESSION_TTL = timedelta(minutes=5)
MAX_SESSION_TTL = timedelta(days=14)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CredentialError(Exception):
    """Base class for every verifier failure."""


class InvalidTokenError(CredentialError):
    """ID token is malformed, expired, or not signed by the provider."""


class InvalidSessionError(CredentialError):
    """Session credential is malformed, expired, revoked, or belongs to a disabled account."""


class MintError(CredentialError):
    """A session credential could not be minted."""


class RevokeError(CredentialError):
    """Outstanding session credentials could not be revoked."""


class ProviderUnavailableError(CredentialError):
    """The identity provider could not be reached or is not configured."""


class SubjectNotFoundError(CredentialError):
    """The provider has no user with the given subject id."""


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerifiedCredential:
    subject_id: str
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderUser:
    subject_id: str
    username: str
    email: str | None
    display_name: str | None
    enabled: bool
    session_generation: int


def username_from_claims(claims: dict[str, Any]) -> str | None:
    """Cognito username carried by an ID token (``cognito:username``) or a session credential."""
    return claims.get("cognito:username") or claims.get("username") or None


def _parse_generation(raw: Any) -> int:
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        return 0


class CredentialVerifier:
    """Stateless wrapper over Cognito and the session credential codec."""

    def verify_identity_token(self, token: str) -> VerifiedCredential:
        if not token or not token.strip():
            raise InvalidTokenError("ID token is required")

        try:
            claims = verify_cognito_id_token(token.strip())
        except CognitoTokenExpiredError as exc:
            raise InvalidTokenError("ID token has expired") from exc
        except CognitoInvalidTokenError as exc:
            raise InvalidTokenError(str(exc)) from exc
        except CognitoVerificationError as exc:
            # JWKS fetch failures and missing configuration are provider-side.
            raise ProviderUnavailableError(str(exc)) from exc

        return VerifiedCredential(subject_id=str(claims["sub"]), claims=claims)

    def verify_session_credential(self, value: str, *, check_revoked: bool = True) -> VerifiedCredential:
        if not value or not value.strip():
            raise InvalidSessionError("Session credential is required")

        try:
            claims = decode_session_token(value.strip())
        except SessionTokenExpiredError as exc:
            raise InvalidSessionError("Session credential has expired") from exc
        except SessionTokenError as exc:
            raise InvalidSessionError(str(exc)) from exc

        subject_id = str(claims["sub"])
        if not check_revoked:
            return VerifiedCredential(subject_id=subject_id, claims=claims)

        try:
            user = self.get_user(subject_id, username=username_from_claims(claims))
        except SubjectNotFoundError as exc:
            raise InvalidSessionError("Session subject no longer exists") from exc

        if not user.enabled:
            raise InvalidSessionError("Session subject is disabled")
        if claims["gen"] < user.session_generation:
            raise InvalidSessionError("Session credential has been revoked")

        return VerifiedCredential(subject_id=subject_id, claims=claims)

    def mint_session_credential(self, id_token: str, ttl: timedelta) -> str:
        if ttl < MIN_SESSION_TTL or ttl > MAX_SESSION_TTL:
            raise MintError(
                f"Session TTL must be between {MIN_SESSION_TTL} and {MAX_SESSION_TTL}"
            )

        try:
            verified = self.verify_identity_token(id_token)
        except InvalidTokenError as exc:
            raise MintError(f"Cannot mint from an invalid ID token: {exc}") from exc
        except ProviderUnavailableError as exc:
            raise MintError(str(exc)) from exc

        claims = verified.claims
        auth_time = int(claims.get("auth_time") or claims.get("iat") or 0)
        max_age = max(int(settings.SESSION_RECENT_SIGN_IN_SECONDS), 0)
        if time.time() - auth_time > max_age:
            raise MintError("Recent sign-in required")

        try:
            user = self.get_user(verified.subject_id, username=username_from_claims(claims))
        except CredentialError as exc:
            raise MintError(str(exc)) from exc

        if not user.enabled:
            raise MintError("Provider account is disabled")

        try:
            return encode_session_token(
                subject=verified.subject_id,
                username=user.username,
                email=claims.get("email") or user.email,
                name=claims.get("name") or user.display_name,
                generation=user.session_generation,
                auth_time=auth_time,
                ttl=ttl,
            )
        except RuntimeError as exc:
            raise MintError(str(exc)) from exc

    def revoke_subject(self, subject_id: str, *, username: str | None = None) -> None:
        try:
            user = self.get_user(subject_id, username=username)
        except CredentialError as exc:
            raise RevokeError(str(exc)) from exc

        next_generation = user.session_generation + 1
        try:
            cognito_admin_set_session_generation(user.username, next_generation)
            cognito_admin_user_global_sign_out(user.username)
        except CognitoClientError as exc:
            raise RevokeError(f"{exc.code}: {exc}") from exc

        logger.info("Revoked sessions for subject=%s (generation=%d)", subject_id, next_generation)

    def get_user(self, subject_id: str, *, username: str | None = None) -> ProviderUser:
        """
        Look up the provider user behind ``subject_id``.

        Cognito admin APIs are keyed by username. Local users can be found by
        ``sub``; federated users (``Google_<id>``) only by their username, so
        pass it whenever a token carried one.
        """
        if not subject_id:
            raise SubjectNotFoundError("subject_id is required")

        lookup = username or subject_id
        try:
            attributes = cognito_admin_get_user(lookup)
        except CognitoClientError as exc:
            if exc.code == "UserNotFoundException":
                raise SubjectNotFoundError(subject_id) from exc
            raise ProviderUnavailableError(f"{exc.code}: {exc}") from exc

        if attributes.get("sub") and attributes["sub"] != subject_id:
            raise SubjectNotFoundError(f"Username {lookup} belongs to a different subject")

        return ProviderUser(
            subject_id=subject_id,
            username=attributes.get("Username") or lookup,
            email=(attributes.get("email") or "").strip().lower() or None,
            display_name=(attributes.get("name") or "").strip() or None,
            enabled=bool(attributes.get("Enabled", True)),
            session_generation=_parse_generation(attributes.get(SESSION_GENERATION_ATTRIBUTE)),
        )


@lru_cache(maxsize=1)
def get_credential_verifier() -> CredentialVerifier:
    return CredentialVerifier()
