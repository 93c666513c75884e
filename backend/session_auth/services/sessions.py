"""
Session lifecycle.

A session is Active exactly when the session cookie holds a credential that
verifies. Every other state (Unauthenticated, Expired, Revoked, LoggedOut) is
implicit and detected lazily on read:

    Unauthenticated --establish_session--> Active --terminate_session--> LoggedOut
                                             |
                                             +-- credential expired / revoked (seen on read)

Refresh is a full re-establishment with a fresh ID token; there is no
incremental extension.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from session_auth.auth.credentials import (
    CredentialError,
    CredentialVerifier,
    InvalidSessionError,
    InvalidTokenError,
    MintError,
    RevokeError,
    username_from_claims,
)
from session_auth.auth.identity import Identity
from session_auth.core.config import settings
from session_auth.services.cookies import CookieOptions, CookieStore, CookieWriteError

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=5)


class EstablishFailure(str, Enum):
    INVALID_TOKEN = "invalid_token"
    MINT_FAILED = "mint_failed"
    COOKIE_WRITE_FAILED = "cookie_write_failed"
    PROVIDER_ERROR = "provider_error"


FAILURE_MESSAGES = {
    EstablishFailure.INVALID_TOKEN: "Your sign-in has expired. Please sign in again.",
    EstablishFailure.MINT_FAILED: "Unable to start your session. Please try again later.",
    EstablishFailure.COOKIE_WRITE_FAILED: "Unable to start your session. Please try again later.",
    EstablishFailure.PROVIDER_ERROR: "Authentication is temporarily unavailable. Please try again later.",
}


@dataclass(frozen=True)
class EstablishResult:
    success: bool
    subject_id: str | None = None
    failure: EstablishFailure | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, subject_id: str, claims: dict[str, Any] | None = None) -> EstablishResult:
        return cls(success=True, subject_id=subject_id, claims=dict(claims or {}))

    @classmethod
    def failed(cls, failure: EstablishFailure, subject_id: str | None = None) -> EstablishResult:
        return cls(success=False, subject_id=subject_id, failure=failure)

    @property
    def error(self) -> str | None:
        if self.failure is None:
            return None
        return FAILURE_MESSAGES[self.failure]


class SessionManager:
    def __init__(
        self,
        verifier: CredentialVerifier,
        cookies: CookieStore,
        *,
        cookie_name: str | None = None,
    ) -> None:
        self.verifier = verifier
        self.cookies = cookies
        self.cookie_name = cookie_name or settings.SESSION_COOKIE_NAME

    def establish_session(self, id_token: str) -> EstablishResult:
        """
        Exchange an ID token for a session cookie.

        The session only counts as established once the cookie write succeeds;
        a minted credential that cannot be written is dropped.
        """
        try:
            verified = self.verifier.verify_identity_token(id_token)
        except InvalidTokenError as exc:
            logger.info("Rejected ID token during session establishment: %s", exc)
            return EstablishResult.failed(EstablishFailure.INVALID_TOKEN)
        except CredentialError as exc:
            logger.error("Provider error verifying ID token: %s", exc)
            return EstablishResult.failed(EstablishFailure.PROVIDER_ERROR)

        subject_id = verified.subject_id

        try:
            credential = self.verifier.mint_session_credential(id_token, SESSION_TTL)
        except MintError as exc:
            logger.warning("Session mint failed for subject=%s: %s", subject_id, exc)
            return EstablishResult.failed(EstablishFailure.MINT_FAILED, subject_id)

        try:
            self.cookies.set(
                self.cookie_name,
                credential,
                CookieOptions(max_age=int(SESSION_TTL.total_seconds())),
            )
        except CookieWriteError as exc:
            logger.error("Session cookie write failed for subject=%s: %s", subject_id, exc)
            return EstablishResult.failed(EstablishFailure.COOKIE_WRITE_FAILED, subject_id)

        logger.info("Session established for subject=%s", subject_id)
        return EstablishResult.ok(subject_id, verified.claims)

    def terminate_session(self) -> None:
        """
        Revoke (best effort) and delete the session cookie.

        The cookie is always deleted, even when the provider cannot be reached.
        A missing cookie makes this a no-op.
        """
        value = self.cookies.get(self.cookie_name)
        if not value:
            return

        try:
            verified = self.verifier.verify_session_credential(value, check_revoked=False)
        except InvalidSessionError as exc:
            logger.info("Session cookie already invalid at logout: %s", exc)
        else:
            try:
                self.verifier.revoke_subject(
                    verified.subject_id,
                    username=username_from_claims(verified.claims),
                )
            except RevokeError as exc:
                logger.warning("Session revoke failed for subject=%s: %s", verified.subject_id, exc)

        self.cookies.delete(self.cookie_name)
        logger.info("Session cookie cleared")

    def current_subject(self) -> Identity | None:
        """
        Resolve the identity behind the session cookie, or None.

        Never raises: any verification failure reads as unauthenticated. A
        definitively dead credential also has its cookie cleared.
        """
        value = self.cookies.get(self.cookie_name)
        if not value:
            return None

        try:
            verified = self.verifier.verify_session_credential(value)
        except InvalidSessionError as exc:
            logger.info("Discarding invalid session cookie: %s", exc)
            self.cookies.delete(self.cookie_name)
            return None
        except CredentialError as exc:
            logger.warning("Session verification unavailable: %s", exc)
            return None

        return Identity.from_claims(verified.subject_id, verified.claims)

    def discard_session(self) -> None:
        """Drop the session cookie without contacting the provider."""
        self.cookies.delete(self.cookie_name)
