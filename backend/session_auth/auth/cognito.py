"""
Cognito ID token verification.

The credential verifier uses this module to check the short-lived ID tokens
that the client obtains from Cognito (password sign-in or federated sign-in
through the hosted UI). Responsibilities:
- Lazy JWKS fetching (no network calls on import)
- In-memory JWKS caching with configurable TTL
- Clear typed exceptions for verification failures
- Only ID tokens are accepted (``token_use == "id"`` and ``aud`` == app client)
"""
from __future__ import annotations

import json
import logging
import ssl
import threading
import time
from typing import Any
from urllib.request import urlopen

import certifi
from jose import JWTError, jwk, jwt
from jose.exceptions import JOSEError

from session_auth.core.config import settings


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class CognitoVerificationError(Exception):
    """Base exception for Cognito JWT verification failures."""


class CognitoNotConfiguredError(CognitoVerificationError):
    """Raised when Cognito settings are not configured."""


class CognitoJWKSFetchError(CognitoVerificationError):
    """Raised when JWKS cannot be fetched from Cognito."""


class CognitoTokenExpiredError(CognitoVerificationError):
    """Raised when the token has expired."""


class CognitoInvalidTokenError(CognitoVerificationError):
    """Raised for signature, issuer, audience or token-type failures."""


# ---------------------------------------------------------------------------
# JWKS Cache
# ---------------------------------------------------------------------------


class _JWKSCache:
    """
    Thread-safe in-memory cache for Cognito JWKS.

    The cache is populated lazily on first verification attempt.
    TTL is controlled by COGNITO_JWKS_CACHE_SECONDS.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keys: dict[str, Any] | None = None
        self._fetched_at: float = 0.0

    def get_signing_key(self, kid: str) -> Any:
        with self._lock:
            now = time.time()
            if self._keys is None or (now - self._fetched_at) > settings.COGNITO_JWKS_CACHE_SECONDS:
                self._refresh_keys()

            if kid not in self._keys:
                # Keys may have rotated since the last fetch.
                self._refresh_keys()

            if kid not in self._keys:
                raise CognitoInvalidTokenError(f"Signing key not found for kid: {kid}")

            return self._keys[kid]

    def _refresh_keys(self) -> None:
        jwks_url = settings.cognito_jwks_url
        if not jwks_url:
            raise CognitoNotConfiguredError("Cognito JWKS URL not configured")

        try:
            logger.info("Fetching Cognito JWKS from %s", jwks_url)
            context = ssl.create_default_context(cafile=certifi.where())
            with urlopen(jwks_url, timeout=10, context=context) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except Exception as e:
            logger.error("Failed to fetch Cognito JWKS: %s", e)
            raise CognitoJWKSFetchError(f"Failed to fetch JWKS: {e}") from e

        keys_list = data.get("keys", [])
        if not keys_list:
            raise CognitoJWKSFetchError("JWKS response contains no keys")

        keys: dict[str, Any] = {}
        for key_data in keys_list:
            kid = key_data.get("kid")
            if not kid:
                continue
            try:
                keys[kid] = jwk.construct(key_data)
            except JOSEError as e:
                logger.warning("Failed to construct key for kid=%s: %s", kid, e)

        self._keys = keys
        self._fetched_at = time.time()
        logger.info("Cached %d Cognito signing keys", len(self._keys))

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0.0


_jwks_cache = _JWKSCache()


def clear_jwks_cache() -> None:
    """Clear the JWKS cache. Exposed for testing."""
    _jwks_cache.clear()


# ---------------------------------------------------------------------------
# Token Verification
# ---------------------------------------------------------------------------


def verify_cognito_id_token(token: str) -> dict[str, Any]:
    """
    Verify a Cognito ID token and return its claims.

    Validates signature (RS256 via JWKS), exp/iat/nbf, issuer, ``aud`` against
    the configured app client, and that ``token_use`` is ``"id"``. Access
    tokens and locally minted session credentials are rejected.

    Raises:
        CognitoNotConfiguredError: Cognito settings not configured
        CognitoJWKSFetchError: signing keys could not be fetched
        CognitoTokenExpiredError: token has expired
        CognitoInvalidTokenError: any other validation failure
    """
    issuer = settings.cognito_issuer
    client_id = settings.COGNITO_APP_CLIENT_ID

    if not issuer or not client_id:
        raise CognitoNotConfiguredError(
            "Cognito not configured (COGNITO_REGION, COGNITO_USER_POOL_ID, COGNITO_APP_CLIENT_ID required)"
        )

    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise CognitoInvalidTokenError(f"Invalid token header: {e}") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise CognitoInvalidTokenError("Token header missing 'kid' claim")
    if unverified_header.get("alg") != "RS256":
        raise CognitoInvalidTokenError("Unexpected token algorithm")

    signing_key = _jwks_cache.get_signing_key(kid)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            issuer=issuer,
            audience=client_id,
        )
    except jwt.ExpiredSignatureError as e:
        raise CognitoTokenExpiredError("Token has expired") from e
    except jwt.JWTClaimsError as e:
        raise CognitoInvalidTokenError(f"Claims validation failed: {e}") from e
    except JWTError as e:
        raise CognitoInvalidTokenError(f"Signature verification failed: {e}") from e

    if claims.get("token_use") != "id":
        raise CognitoInvalidTokenError("ID token required")
    if not claims.get("sub"):
        raise CognitoInvalidTokenError("Token missing subject")

    return claims
