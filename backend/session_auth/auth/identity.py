# session_auth/auth/identity.py
"""
Canonical authenticated identity model.

The Session Manager hands this object to application code once a session
credential has been verified. Downstream code can reason about "who is this
user?" without inspecting raw JWTs or provider payloads.

The Identity object is INTERNAL ONLY and should not be returned directly
to clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Identity:
    """
    Canonical representation of an authenticated user.

    Attributes:
        subject_id: The provider's stable subject id. Also the primary key of
                    the local user record.
        email: User's email address if the credential carried one.
        display_name: Name claim from the credential, if any.
        is_authenticated: True if a session credential was verified.
        claims: Verified credential claims, for audit/debugging. Should NOT be
                used for authorization decisions.
    """

    subject_id: str | None = None
    email: str | None = None
    display_name: str | None = None
    is_authenticated: bool = False
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, subject_id: str, claims: dict[str, Any] | None = None) -> Identity:
        claims = dict(claims or {})
        email = claims.get("email")
        return cls(
            subject_id=subject_id,
            email=email.strip().lower() if email else None,
            display_name=claims.get("name") or None,
            is_authenticated=True,
            claims=claims,
        )
