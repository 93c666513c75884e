# session_auth/services/users.py
"""
User directory.

Narrow storage interface over the ``users`` table:
- find by subject id
- create a record keyed by the provider subject id
- delete (compensation only)

Uniqueness is enforced by the database; a violated constraint on create is
reported as DuplicateUserError so callers can tell it apart from other
storage failures.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from session_auth.models.user import User

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_NAME = "User"
MAX_NAME_LENGTH = 100


class DuplicateUserError(Exception):
    """A user with the same id (or email) already exists."""


def normalize_name(name: str | None, fallback: str) -> str:
    """Normalize name, falling back to the email local part if needed."""
    if name:
        clean = name.strip()
        if clean:
            return clean[:MAX_NAME_LENGTH]

    if fallback and "@" in fallback:
        local = fallback.split("@", 1)[0].strip()
        if local:
            return local[:MAX_NAME_LENGTH]
    return DEFAULT_DISPLAY_NAME


class UserDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def create(self, *, user_id: str, email: str, name: str | None = None) -> User:
        if not user_id:
            raise ValueError("user_id is required")
        if not email:
            raise ValueError("email is required")

        normalized_email = email.strip().lower()
        user = User(
            id=user_id,
            email=normalized_email,
            name=normalize_name(name, fallback=normalized_email),
        )

        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateUserError(f"User {user_id} already exists") from exc
        self.db.refresh(user)

        logger.info("Created user record id=%s", user.id)
        return user

    def delete(self, user_id: str) -> bool:
        user = self.find_by_id(user_id)
        if user is None:
            return False
        self.db.delete(user)
        self.db.commit()
        logger.info("Deleted user record id=%s", user_id)
        return True
