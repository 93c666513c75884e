# session_auth/services/accounts.py
"""
Account reconciliation.

Keeps the local user directory in step with the identity provider:
- JIT creation of a user record for a verified subject id
- lookup-before-create, with the id uniqueness constraint deciding races
- best-effort compensating delete when registration cannot finish
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from session_auth.models.user import User
from session_auth.services.users import DuplicateUserError, UserDirectory, normalize_name

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """The user record could not be found or created."""


@dataclass(frozen=True)
class ProfileHint:
    email: str | None
    display_name: str | None = None

    def resolved_name(self) -> str:
        return normalize_name(self.display_name, fallback=(self.email or "").strip())


@dataclass(frozen=True)
class Reconciled:
    user: User
    created: bool


class AccountReconciler:
    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory

    def reconcile(self, subject_id: str, hint: ProfileHint) -> Reconciled:
        """
        Find or create the record for ``subject_id``.

        ``created`` is True only when this call inserted the row, which is what
        decides whether a later rollback is allowed.
        """
        if not subject_id:
            raise ReconciliationError("subject_id is required")

        try:
            existing = self.directory.find_by_id(subject_id)
            if existing is not None:
                return Reconciled(user=existing, created=False)

            email = (hint.email or "").strip().lower()
            if not email:
                raise ReconciliationError(f"No email available to create user {subject_id}")

            try:
                user = self.directory.create(
                    user_id=subject_id,
                    email=email,
                    name=hint.resolved_name(),
                )
            except DuplicateUserError:
                # Lost a race with a concurrent first login; the winner's row is ours too.
                existing = self.directory.find_by_id(subject_id)
                if existing is None:
                    raise ReconciliationError(
                        f"Email for user {subject_id} already belongs to another account"
                    )
                logger.info("User record %s created concurrently; using existing row", subject_id)
                return Reconciled(user=existing, created=False)
        except SQLAlchemyError as exc:
            self.directory.db.rollback()
            raise ReconciliationError(f"Storage failure reconciling user {subject_id}") from exc

        return Reconciled(user=user, created=True)

    def ensure_user_record(self, subject_id: str, hint: ProfileHint) -> User:
        return self.reconcile(subject_id, hint).user

    def rollback_user_record(self, subject_id: str) -> bool:
        """
        Best-effort delete of a record created earlier in the same attempt.

        Failures are logged and swallowed; an orphaned profile row is preferred
        over failing the caller a second time.
        """
        try:
            deleted = self.directory.delete(subject_id)
        except SQLAlchemyError:
            self.directory.db.rollback()
            logger.exception("Failed to roll back user record %s", subject_id)
            return False

        if not deleted:
            logger.warning("Rollback requested for missing user record %s", subject_id)
        return deleted
