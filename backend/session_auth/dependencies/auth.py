from __future__ import annotations

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from session_auth.auth.credentials import CredentialVerifier, get_credential_verifier
from session_auth.core.database import get_db
from session_auth.services.accounts import AccountReconciler
from session_auth.services.cookies import CookieStore
from session_auth.services.sessions import SessionManager
from session_auth.services.users import UserDirectory


def get_cookie_store(request: Request, response: Response) -> CookieStore:
    return CookieStore(request, response)


def get_session_manager(
    verifier: CredentialVerifier = Depends(get_credential_verifier),
    cookies: CookieStore = Depends(get_cookie_store),
) -> SessionManager:
    return SessionManager(verifier, cookies)


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return UserDirectory(db)


def get_account_reconciler(directory: UserDirectory = Depends(get_user_directory)) -> AccountReconciler:
    return AccountReconciler(directory)
