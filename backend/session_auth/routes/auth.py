from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from session_auth.auth.credentials import (
    CredentialError,
    CredentialVerifier,
    get_credential_verifier,
    username_from_claims,
)
from session_auth.core.config import settings
from session_auth.core.forms import validate_login, validate_registration
from session_auth.dependencies.auth import (
    get_account_reconciler,
    get_session_manager,
    get_user_directory,
)
from session_auth.schemas.auth import (
    CurrentUserOut,
    FederatedLoginResult,
    IdTokenIn,
    LoginResult,
    RegisterForm,
    RegisterResult,
    SessionOut,
)
from session_auth.services.accounts import AccountReconciler, ProfileHint, ReconciliationError
from session_auth.services.cognito_client import (
    CognitoClientError,
    cognito_admin_confirm_sign_up,
    cognito_initiate_auth,
    cognito_sign_up,
)
from session_auth.services.cookies import CookieStore
from session_auth.services.sessions import EstablishFailure, EstablishResult, SessionManager
from session_auth.services.users import UserDirectory, normalize_name


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

REGISTRATION_FAILED = "Registration failed. Please try again later."
EMAIL_IN_USE = "This email is already registered. Please try logging in."
LOGIN_INVALID_INPUT = "Login failed. Please check your credentials."
LOGIN_FAILED = "Login failed. Please try again later."
INVALID_CREDENTIALS = "Invalid email or password"
CHALLENGE_REQUIRED = "Additional authentication is required to finish signing in."
FEDERATED_FAILED = "Failed to login with Google. Please try again."

INVALID_CREDENTIAL_CODES = {"NotAuthorizedException", "UserNotFoundException"}


class SessionEstablishmentError(Exception):
    """
    Session could not be started after the account was set up.

    ``record_created`` says whether the user record was inserted by this same
    attempt, which is the only case where it may be rolled back.
    """

    def __init__(self, failure: EstablishFailure, subject_id: str, record_created: bool) -> None:
        super().__init__(failure.value)
        self.failure = failure
        self.subject_id = subject_id
        self.record_created = record_created


def _id_token_from(auth_result: dict) -> str | None:
    authentication = auth_result.get("AuthenticationResult") or {}
    return authentication.get("IdToken")


def _provider_sign_up(form: RegisterForm) -> tuple[str, str]:
    """Create and confirm the Cognito user, then sign in. Returns (subject_id, id_token)."""
    signup = cognito_sign_up(form.email, form.password, normalize_name(form.name, fallback=form.email))
    subject_id = signup.get("UserSub")
    if not subject_id:
        raise CognitoClientError("InvalidResponse", "SignUp response missing UserSub")

    if not signup.get("UserConfirmed"):
        cognito_admin_confirm_sign_up(form.email)

    id_token = _id_token_from(cognito_initiate_auth(form.email, form.password))
    if not id_token:
        raise CognitoClientError("MissingIdToken", "Failed to get ID token")
    return subject_id, id_token


def _register_account(form: RegisterForm, sessions: SessionManager, reconciler: AccountReconciler) -> str:
    subject_id, id_token = _provider_sign_up(form)

    # Profile first, session second: only this order can be compensated.
    reconciled = reconciler.reconcile(subject_id, ProfileHint(email=form.email, display_name=form.name))

    result = sessions.establish_session(id_token)
    if not result.success:
        raise SessionEstablishmentError(result.failure, subject_id, reconciled.created)
    return subject_id


def _profile_hint(result: EstablishResult, verifier: CredentialVerifier) -> ProfileHint:
    email = result.claims.get("email")
    if email:
        return ProfileHint(email=email, display_name=result.claims.get("name"))

    provider_user = verifier.get_user(result.subject_id, username=username_from_claims(result.claims))
    return ProfileHint(email=provider_user.email, display_name=provider_user.display_name)


def _ensure_profile(
    result: EstablishResult,
    sessions: SessionManager,
    reconciler: AccountReconciler,
    verifier: CredentialVerifier,
) -> bool:
    """Make sure the freshly established session has a user record; drop the session if not."""
    try:
        reconciler.ensure_user_record(result.subject_id, _profile_hint(result, verifier))
    except (ReconciliationError, CredentialError) as exc:
        logger.error("Could not reconcile user record for subject=%s: %s", result.subject_id, exc)
        # No active session without a user record.
        sessions.discard_session()
        return False
    return True


def _unauthorized(sub_response: Response) -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content={"error": "UNAUTHORIZED", "message": "Not authenticated"},
    )
    # Keep any cookie cleanup the session manager queued.
    for key, value in sub_response.raw_headers:
        if key == b"set-cookie":
            resp.raw_headers.append((key, value))
    return resp


@router.post("/register", response_model=RegisterResult)
def register(
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
    sessions: SessionManager = Depends(get_session_manager),
    reconciler: AccountReconciler = Depends(get_account_reconciler),
):
    form, errors = validate_registration(
        name=name,
        email=email,
        password=password,
        confirm_password=confirm_password,
    )
    if form is None:
        return RegisterResult(
            errors=errors,
            email=email.strip(),
            name=name.strip(),
            general_error=REGISTRATION_FAILED,
        )

    echoed_name = form.name or ""
    try:
        subject_id = _register_account(form, sessions, reconciler)
    except SessionEstablishmentError as exc:
        logger.warning(
            "Registration session failed for subject=%s (%s)",
            exc.subject_id,
            exc.failure.value,
        )
        if exc.record_created:
            reconciler.rollback_user_record(exc.subject_id)
        return RegisterResult(email=form.email, name=echoed_name, general_error=REGISTRATION_FAILED)
    except CognitoClientError as exc:
        if exc.code == "UsernameExistsException":
            return RegisterResult(
                errors={"email": [EMAIL_IN_USE]},
                email=form.email,
                name=echoed_name,
            )
        logger.error("Registration provider error (%s): %s", exc.code, exc)
        return RegisterResult(email=form.email, name=echoed_name, general_error=REGISTRATION_FAILED)
    except ReconciliationError:
        logger.exception("Registration could not create the user record")
        return RegisterResult(email=form.email, name=echoed_name, general_error=REGISTRATION_FAILED)

    logger.info("Registered subject=%s", subject_id)
    return RegisterResult(success=True)


@router.post("/login", response_model=LoginResult)
def login(
    email: str = Form(""),
    password: str = Form(""),
    sessions: SessionManager = Depends(get_session_manager),
    reconciler: AccountReconciler = Depends(get_account_reconciler),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
):
    form, errors = validate_login(email=email, password=password)
    if form is None:
        return LoginResult(errors=errors, email=email.strip(), general_error=LOGIN_INVALID_INPUT)

    try:
        auth_result = cognito_initiate_auth(form.email, form.password)
    except CognitoClientError as exc:
        if exc.code in INVALID_CREDENTIAL_CODES:
            return LoginResult(errors={"password": [INVALID_CREDENTIALS]}, email=form.email)
        logger.error("Login provider error (%s): %s", exc.code, exc)
        return LoginResult(email=form.email, general_error=LOGIN_FAILED)

    if auth_result.get("ChallengeName"):
        logger.info("Login requires challenge %s", auth_result.get("ChallengeName"))
        return LoginResult(email=form.email, general_error=CHALLENGE_REQUIRED)

    id_token = _id_token_from(auth_result)
    if not id_token:
        logger.error("Login response missing IdToken")
        return LoginResult(email=form.email, general_error=LOGIN_FAILED)

    result = sessions.establish_session(id_token)
    if not result.success:
        return LoginResult(email=form.email, general_error=LOGIN_FAILED)

    # A profile lost to an earlier registration rollback is recreated here.
    if not _ensure_profile(result, sessions, reconciler, verifier):
        return LoginResult(email=form.email, general_error=LOGIN_FAILED)

    return LoginResult(success=True)


@router.post("/federated", response_model=FederatedLoginResult)
def federated_login(
    payload: IdTokenIn,
    sessions: SessionManager = Depends(get_session_manager),
    reconciler: AccountReconciler = Depends(get_account_reconciler),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
):
    result = sessions.establish_session(payload.id_token)
    if not result.success:
        return FederatedLoginResult(success=False, error=FEDERATED_FAILED)

    if not _ensure_profile(result, sessions, reconciler, verifier):
        return FederatedLoginResult(success=False, error=FEDERATED_FAILED)

    return FederatedLoginResult(success=True)


@router.post("/session", response_model=SessionOut)
def establish_session(
    payload: IdTokenIn,
    sessions: SessionManager = Depends(get_session_manager),
):
    """Start (or fully re-establish) a session from a fresh ID token."""
    result = sessions.establish_session(payload.id_token)
    return SessionOut(success=result.success, subject_id=result.subject_id, error=result.error)


@router.post("/logout")
def logout(
    request: Request,
    verifier: CredentialVerifier = Depends(get_credential_verifier),
):
    response = RedirectResponse(settings.LANDING_PATH, status_code=303)
    SessionManager(verifier, CookieStore(request, response)).terminate_session()
    return response


@router.get("/me", response_model=CurrentUserOut)
def me(
    response: Response,
    sessions: SessionManager = Depends(get_session_manager),
    directory: UserDirectory = Depends(get_user_directory),
):
    identity = sessions.current_subject()
    if identity is None:
        return _unauthorized(response)

    user = directory.find_by_id(identity.subject_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User record not found")

    return CurrentUserOut(id=user.id, email=user.email, name=user.name)
