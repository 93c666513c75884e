import os
import time

# SESSION_SECRET must exist before importing session_auth.main (it calls require_session_secret() at import time).
os.environ.setdefault("SESSION_SECRET", "test_session_secret_with_enough_length")
os.environ.setdefault("COGNITO_REGION", "us-east-1")
os.environ.setdefault("COGNITO_USER_POOL_ID", "us-east-1_TestPool")
os.environ.setdefault("COGNITO_APP_CLIENT_ID", "test-client-id-abc123")

import itertools
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from session_auth.auth.cognito import CognitoInvalidTokenError, CognitoTokenExpiredError
from session_auth.core.base import Base
from session_auth.core import config as app_config
from session_auth.services.cognito_client import SESSION_GENERATION_ATTRIBUTE, CognitoClientError

# Import models so they register with SQLAlchemy metadata.
from session_auth.models.user import User  # noqa: F401

from session_auth.core.database import get_db


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests with StaticPool; reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "ENV",
        "SESSION_SECRET",
        "SESSION_RECENT_SIGN_IN_SECONDS",
        "PASSWORD_MIN_LENGTH",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


class FakeCognito:
    """
    In-memory stand-in for the Cognito user pool.

    ID tokens are opaque strings mapped to claims; the fake verifier looks
    them up instead of checking signatures.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.id_tokens: dict[str, dict] = {}
        self.expired_tokens: set[str] = set()
        self.unavailable = False
        self.sign_out_fails = False
        self.challenge: str | None = None
        self.signed_out: list[str] = []
        self._counter = itertools.count(1)

    # -- test helpers -------------------------------------------------------

    def add_user(self, email: str, password: str = "Str0ng!Passw0rd", name: str | None = None, **extra) -> str:
        sub = extra.pop("sub", None) or f"sub-{uuid.uuid4().hex[:12]}"
        self.users[sub] = {
            "sub": sub,
            "username": extra.pop("username", None) or sub,
            "email": email.lower(),
            "name": name,
            "password": password,
            "enabled": extra.pop("enabled", True),
            "generation": extra.pop("generation", 0),
            "confirmed": extra.pop("confirmed", True),
        }
        return sub

    def issue_id_token(self, sub: str, *, auth_age: int = 0, expired: bool = False, **claims) -> str:
        user = self.users.get(sub, {})
        now = int(time.time())
        token = f"id-token-{next(self._counter)}"
        payload = {
            "sub": sub,
            "token_use": "id",
            "aud": app_config.settings.COGNITO_APP_CLIENT_ID,
            "iss": app_config.settings.cognito_issuer,
            "auth_time": now - auth_age,
            "iat": now - auth_age,
            "exp": now + 3600,
        }
        if user.get("username"):
            payload["cognito:username"] = user["username"]
        if user.get("email"):
            payload["email"] = user["email"]
        if user.get("name"):
            payload["name"] = user["name"]
        payload.update(claims)
        self.id_tokens[token] = payload
        if expired:
            self.expired_tokens.add(token)
        return token

    def _by_email(self, email: str) -> dict | None:
        for user in self.users.values():
            if user["email"] == email.lower():
                return user
        return None

    def _by_username(self, username: str) -> dict:
        for user in self.users.values():
            if user["username"] == username:
                return user
        raise CognitoClientError("UserNotFoundException", "User does not exist.")

    def _require_available(self) -> None:
        if self.unavailable:
            raise CognitoClientError("ProviderUnavailable", "Cognito unreachable")

    # -- patched entry points -----------------------------------------------

    def verify_id_token(self, token: str) -> dict:
        if token in self.expired_tokens:
            raise CognitoTokenExpiredError("Token has expired")
        claims = self.id_tokens.get(token)
        if claims is None:
            raise CognitoInvalidTokenError("Signature verification failed")
        return dict(claims)

    def sign_up(self, email: str, password: str, name: str) -> dict:
        self._require_available()
        if self._by_email(email) is not None:
            raise CognitoClientError("UsernameExistsException", "An account with the given email already exists.")
        sub = self.add_user(email, password, name, confirmed=False)
        return {"UserSub": sub, "UserConfirmed": False}

    def admin_confirm_sign_up(self, email: str) -> None:
        self._require_available()
        self._by_email(email)["confirmed"] = True

    def initiate_auth(self, email: str, password: str) -> dict:
        self._require_available()
        user = self._by_email(email)
        if user is None:
            raise CognitoClientError("UserNotFoundException", "User does not exist.")
        if user["password"] != password:
            raise CognitoClientError("NotAuthorizedException", "Incorrect username or password.")
        if self.challenge:
            return {"ChallengeName": self.challenge, "Session": "challenge-session"}
        return {"AuthenticationResult": {"IdToken": self.issue_id_token(user["sub"])}}

    def admin_get_user(self, username: str) -> dict:
        self._require_available()
        user = self._by_username(username)
        attrs = {
            "sub": user["sub"],
            "email": user["email"],
            SESSION_GENERATION_ATTRIBUTE: str(user["generation"]),
            "Username": user["username"],
            "Enabled": user["enabled"],
        }
        if user["name"]:
            attrs["name"] = user["name"]
        return attrs

    def set_session_generation(self, username: str, generation: int) -> None:
        self._require_available()
        self._by_username(username)["generation"] = generation

    def global_sign_out(self, username: str) -> None:
        self._require_available()
        if self.sign_out_fails:
            raise CognitoClientError("InternalErrorException", "sign out failed")
        self._by_username(username)
        self.signed_out.append(username)


@pytest.fixture()
def cognito(monkeypatch):
    fake = FakeCognito()

    monkeypatch.setattr("session_auth.auth.credentials.verify_cognito_id_token", fake.verify_id_token)
    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_get_user", fake.admin_get_user)
    monkeypatch.setattr(
        "session_auth.auth.credentials.cognito_admin_set_session_generation", fake.set_session_generation
    )
    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_user_global_sign_out", fake.global_sign_out)

    monkeypatch.setattr("session_auth.routes.auth.cognito_sign_up", fake.sign_up)
    monkeypatch.setattr("session_auth.routes.auth.cognito_admin_confirm_sign_up", fake.admin_confirm_sign_up)
    monkeypatch.setattr("session_auth.routes.auth.cognito_initiate_auth", fake.initiate_auth)
    return fake


@pytest.fixture()
def app(db_session, cognito):
    from session_auth.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c
