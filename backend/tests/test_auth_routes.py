from __future__ import annotations

import pytest

from session_auth.models.user import User
from session_auth.services.cognito_client import CognitoClientError

PASSWORD = "Str0ng!Passw0rd"


def _register(client, **overrides):
    form = {
        "name": "Alice Example",
        "email": "alice@example.com",
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
    }
    form.update(overrides)
    return client.post("/auth/register", data=form)


def _login(client, email="bob@example.com", password=PASSWORD):
    return client.post("/auth/login", data={"email": email, "password": password})


@pytest.fixture()
def bob(cognito, db_session):
    """Existing account: provider user plus local record."""
    sub = cognito.add_user("bob@example.com", PASSWORD, name="Bob")
    db_session.add(User(id=sub, email="bob@example.com", name="Bob"))
    db_session.commit()
    return sub


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def test_register_creates_account_and_session(client, cognito, db_session):
    resp = _register(client)

    assert resp.status_code == 200
    assert resp.json() == {"errors": {}, "email": "", "name": "", "generalError": "", "success": True}

    (sub,) = cognito.users
    assert cognito.users[sub]["confirmed"] is True
    user = db_session.get(User, sub)
    assert user.email == "alice@example.com"
    assert user.name == "Alice Example"

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json() == {"id": sub, "email": "alice@example.com", "name": "Alice Example"}


def test_register_then_register_again(client):
    first = _register(client, name="", email="a@x.com", password="Secret123!", confirmPassword="Secret123!")
    assert first.json()["success"] is True
    assert first.json()["errors"] == {}
    assert "session" in client.cookies

    client.cookies.clear()
    second = _register(client, name="", email="a@x.com", password="Secret123!", confirmPassword="Secret123!")
    assert second.json()["success"] is False
    assert second.json()["errors"]["email"] == ["This email is already registered. Please try logging in."]


def test_register_without_name_uses_email_local_part(client, db_session):
    resp = _register(client, name="")

    assert resp.json()["success"] is True
    assert db_session.query(User).one().name == "alice"


def test_register_reports_every_field_error(client, cognito):
    resp = _register(client, name="A", email="not-an-email", password="short", confirmPassword="other")

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is False
    assert body["generalError"] == "Registration failed. Please try again later."
    assert body["errors"]["name"] == ["Name must be at least 2 characters long."]
    assert body["errors"]["email"] == ["Please enter a valid email."]
    assert "Be at least 8 characters long." in body["errors"]["password"]
    assert "Contain at least one number." in body["errors"]["password"]
    assert body["errors"]["confirmPassword"] == ["Passwords do not match."]
    assert body["email"] == "not-an-email"
    assert body["name"] == "A"
    assert cognito.users == {}


def test_register_common_password_is_rejected(client):
    resp = _register(client, password="P@ssw0rd", confirmPassword="P@ssw0rd")

    assert resp.json()["errors"]["password"] == ["Not be a commonly used password."]


def test_register_duplicate_email(client, cognito):
    cognito.add_user("alice@example.com")

    resp = _register(client)

    body = resp.json()
    assert body["success"] is False
    assert body["errors"] == {"email": ["This email is already registered. Please try logging in."]}
    assert body["email"] == "alice@example.com"
    assert "session" not in client.cookies


def test_register_provider_outage(client, cognito, db_session):
    cognito.unavailable = True

    resp = _register(client)

    body = resp.json()
    assert body["success"] is False
    assert body["generalError"] == "Registration failed. Please try again later."
    assert db_session.query(User).count() == 0


def test_register_rolls_back_new_record_when_session_fails(client, cognito, db_session, monkeypatch):
    def _provider_down(subject_id):
        raise CognitoClientError("ProviderUnavailable", "timeout")

    # Sign-up and sign-in succeed; minting the session credential cannot reach the provider.
    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_get_user", _provider_down)

    resp = _register(client)

    body = resp.json()
    assert body["success"] is False
    assert body["generalError"] == "Registration failed. Please try again later."
    assert len(cognito.users) == 1
    assert db_session.query(User).count() == 0
    assert "session" not in client.cookies


def test_register_keeps_preexisting_record_when_session_fails(client, cognito, db_session, monkeypatch):
    original_sign_up = cognito.sign_up

    def _sign_up_with_existing_record(email, password, name):
        result = original_sign_up(email, password, name)
        db_session.add(User(id=result["UserSub"], email=email, name="Already Here"))
        db_session.commit()
        return result

    def _provider_down(subject_id):
        raise CognitoClientError("ProviderUnavailable", "timeout")

    monkeypatch.setattr("session_auth.routes.auth.cognito_sign_up", _sign_up_with_existing_record)
    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_get_user", _provider_down)

    resp = _register(client)

    assert resp.json()["success"] is False
    assert db_session.query(User).one().name == "Already Here"


# ---------------------------------------------------------------------------
# Password login
# ---------------------------------------------------------------------------


def test_login_success_sets_session(client, bob):
    resp = _login(client)

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert "session" in client.cookies

    me = client.get("/auth/me")
    assert me.json()["id"] == bob


@pytest.mark.parametrize(
    "email,password",
    [("bob@example.com", "Wr0ng!Password"), ("nobody@example.com", PASSWORD)],
)
def test_login_bad_credentials_share_one_message(client, bob, email, password):
    resp = _login(client, email=email, password=password)

    body = resp.json()
    assert body["success"] is False
    assert body["errors"] == {"password": ["Invalid email or password"]}
    assert body["email"] == email
    assert "session" not in client.cookies


def test_login_invalid_input(client):
    resp = _login(client, email="nope", password="")

    body = resp.json()
    assert body["generalError"] == "Login failed. Please check your credentials."
    assert body["errors"]["email"] == ["Please enter a valid email."]
    assert body["errors"]["password"] == ["Password is required."]


def test_login_challenge_is_not_a_session(client, cognito, bob):
    cognito.challenge = "SOFTWARE_TOKEN_MFA"

    body = _login(client).json()

    assert body["success"] is False
    assert body["generalError"] == "Additional authentication is required to finish signing in."
    assert "session" not in client.cookies


def test_login_provider_outage(client, cognito, bob):
    cognito.unavailable = True

    body = _login(client).json()

    assert body["success"] is False
    assert body["generalError"] == "Login failed. Please try again later."


def test_login_normalizes_email(client, bob):
    assert _login(client, email="  BOB@Example.com ").json()["success"] is True


def test_login_recreates_record_lost_to_registration_rollback(client, cognito, db_session, monkeypatch):
    def _provider_down(username):
        raise CognitoClientError("ProviderUnavailable", "timeout")

    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_get_user", _provider_down)
    assert _register(client).json()["success"] is False
    assert db_session.query(User).count() == 0

    monkeypatch.setattr("session_auth.auth.credentials.cognito_admin_get_user", cognito.admin_get_user)
    again = _register(client).json()
    assert again["errors"] == {"email": ["This email is already registered. Please try logging in."]}

    assert _login(client, email="alice@example.com").json()["success"] is True

    (sub,) = cognito.users
    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json() == {"id": sub, "email": "alice@example.com", "name": "Alice Example"}
    assert db_session.get(User, sub) is not None


def test_login_discards_session_when_record_fails(client, cognito, db_session):
    db_session.add(User(id="sub-someone-else", email="carol@example.com", name="Other"))
    db_session.commit()
    cognito.add_user("carol@example.com", PASSWORD, name="Carol")

    resp = _login(client, email="carol@example.com")

    body = resp.json()
    assert body["success"] is False
    assert body["generalError"] == "Login failed. Please try again later."
    session_headers = [h for h in resp.headers.get_list("set-cookie") if h.startswith("session=")]
    assert "Max-Age=0" in session_headers[-1]
    assert cognito.signed_out == []


# ---------------------------------------------------------------------------
# Federated login / raw session establishment
# ---------------------------------------------------------------------------


def test_federated_login_creates_record(client, cognito, db_session):
    sub = cognito.add_user("gina@example.com", name="Gina")

    resp = client.post("/auth/federated", json={"id_token": cognito.issue_id_token(sub)})

    assert resp.json() == {"success": True, "error": ""}
    assert db_session.get(User, sub).email == "gina@example.com"
    assert client.get("/auth/me").json()["name"] == "Gina"


def test_federated_login_reuses_existing_record(client, cognito, bob, db_session):
    resp = client.post("/auth/federated", json={"id_token": cognito.issue_id_token(bob)})

    assert resp.json()["success"] is True
    assert db_session.query(User).count() == 1


def test_federated_login_falls_back_to_provider_profile(client, cognito, db_session):
    sub = cognito.add_user("hal@example.com", name="Hal")
    token = cognito.issue_id_token(sub)
    cognito.id_tokens[token].pop("email")

    resp = client.post("/auth/federated", json={"id_token": token})

    assert resp.json()["success"] is True
    assert db_session.get(User, sub).email == "hal@example.com"


def test_federated_login_with_provider_username(client, cognito, db_session):
    sub = cognito.add_user("ivy@example.com", name="Ivy", username="Google_1098765")
    token = cognito.issue_id_token(sub)
    cognito.id_tokens[token].pop("email")

    resp = client.post("/auth/federated", json={"id_token": token})

    assert resp.json()["success"] is True
    assert db_session.get(User, sub).email == "ivy@example.com"
    assert client.get("/auth/me").json()["id"] == sub

    logout = client.post("/auth/logout", follow_redirects=False)

    assert logout.status_code == 303
    assert cognito.signed_out == ["Google_1098765"]
    assert cognito.users[sub]["generation"] == 1


def test_federated_login_rejects_bad_token(client):
    resp = client.post("/auth/federated", json={"id_token": "forged"})

    assert resp.json() == {"success": False, "error": "Failed to login with Google. Please try again."}
    assert "session" not in client.cookies


def test_federated_login_discards_session_when_record_fails(client, cognito, db_session):
    # Email already owned by a different local record.
    db_session.add(User(id="sub-someone-else", email="gina@example.com", name="Other"))
    db_session.commit()
    sub = cognito.add_user("gina@example.com", name="Gina")

    resp = client.post("/auth/federated", json={"id_token": cognito.issue_id_token(sub)})

    assert resp.json()["success"] is False
    # Written, then expired again within the same response.
    session_headers = [h for h in resp.headers.get_list("set-cookie") if h.startswith("session=")]
    assert len(session_headers) == 2
    assert "Max-Age=0" in session_headers[-1]
    assert cognito.signed_out == []


def test_establish_session_endpoint(client, cognito, bob):
    resp = client.post("/auth/session", json={"id_token": cognito.issue_id_token(bob)})

    assert resp.json() == {"success": True, "subject_id": bob, "error": None}
    assert "session" in client.cookies


def test_establish_session_endpoint_expired_token(client, cognito, bob):
    resp = client.post("/auth/session", json={"id_token": cognito.issue_id_token(bob, expired=True)})

    body = resp.json()
    assert body["success"] is False
    assert body["subject_id"] is None
    assert body["error"]


def test_establish_session_endpoint_requires_token(client):
    resp = client.post("/auth/session", json={"id_token": ""})

    assert resp.status_code == 422
    assert resp.json()["error"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Logout / current user
# ---------------------------------------------------------------------------


def test_logout_revokes_and_redirects(client, cognito, bob):
    _login(client)
    stolen = client.cookies.get("session")

    resp = client.post("/auth/logout", follow_redirects=False)

    assert resp.status_code == 303
    assert resp.headers["location"] == "/"
    assert "session" not in client.cookies
    assert cognito.signed_out == [bob]

    # A copy of the old credential no longer authenticates.
    client.cookies.set("session", stolen)
    assert client.get("/auth/me").status_code == 401


def test_logout_without_session_still_redirects(client, cognito):
    resp = client.post("/auth/logout", follow_redirects=False)

    assert resp.status_code == 303
    assert cognito.signed_out == []


def test_logout_clears_cookie_when_provider_down(client, cognito, bob):
    _login(client)
    cognito.sign_out_fails = True

    resp = client.post("/auth/logout", follow_redirects=False)

    assert resp.status_code == 303
    assert "session" not in client.cookies


def test_me_requires_session(client):
    resp = client.get("/auth/me")

    assert resp.status_code == 401
    assert resp.json() == {"error": "UNAUTHORIZED", "message": "Not authenticated"}


def test_me_clears_invalid_cookie(client):
    client.cookies.set("session", "garbage")

    resp = client.get("/auth/me")

    assert resp.status_code == 401
    assert "Max-Age=0" in resp.headers["set-cookie"]


def test_me_after_account_disabled(client, cognito, bob):
    _login(client)
    cognito.users[bob]["enabled"] = False

    assert client.get("/auth/me").status_code == 401


def test_me_without_local_record(client, bob, db_session):
    _login(client)
    db_session.delete(db_session.get(User, bob))
    db_session.commit()

    resp = client.get("/auth/me")

    assert resp.status_code == 404
    assert resp.json()["error"] == "NOT_FOUND"
