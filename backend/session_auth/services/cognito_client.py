"""
Wrapper around boto3 Cognito Identity Provider APIs.

Provides a stable, exception-friendly interface for the credential verifier and
the auth routes to call without leaking boto3-specific errors up the stack.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from session_auth.core.config import settings

SESSION_GENERATION_ATTRIBUTE = "custom:session_generation"


class CognitoClientError(Exception):
    """Raised when Cognito returns an error (or cannot be reached)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _require_cognito_client_config(require_user_pool: bool = False) -> None:
    if not settings.COGNITO_REGION:
        raise CognitoClientError("NotConfigured", "COGNITO_REGION is not configured")
    if not settings.COGNITO_APP_CLIENT_ID:
        raise CognitoClientError("NotConfigured", "COGNITO_APP_CLIENT_ID is not configured")
    if require_user_pool and not settings.COGNITO_USER_POOL_ID:
        raise CognitoClientError("NotConfigured", "COGNITO_USER_POOL_ID is not configured")


@lru_cache(maxsize=1)
def _client():
    return boto3.client("cognito-idp", region_name=settings.COGNITO_REGION)


def _get_cognito_client(require_user_pool: bool = False):
    _require_cognito_client_config(require_user_pool=require_user_pool)
    return _client()


def _translate_error(exc: ClientError) -> CognitoClientError:
    error = exc.response.get("Error", {})
    code = error.get("Code", "CognitoClientError")
    message = error.get("Message", str(exc))
    return CognitoClientError(code=code, message=message)


def cognito_sign_up(email: str, password: str, name: str) -> dict:
    """Call Cognito SignUp API."""
    client = _get_cognito_client()
    try:
        return client.sign_up(
            ClientId=settings.COGNITO_APP_CLIENT_ID,
            Username=email,
            Password=password,
            UserAttributes=[
                {"Name": "email", "Value": email},
                {"Name": "name", "Value": name},
            ],
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc


def cognito_admin_confirm_sign_up(email: str) -> None:
    """Confirm a freshly signed-up user server-side so it can sign in immediately."""
    client = _get_cognito_client(require_user_pool=True)
    try:
        client.admin_confirm_sign_up(
            UserPoolId=settings.COGNITO_USER_POOL_ID,
            Username=email,
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc


def cognito_initiate_auth(email: str, password: str) -> dict:
    """Initiate USER_PASSWORD_AUTH flow."""
    client = _get_cognito_client()
    try:
        return client.initiate_auth(
            ClientId=settings.COGNITO_APP_CLIENT_ID,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters={
                "USERNAME": email,
                "PASSWORD": password,
            },
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc


def cognito_admin_get_user(username: str) -> dict[str, Any]:
    """
    Fetch a user's attributes by Cognito username.

    Federated users have usernames like ``Google_<id>``; their ``sub`` is not
    accepted here.

    Returns the attribute map plus ``Username`` and ``Enabled`` keys taken from
    the top-level AdminGetUser response.
    """
    if not username:
        raise ValueError("username is required")

    client = _get_cognito_client(require_user_pool=True)
    try:
        resp = client.admin_get_user(
            UserPoolId=settings.COGNITO_USER_POOL_ID,
            Username=username,
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc

    attributes: dict[str, Any] = {attr["Name"]: attr["Value"] for attr in resp.get("UserAttributes", [])}
    attributes["Username"] = resp.get("Username") or username
    attributes["Enabled"] = bool(resp.get("Enabled", True))
    return attributes


def cognito_admin_set_session_generation(username: str, generation: int) -> None:
    """Store the session revocation generation on the Cognito user."""
    if not username:
        raise ValueError("username is required")

    client = _get_cognito_client(require_user_pool=True)
    try:
        client.admin_update_user_attributes(
            UserPoolId=settings.COGNITO_USER_POOL_ID,
            Username=username,
            UserAttributes=[
                {"Name": SESSION_GENERATION_ATTRIBUTE, "Value": str(int(generation))},
            ],
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc


def cognito_admin_user_global_sign_out(username: str) -> None:
    """Invalidate every Cognito refresh token issued to the user."""
    if not username:
        raise ValueError("username is required")

    client = _get_cognito_client(require_user_pool=True)
    try:
        client.admin_user_global_sign_out(
            UserPoolId=settings.COGNITO_USER_POOL_ID,
            Username=username,
        )
    except ClientError as exc:
        raise _translate_error(exc) from exc
    except BotoCoreError as exc:
        raise CognitoClientError("ProviderUnavailable", str(exc)) from exc
