"""
Pydantic schemas for the session auth entry points.

Form results are envelopes, not errors: expected failures (bad input, wrong
password, duplicate email) come back with ``success=False`` and HTTP 200.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, constr


class RegisterForm(BaseModel):
    name: Optional[str] = None
    email: str
    password: str


class LoginForm(BaseModel):
    email: str
    password: str


class RegisterResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    errors: dict[str, list[str]] = Field(default_factory=dict)
    email: str = ""
    name: str = ""
    general_error: str = Field("", alias="generalError")
    success: bool = False


class LoginResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    errors: dict[str, list[str]] = Field(default_factory=dict)
    email: str = ""
    general_error: str = Field("", alias="generalError")
    success: bool = False


class IdTokenIn(BaseModel):
    id_token: constr(min_length=1) = Field(..., description="Provider-issued ID token")


class FederatedLoginResult(BaseModel):
    success: bool
    error: str = ""


class SessionOut(BaseModel):
    success: bool
    subject_id: Optional[str] = None
    error: Optional[str] = None


class CurrentUserOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
