from __future__ import annotations

import re
from typing import Optional

from session_auth.core.password_policy import describe_violations, evaluate_password
from session_auth.schemas.auth import LoginForm, RegisterForm

FieldErrors = dict[str, list[str]]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def _email_errors(email: str) -> list[str]:
    if not email or not _EMAIL_RE.match(email):
        return ["Please enter a valid email."]
    return []


def _add(errors: FieldErrors, field: str, messages: list[str]) -> None:
    if messages:
        errors.setdefault(field, []).extend(messages)


def validate_registration(
    *,
    name: str | None,
    email: str | None,
    password: str | None,
    confirm_password: str | None,
) -> tuple[Optional[RegisterForm], FieldErrors]:
    """Return the cleaned form, or None plus field -> messages."""
    errors: FieldErrors = {}
    clean_name = (name or "").strip()
    clean_email = normalize_email(email)
    password = password or ""

    if clean_name and len(clean_name) < NAME_MIN_LENGTH:
        _add(errors, "name", [f"Name must be at least {NAME_MIN_LENGTH} characters long."])
    elif len(clean_name) > NAME_MAX_LENGTH:
        _add(errors, "name", [f"Name must be at most {NAME_MAX_LENGTH} characters long."])

    _add(errors, "email", _email_errors(clean_email))
    _add(errors, "password", describe_violations(evaluate_password(password)))

    if password != (confirm_password or ""):
        _add(errors, "confirmPassword", ["Passwords do not match."])

    if errors:
        return None, errors
    return RegisterForm(name=clean_name or None, email=clean_email, password=password), errors


def validate_login(*, email: str | None, password: str | None) -> tuple[Optional[LoginForm], FieldErrors]:
    errors: FieldErrors = {}
    clean_email = normalize_email(email)

    _add(errors, "email", _email_errors(clean_email))
    if not password:
        _add(errors, "password", ["Password is required."])

    if errors:
        return None, errors
    return LoginForm(email=clean_email, password=password), errors
