from __future__ import annotations

import re
from typing import List

from session_auth.core.config import settings

COMMON_WEAK_PASSWORDS = {
    "password",
    "password1",
    "password123",
    "password123!",
    "123456",
    "123456789",
    "12345678",
    "qwerty",
    "qwerty123",
    "abc123",
    "letmein",
    "111111",
    "iloveyou",
    "admin",
    "welcome",
    "welcome1!",
    "monkey",
    "dragon",
    "football",
    "baseball",
    "123123",
    "zaq12wsx",
    "trustno1",
    "passw0rd",
    "p@ssw0rd",
    "sunshine",
    "princess",
    "login",
    "whatever",
}

_LETTER_RE = re.compile(r"[A-Za-z]")
_NUMBER_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")

VIOLATION_MESSAGES = {
    "min_length": "Be at least {min_length} characters long.",
    "letter": "Contain at least one letter.",
    "number": "Contain at least one number.",
    "special_char": "Contain at least one special character.",
    "denylist_common": "Not be a commonly used password.",
}


def min_password_length() -> int:
    return max(int(getattr(settings, "PASSWORD_MIN_LENGTH", 8) or 0), 1)


def evaluate_password(password: str) -> List[str]:
    """
    Returns a list of violation codes if the password does not meet policy.
    """
    pw = password or ""
    violations: list[str] = []

    if len(pw) < min_password_length():
        violations.append("min_length")
    if not _LETTER_RE.search(pw):
        violations.append("letter")
    if not _NUMBER_RE.search(pw):
        violations.append("number")
    if not _SPECIAL_RE.search(pw):
        violations.append("special_char")
    if pw.lower() in COMMON_WEAK_PASSWORDS:
        violations.append("denylist_common")

    return violations


def describe_violations(violations: List[str]) -> List[str]:
    """Turn violation codes into user-facing messages, in policy order."""
    min_length = min_password_length()
    return [VIOLATION_MESSAGES[v].format(min_length=min_length) for v in violations if v in VIOLATION_MESSAGES]
