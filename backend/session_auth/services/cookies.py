from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace

from fastapi import Request, Response

from session_auth.core.config import settings

logger = logging.getLogger(__name__)

# Browsers drop cookies whose name=value exceeds this many bytes.
MAX_COOKIE_BYTES = 4096

_COOKIE_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_COOKIE_VALUE_RE = re.compile(r"^[\x21\x23-\x2B\x2D-\x3A\x3C-\x5B\x5D-\x7E]*$")
_SAMESITE_VALUES = {"lax", "strict", "none"}


class CookieWriteError(Exception):
    """Raised when a cookie cannot be written; nothing is placed on the response."""


@dataclass(frozen=True)
class CookieOptions:
    max_age: int | None = None
    path: str = "/"
    httponly: bool = True
    # None means "Secure outside local development".
    secure: bool | None = None
    samesite: str = "strict"
    domain: str | None = None


def cookie_secure() -> bool:
    # Prod => HTTPS => Secure cookies. Dev http://localhost => must be False.
    return settings.is_prod


class CookieStore:
    """
    Read/write/delete cookies for one request/response exchange.

    Reads see writes and deletes made earlier through the same store, so a
    value is never read back from a request that predates it.
    """

    def __init__(self, request: Request, response: Response, *, production: bool | None = None) -> None:
        self.request = request
        self.response = response
        self.production = settings.is_prod if production is None else production
        self._pending: dict[str, str | None] = {}

    def get(self, name: str) -> str | None:
        if name in self._pending:
            return self._pending[name]
        val = self.request.cookies.get(name)
        if not val:
            return None
        val = val.strip()
        return val or None

    def set(self, name: str, value: str, options: CookieOptions | None = None) -> None:
        opts = self._enforce(options or CookieOptions())

        if not _COOKIE_NAME_RE.match(name or ""):
            raise CookieWriteError(f"Invalid cookie name: {name!r}")
        if not value or not _COOKIE_VALUE_RE.match(value):
            raise CookieWriteError(f"Invalid value for cookie {name!r}")
        if len(name.encode("utf-8")) + len(value.encode("utf-8")) + 1 > MAX_COOKIE_BYTES:
            raise CookieWriteError(f"Cookie {name!r} exceeds {MAX_COOKIE_BYTES} bytes")

        self.response.set_cookie(
            key=name,
            value=value,
            max_age=opts.max_age,
            path=opts.path,
            domain=opts.domain,
            secure=bool(opts.secure),
            httponly=opts.httponly,
            samesite=opts.samesite,
        )
        self._pending[name] = value

    def delete(self, name: str, *, path: str = "/", domain: str | None = None) -> None:
        """Expire the cookie. Safe to call when it is already absent."""
        opts = self._enforce(CookieOptions(path=path, domain=domain))
        self.response.delete_cookie(
            key=name,
            path=opts.path,
            domain=opts.domain,
            secure=bool(opts.secure),
            httponly=opts.httponly,
            samesite=opts.samesite,
        )
        self._pending[name] = None

    def _enforce(self, options: CookieOptions) -> CookieOptions:
        secure = cookie_secure() if options.secure is None else options.secure
        samesite = (options.samesite or "strict").strip().lower()
        if samesite not in _SAMESITE_VALUES:
            samesite = "strict"
        resolved = replace(options, secure=secure, samesite=samesite, path=options.path or "/")

        if not self.production:
            return resolved

        forced = replace(resolved, httponly=True, secure=True, samesite="strict")
        if forced != resolved:
            logger.warning(
                "Refusing unsafe cookie flags in production (httponly=%s secure=%s samesite=%s)",
                resolved.httponly,
                resolved.secure,
                resolved.samesite,
            )
        return forced
