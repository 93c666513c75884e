from __future__ import annotations

import logging
from enum import Enum

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from session_auth.core.config import settings

logger = logging.getLogger(__name__)

AUTH_PAGES = frozenset(
    [
        "/login",
        "/signup",
    ]
)

PROTECTED_PREFIXES = ("/dashboard",)


class GateDecision(str, Enum):
    ALLOW = "allow"
    REDIRECT_DASHBOARD = "redirect_dashboard"
    REDIRECT_LOGIN = "redirect_login"


def _normalize_path(path: str) -> str:
    path = (path or "/").split("?", 1)[0]
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/") or "/"


def _is_under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def evaluate_navigation(path: str, has_session_cookie: bool) -> GateDecision:
    """
    Presence-only routing decision.

    The cookie's contents are never inspected here; deep verification happens
    once the request reaches the session manager.
    """
    path = _normalize_path(path)

    if has_session_cookie and (path == "/" or any(_is_under(path, page) for page in AUTH_PAGES)):
        return GateDecision.REDIRECT_DASHBOARD

    if not has_session_cookie and any(_is_under(path, prefix) for prefix in PROTECTED_PREFIXES):
        return GateDecision.REDIRECT_LOGIN

    return GateDecision.ALLOW


def register_gatekeeper_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def gatekeeper_middleware(request: Request, call_next):
        # Allow CORS preflight to flow through CORSMiddleware unchanged
        if request.method.upper() == "OPTIONS":
            return await call_next(request)

        has_cookie = bool(request.cookies.get(settings.SESSION_COOKIE_NAME))
        decision = evaluate_navigation(request.url.path, has_cookie)

        if decision is GateDecision.REDIRECT_DASHBOARD:
            return RedirectResponse(settings.DASHBOARD_PATH, status_code=307)
        if decision is GateDecision.REDIRECT_LOGIN:
            logger.debug("Redirecting unauthenticated request for %s", request.url.path)
            return RedirectResponse(settings.LOGIN_PATH, status_code=307)

        return await call_next(request)
