"""
Sales Assistant — Session Cookie Middleware
=============================================
Decodes the `user` cookie set by the CRM front end into a SessionUser on
request.state. The cookie is JSON, optionally percent-encoded:
{"id": 12, "name": "Ana", "role": "admin"}.

A missing or malformed cookie yields the anonymous non-admin user (id 0),
whose lead queries are scoped to CODUSUARIO = 0.
"""
from __future__ import annotations

import json
from urllib.parse import unquote

from fastapi import Request
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from models.chat_models import SessionUser
from scripts.lib.logger import setup_logger

logger = setup_logger("api_middleware")

SESSION_COOKIE = "user"


def parse_session_cookie(raw: str | None) -> SessionUser:
    """Decode the session cookie; anything unreadable is the anonymous user."""
    if not raw:
        return SessionUser()
    try:
        data = json.loads(unquote(raw))
        if not isinstance(data, dict):
            raise ValueError("cookie is not a JSON object")
        data = {k: v for k, v in data.items() if v not in (None, "")}
        return SessionUser.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.error("Failed to parse session cookie: %s", e)
        return SessionUser()


class SessionCookieMiddleware(BaseHTTPMiddleware):
    """Attach request.state.user for every request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.user = parse_session_cookie(request.cookies.get(SESSION_COOKIE))
        return await call_next(request)


def current_user(request: Request) -> SessionUser:
    """
    Dependency returning the caller resolved by SessionCookieMiddleware.

    Usage:
        @router.post("/chat")
        async def chat(user: SessionUser = Depends(current_user)): ...
    """
    user = getattr(request.state, "user", None)
    if user is None:
        user = parse_session_cookie(request.cookies.get(SESSION_COOKIE))
    return user
