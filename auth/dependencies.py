"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two places a session token may arrive, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by POST /auth/login for browser clients.

Both converge on AuthService.authenticate(), which verifies the signature and
expiry, insists on an access (not refresh) token and loads the user.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: may import from fastapi because this module is part of the FastAPI
dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import TokenError
from auth.models import User
from auth.service import AuthService

logger = logging.getLogger("authkeep.auth")


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token") or None


def get_auth_service(request: Request) -> AuthService:
    """Return the process-wide AuthService wired in the lifespan."""
    return request.app.state.auth_service


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via Bearer header or cookie.

    Returns the User on success, None on any failure. Never raises.
    """
    token = _extract_token(request)
    if not token:
        return None
    try:
        return get_auth_service(request).authenticate(token)
    except TokenError as exc:
        logger.debug("Session token rejected: %s", type(exc).__name__)
        return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
