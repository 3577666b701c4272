"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The route_guard middleware (api/main.py) resolves the session cookie once per
request and stores the result on request.state.identity. These helpers read
it back so handlers never decode the cookie twice.

try_get_current_identity() is the soft variant (returns None).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from web/ or api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Identity
from auth.service import AuthService
from auth.tokens import SESSION_COOKIE


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state by the lifespan."""
    return request.app.state.auth_service


def try_get_current_identity(request: Request) -> Identity | None:
    """Return the Identity for this request, or None.

    Falls back to resolving the cookie when the guard middleware did not run
    (e.g. a router mounted on a bare app in tests).
    """
    if hasattr(request.state, "identity"):
        return request.state.identity
    identity = get_auth_service(request).resolve_identity(request.cookies.get(SESSION_COOKIE))
    request.state.identity = identity
    return identity


def get_current_identity(request: Request) -> Identity:
    """Require a valid session. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return identity
