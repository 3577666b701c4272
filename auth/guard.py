"""
auth/guard.py -- Per-request admission decision.

decide() is a pure function of (users exist?, session username, path). The
HTTP middleware in api/main.py feeds it fresh inputs on every request and
either forwards the request or answers with a redirect. Nothing here is
cached and nothing here raises.

Decision table, first match wins:
  1. No users yet (SETUP_REQUIRED): /setup and the excluded prefixes
     (static assets, API namespace) pass; everything else -> /setup.
  2. Users exist: /setup -> / . A live instance can never be re-registered
     by an anonymous visitor.
  3. No valid session, path not public -> /login.
  4. Valid session, path is /login -> / .
  5. Admit.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

SETUP_PATH = "/setup"
LOGIN_PATH = "/login"
HOME_PATH = "/"

# Reachable without a session once setup is complete.
PUBLIC_PATHS: frozenset[str] = frozenset(
    {LOGIN_PATH, "/api/v1/auth/login", "/api/v1/auth/status", "/api/v1/health"}
)

# Collaborator namespaces reachable while setup is pending.
EXCLUDED_PREFIXES: tuple[str, ...] = ("/static/", "/api/")


class GuardState(str, Enum):
    SETUP_REQUIRED = "setup_required"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    redirect_to: str | None = None

    @property
    def admitted(self) -> bool:
        return self.redirect_to is None


def _is_setup_path(path: str) -> bool:
    return path == SETUP_PATH or path.startswith(SETUP_PATH + "/")


def decide(has_users: bool, username: str | None, path: str) -> GuardDecision:
    """Return the admission decision for one request."""
    if not has_users:
        state = GuardState.SETUP_REQUIRED
        if _is_setup_path(path) or path.startswith(EXCLUDED_PREFIXES):
            return GuardDecision(state)
        return GuardDecision(state, redirect_to=SETUP_PATH)

    state = GuardState.AUTHENTICATED if username else GuardState.UNAUTHENTICATED

    if _is_setup_path(path):
        return GuardDecision(state, redirect_to=HOME_PATH)
    if state is GuardState.UNAUTHENTICATED and path not in PUBLIC_PATHS:
        return GuardDecision(state, redirect_to=LOGIN_PATH)
    if state is GuardState.AUTHENTICATED and path == LOGIN_PATH:
        return GuardDecision(state, redirect_to=HOME_PATH)
    return GuardDecision(state)
