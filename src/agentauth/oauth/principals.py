# Collaborators that identify people: workspace roles and the signed-in user.
# Created: 2026-02-20
#
# Both are owned by the host application. The protocols below are what the
# authorization server calls; the in-memory and cookie implementations back
# the standalone server and the tests.

from __future__ import annotations

import logging
from typing import Protocol

from starlette.requests import Request

from agentauth.oauth.models import SessionUser
from agentauth.security.session_tokens import verify_session_token

logger = logging.getLogger(__name__)


class RoleLookup(Protocol):
    """Resolves a user's role in a workspace (owner/admin/member) or None."""

    def get_role(self, workspace_id: str, user_id: str) -> str | None: ...


class SessionResolver(Protocol):
    """Resolves the human signed in on *request*, or None."""

    def __call__(self, request: Request) -> SessionUser | None: ...


class InMemoryRoleDirectory:
    """Workspace membership table kept in a dict."""

    def __init__(self, memberships: dict[tuple[str, str], str] | None = None):
        # (workspace_id, user_id) -> role
        self._roles: dict[tuple[str, str], str] = dict(memberships or {})

    def set_role(self, workspace_id: str, user_id: str, role: str) -> None:
        self._roles[(workspace_id, user_id)] = role

    def remove(self, workspace_id: str, user_id: str) -> None:
        self._roles.pop((workspace_id, user_id), None)

    def get_role(self, workspace_id: str, user_id: str) -> str | None:
        return self._roles.get((workspace_id, user_id))


class CookieSessionResolver:
    """Reads the HMAC-signed session cookie issued by the web app."""

    def __init__(self, secret: str, cookie_name: str = "agentauth_session"):
        self._secret = secret
        self._cookie_name = cookie_name

    def __call__(self, request: Request) -> SessionUser | None:
        token = request.cookies.get(self._cookie_name)
        if not token:
            return None
        user_id = verify_session_token(token, self._secret)
        if user_id is None:
            logger.debug("Ignoring invalid or expired session cookie")
            return None
        return SessionUser(id=user_id)
