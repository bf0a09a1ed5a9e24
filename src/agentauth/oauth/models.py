# OAuth2 data models.
# Created: 2026-02-20

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from agentauth.oauth.scopes import ScopeGrant


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class OAuthClient:
    """Dynamically registered public OAuth2 client."""

    id: int
    client_id: str
    client_name: str
    redirect_uris: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: list[str] = field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "none"
    scope: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    tos_uri: str | None = None
    policy_uri: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Consent:
    """Standing approval of tool scopes for one (user, workspace, client)."""

    id: int
    user_id: str
    workspace_id: str
    client_pk: int
    grant: ScopeGrant
    granted_by_role: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code (hash only)."""

    id: int
    code_hash: str
    client_pk: int
    user_id: str
    workspace_id: str
    redirect_uri: str
    grant: ScopeGrant
    code_challenge: str
    code_challenge_method: str
    expires_at: datetime
    consumed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TokenRecord:
    """Persisted access or refresh token (hash + lookup prefix, never plaintext)."""

    id: int
    token_hash: str
    token_prefix: str
    client_pk: int
    user_id: str
    workspace_id: str
    scope: str
    expires_at: datetime
    revoked_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    # Refresh tokens point at the access token they currently back
    access_token_id: int | None = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass
class NewToken:
    """Token row to insert; ids are assigned by storage."""

    token_hash: str
    token_prefix: str
    scope: str
    expires_at: datetime


@dataclass
class AuthContext:
    """Resolved bearer token, handed to the tool-execution layer."""

    access_token_id: int
    user_id: str
    workspace_id: str
    client_id: str
    grant: ScopeGrant

    @property
    def tool_permissions(self) -> frozenset[str]:
        return self.grant.tool_names


@dataclass
class Connection:
    """A consent as shown to workspace admins."""

    consent_id: int
    workspace_id: str
    client_id: str
    client_name: str
    granted_by_user_id: str
    granted_by_role: str
    tool_scopes: list[str]
    created_at: datetime
    updated_at: datetime
    last_activity_at: datetime | None = None


@dataclass
class SessionUser:
    """The signed-in human approving consent."""

    id: str
    email: str | None = None
    name: str | None = None
