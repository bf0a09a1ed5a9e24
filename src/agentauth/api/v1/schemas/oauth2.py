# OAuth2 schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel

from agentauth.api.v1.schemas.common import APIResponse


class TokenResponse(APIResponse):
    """OAuth2 token response (refresh_token only on code exchange)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None


class ClientRegistrationResponse(APIResponse):
    """RFC 7591 registration response."""

    client_id: str
    client_id_issued_at: int
    client_name: str
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str]
    token_endpoint_auth_method: str
    scope: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    tos_uri: str | None = None
    policy_uri: str | None = None


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 discovery document."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    revocation_endpoint: str
    response_types_supported: list[str]
    grant_types_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    revocation_endpoint_auth_methods_supported: list[str]
    code_challenge_methods_supported: list[str]
    scopes_supported: list[str]
