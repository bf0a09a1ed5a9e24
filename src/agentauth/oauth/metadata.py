# Discovery documents (RFC 8414, RFC 9728) and the bearer challenge header.
# Created: 2026-02-20

from __future__ import annotations

from typing import Any

from starlette.requests import Request

from agentauth.oauth.pkce import S256
from agentauth.oauth.scopes import supported_scopes

API_PREFIX = "/api/v1"
MCP_RESOURCE_PATH = f"{API_PREFIX}/mcp"
REALM = "agentauth"


def resolve_base_url(request: Request, public_base_url: str | None = None) -> str:
    """Externally visible origin, honouring reverse-proxy headers."""
    if public_base_url:
        return public_base_url.rstrip("/")
    proto = request.headers.get("x-forwarded-proto", "").split(",")[0].strip()
    host = request.headers.get("x-forwarded-host", "").split(",")[0].strip()
    scheme = proto or request.url.scheme
    netloc = host or request.headers.get("host") or request.url.netloc
    return f"{scheme}://{netloc}"


def authorization_server_metadata(base_url: str) -> dict[str, Any]:
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}{API_PREFIX}/oauth/authorize",
        "token_endpoint": f"{base_url}{API_PREFIX}/oauth/token",
        "registration_endpoint": f"{base_url}{API_PREFIX}/oauth/register",
        "revocation_endpoint": f"{base_url}{API_PREFIX}/oauth/revoke",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["none"],
        "revocation_endpoint_auth_methods_supported": ["none"],
        "code_challenge_methods_supported": [S256],
        "scopes_supported": supported_scopes(),
    }


def protected_resource_metadata(base_url: str, resource_path: str = MCP_RESOURCE_PATH) -> dict[str, Any]:
    return {
        "resource": f"{base_url}/{resource_path.lstrip('/')}",
        "authorization_servers": [base_url],
        "scopes_supported": supported_scopes(),
        "bearer_methods_supported": ["header"],
        "resource_name": "agentauth workspace tools",
    }


def build_www_authenticate_header(
    base_url: str,
    error: str | None = None,
    description: str | None = None,
) -> str:
    """``WWW-Authenticate`` value pointing clients at the resource metadata."""
    parts = [
        f'realm="{REALM}"',
        f'resource_metadata="{base_url}/.well-known/oauth-protected-resource{MCP_RESOURCE_PATH}"',
    ]
    if error:
        parts.append(f'error="{error}"')
    if description:
        parts.append('error_description="{}"'.format(description.replace('"', "'")))
    return "Bearer " + ", ".join(parts)
