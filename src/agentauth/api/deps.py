# Shared FastAPI dependencies for the API layer.
# Created: 2026-02-20
#
# Services are built once per app by create_api_app() and read back from
# ``app.state.services``; handlers never reach for module-level instances.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request
from fastapi.responses import JSONResponse

from agentauth.config import Settings
from agentauth.oauth.clients import ClientRegistry
from agentauth.oauth.consents import ConnectionManager
from agentauth.oauth.errors import INVALID_REQUEST, OAuthError
from agentauth.oauth.flow import AuthorizationFlow
from agentauth.oauth.metadata import resolve_base_url
from agentauth.oauth.models import SessionUser
from agentauth.oauth.principals import (
    CookieSessionResolver,
    InMemoryRoleDirectory,
    RoleLookup,
    SessionResolver,
)
from agentauth.oauth.storage import OAuthStorage
from agentauth.oauth.tokens import TokenIssuer, TokenLifetimes, TokenVerifier
from agentauth.security.audit import AuditLogger
from agentauth.security.rate_limiter import RateLimiter
from agentauth.tools.registry import ToolGate, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, wired for one application."""

    settings: Settings
    storage: OAuthStorage
    audit: AuditLogger
    roles: RoleLookup
    session_resolver: SessionResolver
    clients: ClientRegistry
    issuer: TokenIssuer
    verifier: TokenVerifier
    flow: AuthorizationFlow
    connections: ConnectionManager
    tools: ToolRegistry
    tool_gate: ToolGate
    authorize_limiter: RateLimiter
    token_limiter: RateLimiter


def build_services(
    settings: Settings,
    *,
    storage: OAuthStorage | None = None,
    audit: AuditLogger | None = None,
    roles: RoleLookup | None = None,
    session_resolver: SessionResolver | None = None,
    tool_registry: ToolRegistry | None = None,
) -> Services:
    storage = storage or OAuthStorage(settings.resolved_database_path())
    audit = audit or AuditLogger(settings.resolved_audit_log_path())
    roles = roles if roles is not None else InMemoryRoleDirectory()
    session_resolver = session_resolver or CookieSessionResolver(
        settings.session_secret, settings.session_cookie_name
    )
    tools = tool_registry if tool_registry is not None else ToolRegistry()

    lifetimes = TokenLifetimes(
        access=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh=timedelta(seconds=settings.refresh_token_ttl_seconds),
        code=timedelta(seconds=settings.auth_code_ttl_seconds),
    )
    clients = ClientRegistry(storage, audit)
    issuer = TokenIssuer(storage, audit, lifetimes)
    verifier = TokenVerifier(storage)
    flow = AuthorizationFlow(clients, storage, issuer, roles, audit, web_url=settings.web_url)

    return Services(
        settings=settings,
        storage=storage,
        audit=audit,
        roles=roles,
        session_resolver=session_resolver,
        clients=clients,
        issuer=issuer,
        verifier=verifier,
        flow=flow,
        connections=ConnectionManager(storage, audit),
        tools=tools,
        tool_gate=ToolGate(verifier, roles, tools, audit),
        # 30/min sustained, bursts of 10
        authorize_limiter=RateLimiter(rate=0.5, capacity=10),
        # 60/min sustained, bursts of 20
        token_limiter=RateLimiter(rate=1.0, capacity=20),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_base_url(request: Request) -> str:
    return resolve_base_url(request, get_services(request).settings.public_base_url)


def get_current_user(request: Request) -> SessionUser | None:
    return get_services(request).session_resolver(request)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def oauth_error_response(
    error: OAuthError, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


def check_rate_limit(limiter: RateLimiter, request: Request) -> JSONResponse | None:
    """Return a 429 response when *request*'s IP has exhausted its bucket."""
    info = limiter.check(client_ip(request))
    if info.allowed:
        return None
    logger.warning("Rate limit hit on %s from %s", request.url.path, client_ip(request))
    return oauth_error_response(
        OAuthError(INVALID_REQUEST, "Too many requests", 429), headers=info.headers()
    )
