# Dynamic client registration (RFC 7591 subset) and redirect validation.
# Created: 2026-02-20
#
# Only public clients are supported: token_endpoint_auth_method=none and
# PKCE on every authorization. Redirect URIs are compared by exact string.

from __future__ import annotations

import logging
import secrets
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, ValidationError

from agentauth.oauth.errors import (
    INVALID_CLIENT,
    INVALID_CLIENT_METADATA,
    INVALID_REDIRECT_URI,
    INVALID_REQUEST,
    OAuthError,
    OAuthResult,
)
from agentauth.oauth.models import OAuthClient, utcnow
from agentauth.oauth.storage import OAuthStorage
from agentauth.security.audit import AuditLogger

logger = logging.getLogger(__name__)

_CLIENT_ID_PREFIX = "agc_"
SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_RESPONSE_TYPES = ("code",)


class ClientRegistrationPayload(BaseModel):
    """Registration metadata accepted from clients; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    client_name: str | None = None
    redirect_uris: list[str] | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None
    scope: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    tos_uri: str | None = None
    policy_uri: str | None = None


def _redirect_uri_problem(uri: str) -> str | None:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return f"redirect_uri is not a valid URL: {uri}"
    if not parts.scheme:
        return f"redirect_uri must be absolute: {uri}"
    if parts.fragment or uri.endswith("#"):
        return f"redirect_uri must not contain a fragment: {uri}"
    if parts.scheme in ("http", "https") and not parts.netloc:
        return f"redirect_uri is missing a host: {uri}"
    return None


def client_metadata(client: OAuthClient) -> dict[str, Any]:
    """Registration response body (RFC 7591 §3.2.1)."""
    body: dict[str, Any] = {
        "client_id": client.client_id,
        "client_id_issued_at": int(client.created_at.timestamp()),
        "client_name": client.client_name,
        "redirect_uris": client.redirect_uris,
        "grant_types": client.grant_types,
        "response_types": client.response_types,
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    for key in ("scope", "client_uri", "logo_uri", "tos_uri", "policy_uri"):
        value = getattr(client, key)
        if value:
            body[key] = value
    return body


class ClientRegistry:
    """Registers OAuth clients and checks authorize-time redirects."""

    def __init__(self, storage: OAuthStorage, audit: AuditLogger):
        self.storage = storage
        self.audit = audit

    def register_client(self, payload: Any) -> OAuthResult[OAuthClient]:
        if not isinstance(payload, dict):
            return None, OAuthError(INVALID_CLIENT_METADATA, "Registration body must be a JSON object")
        try:
            data = ClientRegistrationPayload.model_validate(payload)
        except ValidationError as exc:
            field_name = ".".join(str(p) for p in exc.errors()[0]["loc"])
            return None, OAuthError(INVALID_CLIENT_METADATA, f"Invalid value for {field_name}")

        client_name = (data.client_name or "").strip()
        if not client_name:
            return None, OAuthError(INVALID_CLIENT_METADATA, "client_name is required")

        if not data.redirect_uris:
            return None, OAuthError(
                INVALID_REDIRECT_URI, "redirect_uris must contain at least one URI"
            )
        for uri in data.redirect_uris:
            problem = _redirect_uri_problem(uri)
            if problem:
                return None, OAuthError(INVALID_REDIRECT_URI, problem)

        if (data.token_endpoint_auth_method or "none") != "none":
            return None, OAuthError(
                INVALID_CLIENT_METADATA, "Only token_endpoint_auth_method=none is supported"
            )
        if data.grant_types is not None and not set(data.grant_types) <= set(
            SUPPORTED_GRANT_TYPES
        ):
            return None, OAuthError(INVALID_CLIENT_METADATA, "Unsupported grant_types requested")
        if data.response_types is not None and not set(data.response_types) <= set(
            SUPPORTED_RESPONSE_TYPES
        ):
            return None, OAuthError(
                INVALID_CLIENT_METADATA, "Unsupported response_types requested"
            )

        client = OAuthClient(
            id=0,
            client_id=f"{_CLIENT_ID_PREFIX}{secrets.token_urlsafe(24)}",
            client_name=client_name,
            redirect_uris=list(dict.fromkeys(data.redirect_uris)),
            grant_types=data.grant_types or list(SUPPORTED_GRANT_TYPES),
            response_types=data.response_types or list(SUPPORTED_RESPONSE_TYPES),
            scope=data.scope,
            client_uri=data.client_uri,
            logo_uri=data.logo_uri,
            tos_uri=data.tos_uri,
            policy_uri=data.policy_uri,
            created_at=utcnow(),
        )
        client = self.storage.create_client(client)
        logger.info("Registered OAuth client %s (%s)", client.client_id, client.client_name)
        self.audit.log_oauth_event(
            action="client_registered",
            actor=f"client:{client.client_id}",
            target=f"client:{client.client_id}",
            client_name=client.client_name,
            redirect_uris=client.redirect_uris,
        )
        return client, None

    def validate_client_redirect(self, client_id: str, redirect_uri: str) -> OAuthResult[OAuthClient]:
        client = self.storage.get_client(client_id)
        if client is None:
            return None, OAuthError(INVALID_CLIENT, "Unknown client_id", 401)
        if redirect_uri not in client.redirect_uris:
            return None, OAuthError(
                INVALID_REQUEST, "redirect_uri is not registered for this client"
            )
        return client, None
