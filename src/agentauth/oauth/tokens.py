# Token issuance (code exchange, refresh, revocation) and bearer verification.
# Created: 2026-02-20
#
# Tokens are opaque random strings. Storage keeps only a sha256 hash and a
# short lookup prefix; candidates found by prefix are compared in constant
# time.

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from agentauth.oauth.errors import (
    ACCESS_DENIED,
    INVALID_CLIENT,
    INVALID_GRANT,
    INVALID_REQUEST,
    INVALID_SCOPE,
    INVALID_TOKEN,
    OAuthError,
    OAuthResult,
)
from agentauth.oauth.metadata import build_www_authenticate_header
from agentauth.oauth.models import AuthContext, NewToken, TokenRecord, utcnow
from agentauth.oauth.pkce import verify_code_challenge
from agentauth.oauth.scopes import ScopeGrant, is_authorizing_role, validate_requested_scopes
from agentauth.oauth.storage import OAuthStorage
from agentauth.security.audit import AuditLogger

logger = logging.getLogger(__name__)

ACCESS_TOKEN_PREFIX = "agat_"
REFRESH_TOKEN_PREFIX = "agrt_"
_LOOKUP_PREFIX_LENGTH = 12


def hash_secret(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


@dataclass(frozen=True)
class TokenLifetimes:
    access: timedelta = timedelta(minutes=15)
    refresh: timedelta = timedelta(days=30)
    code: timedelta = timedelta(minutes=5)


def _mint(prefix: str, scope: str, expires_at: datetime) -> tuple[str, NewToken]:
    plaintext = f"{prefix}{secrets.token_urlsafe(32)}"
    return plaintext, NewToken(
        token_hash=hash_secret(plaintext),
        token_prefix=plaintext[:_LOOKUP_PREFIX_LENGTH],
        scope=scope,
        expires_at=expires_at,
    )


def _match(candidates: list[TokenRecord], plaintext: str) -> TokenRecord | None:
    wanted = hash_secret(plaintext).encode()
    found = None
    for record in candidates:
        if hmac.compare_digest(record.token_hash.encode(), wanted):
            found = record
    return found


class TokenIssuer:
    """Exchanges codes for tokens, refreshes and revokes them."""

    def __init__(
        self,
        storage: OAuthStorage,
        audit: AuditLogger,
        lifetimes: TokenLifetimes | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.audit = audit
        self.lifetimes = lifetimes or TokenLifetimes()
        self._clock = clock

    def _find_access(self, token: str) -> TokenRecord | None:
        return _match(self.storage.find_access_tokens(token[:_LOOKUP_PREFIX_LENGTH]), token)

    def _find_refresh(self, token: str) -> TokenRecord | None:
        return _match(self.storage.find_refresh_tokens(token[:_LOOKUP_PREFIX_LENGTH]), token)

    def issue_authorization_code(
        self,
        client_pk: int,
        user_id: str,
        redirect_uri: str,
        grant: ScopeGrant,
        code_challenge: str,
        code_challenge_method: str,
    ) -> str:
        """Persist a fresh code bound to the approved grant and PKCE challenge."""
        now = self._clock()
        code = secrets.token_urlsafe(32)
        self.storage.store_code(
            code_hash=hash_secret(code),
            client_pk=client_pk,
            user_id=user_id,
            workspace_id=grant.workspace_id,
            redirect_uri=redirect_uri,
            grant=grant,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            expires_at=now + self.lifetimes.code,
            now=now,
        )
        return code

    def exchange_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> OAuthResult[dict[str, Any]]:
        """Redeem an authorization code for an access/refresh token pair."""
        if not (code and client_id and redirect_uri and code_verifier):
            return None, OAuthError(
                INVALID_REQUEST, "code, client_id, redirect_uri, and code_verifier are required"
            )

        now = self._clock()
        auth_code = self.storage.get_code(hash_secret(code))
        if auth_code is None:
            return None, OAuthError(INVALID_GRANT, "Authorization code is invalid")
        if auth_code.consumed_at is not None:
            logger.warning("Replay of consumed authorization code %d", auth_code.id)
            return None, OAuthError(INVALID_GRANT, "Authorization code has already been used")
        if auth_code.expires_at <= now:
            return None, OAuthError(INVALID_GRANT, "Authorization code has expired")

        client = self.storage.get_client(client_id)
        if client is None:
            return None, OAuthError(INVALID_CLIENT, "Unknown client_id", 401)
        if client.id != auth_code.client_pk:
            return None, OAuthError(INVALID_GRANT, "Authorization code was issued to another client")
        if auth_code.redirect_uri != redirect_uri:
            return None, OAuthError(INVALID_GRANT, "redirect_uri mismatch")
        if not verify_code_challenge(code_verifier, auth_code.code_challenge):
            return None, OAuthError(INVALID_GRANT, "Invalid code_verifier")

        scope = auth_code.grant.scope_string
        access_token, access = _mint(ACCESS_TOKEN_PREFIX, scope, now + self.lifetimes.access)
        refresh_token, refresh = _mint(REFRESH_TOKEN_PREFIX, scope, now + self.lifetimes.refresh)

        if not self.storage.redeem_code(auth_code.id, access, refresh, now):
            logger.warning("Lost redemption race for authorization code %d", auth_code.id)
            return None, OAuthError(INVALID_GRANT, "Authorization code has already been used")

        self.audit.log_oauth_event(
            action="code_exchanged",
            actor=f"client:{client.client_id}",
            target=f"workspace:{auth_code.workspace_id}",
            user_id=auth_code.user_id,
            scope=scope,
        )
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": int(self.lifetimes.access.total_seconds()),
            "refresh_token": refresh_token,
            "scope": scope,
        }, None

    def refresh_access_token(
        self,
        refresh_token: str,
        client_id: str,
        scope: str | None = None,
    ) -> OAuthResult[dict[str, Any]]:
        """Mint a new access token from a stable refresh token.

        A ``scope`` narrower than the refresh token's grant applies to the new
        access token only; it can never add tools.
        """
        if not (refresh_token and client_id):
            return None, OAuthError(INVALID_REQUEST, "refresh_token and client_id are required")

        now = self._clock()
        record = self._find_refresh(refresh_token)
        if record is None:
            return None, OAuthError(INVALID_GRANT, "Invalid refresh token")
        if record.revoked_at is not None:
            return None, OAuthError(INVALID_GRANT, "Refresh token has been revoked")
        if record.expires_at <= now:
            return None, OAuthError(INVALID_GRANT, "Refresh token has expired")

        client = self.storage.get_client(client_id)
        if client is None:
            return None, OAuthError(INVALID_CLIENT, "Unknown client_id", 401)
        if client.id != record.client_pk:
            return None, OAuthError(INVALID_GRANT, "Refresh token was issued to another client")

        granted, error = validate_requested_scopes(record.scope)
        if error is not None:
            logger.error("Refresh token %d carries an unparseable scope", record.id)
            return None, OAuthError(INVALID_GRANT, "Refresh token scope is no longer valid")

        next_grant = granted
        if scope:
            requested, error = validate_requested_scopes(scope)
            if error is not None:
                return None, error
            if not granted.covers(requested):
                return None, OAuthError(
                    INVALID_SCOPE, "Requested scope must be a subset of granted scopes"
                )
            next_grant = requested

        access_token, access = _mint(
            ACCESS_TOKEN_PREFIX, next_grant.scope_string, now + self.lifetimes.access
        )
        if self.storage.rotate_access_token(record, access, now) is None:
            return None, OAuthError(INVALID_GRANT, "Refresh token is no longer valid")

        self.audit.log_oauth_event(
            action="token_refreshed",
            actor=f"client:{client.client_id}",
            target=f"workspace:{record.workspace_id}",
            user_id=record.user_id,
            scope=next_grant.scope_string,
        )
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": int(self.lifetimes.access.total_seconds()),
            "scope": next_grant.scope_string,
        }, None

    def revoke_token(
        self,
        token: str,
        client_id: str | None = None,
        token_type_hint: str | None = None,
    ) -> None:
        """Revoke an access or refresh token (RFC 7009).

        Always succeeds from the caller's point of view: unknown, foreign and
        already-revoked tokens are silently ignored.
        """
        if not token:
            return
        now = self._clock()

        def owned(record: TokenRecord) -> bool:
            if client_id is None:
                return True
            client = self.storage.get_client(client_id)
            return client is not None and client.id == record.client_pk

        def try_access() -> bool:
            record = self._find_access(token)
            if record is None or not owned(record):
                return False
            self.storage.revoke_access_token(record.id, now)
            return True

        def try_refresh() -> bool:
            record = self._find_refresh(token)
            if record is None or not owned(record):
                return False
            self.storage.revoke_refresh_token(record.id, now)
            return True

        order = (try_refresh, try_access) if token_type_hint == "refresh_token" else (
            try_access,
            try_refresh,
        )
        for attempt in order:
            if attempt():
                self.audit.log_oauth_event(
                    action="token_revoked",
                    actor=f"client:{client_id or 'unknown'}",
                    target=attempt.__name__.removeprefix("try_"),
                )
                return


class TokenVerifier:
    """Resolves bearer tokens and gates individual tool calls."""

    def __init__(self, storage: OAuthStorage, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self._clock = clock

    def authenticate_access_token(self, token: str | None) -> OAuthResult[AuthContext]:
        if not token:
            return None, OAuthError(INVALID_TOKEN, "Access token is required", 401)

        record = _match(self.storage.find_access_tokens(token[:_LOOKUP_PREFIX_LENGTH]), token)
        if record is None or not record.is_active(self._clock()):
            return None, OAuthError(INVALID_TOKEN, "Access token is invalid or expired", 401)

        grant, error = validate_requested_scopes(record.scope)
        if error is not None:
            return None, OAuthError(INVALID_TOKEN, "Token includes unsupported scopes", 401)
        if grant.workspace_id != record.workspace_id:
            return None, OAuthError(
                INVALID_TOKEN, "Token workspace scope does not match token binding", 401
            )

        client = self.storage.get_client_by_pk(record.client_pk)
        if client is None:
            return None, OAuthError(INVALID_TOKEN, "Token client no longer exists", 401)

        return AuthContext(
            access_token_id=record.id,
            user_id=record.user_id,
            workspace_id=grant.workspace_id,
            client_id=client.client_id,
            grant=grant,
        ), None

    @staticmethod
    def ensure_tool_allowed(context: AuthContext, tool_name: str) -> OAuthError | None:
        if tool_name not in context.tool_permissions:
            return OAuthError(INVALID_SCOPE, f"Token is missing scope for tool: {tool_name}", 403)
        return None

    @staticmethod
    def ensure_admin_role(role: str | None) -> OAuthError | None:
        if not is_authorizing_role(role):
            return OAuthError(
                ACCESS_DENIED, "Only workspace owners and admins can authorize agent access", 403
            )
        return None

    @staticmethod
    def build_www_authenticate_header(base_url: str, error: OAuthError | None = None) -> str:
        if error is None:
            return build_www_authenticate_header(base_url)
        return build_www_authenticate_header(base_url, error.error, error.description)
