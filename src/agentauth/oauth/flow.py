# Authorization endpoint state machine (GET shows consent, POST decides).
# Created: 2026-02-20
#
# Errors found before client_id/redirect_uri are validated go back to the
# caller as JSON. Once the redirect target is trusted, every failure is a
# redirect carrying error, error_description and state.

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from agentauth.oauth.clients import ClientRegistry
from agentauth.oauth.errors import (
    ACCESS_DENIED,
    INVALID_REQUEST,
    INVALID_SCOPE,
    UNSUPPORTED_RESPONSE_TYPE,
    OAuthError,
    OAuthResult,
)
from agentauth.oauth.models import OAuthClient, SessionUser, utcnow
from agentauth.oauth.pkce import validate_challenge_method
from agentauth.oauth.principals import RoleLookup
from agentauth.oauth.scopes import ScopeGrant, is_authorizing_role, validate_requested_scopes
from agentauth.oauth.storage import OAuthStorage
from agentauth.oauth.tokens import TokenIssuer
from agentauth.security.audit import AuditLogger

logger = logging.getLogger(__name__)

APPROVE = "approve"
DENY = "deny"


@dataclass(frozen=True)
class AuthorizeRequest:
    """Raw authorize parameters, as received on the query string or form."""

    response_type: str = ""
    client_id: str = ""
    redirect_uri: str = ""
    scope: str = ""
    state: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> AuthorizeRequest:
        return cls(**{name: str(params.get(name) or "") for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class ValidatedRequest:
    request: AuthorizeRequest
    client: OAuthClient
    grant: ScopeGrant


@dataclass(frozen=True)
class AuthorizeRedirect:
    """Send the browser to *location* (client callback or login page)."""

    location: str


@dataclass(frozen=True)
class ConsentPrompt:
    """Everything the consent page needs to render and to round-trip."""

    request: AuthorizeRequest
    client: OAuthClient
    grant: ScopeGrant
    user: SessionUser
    role: str
    tool_names: list[str] = field(default_factory=list)

    @property
    def hidden_fields(self) -> dict[str, str]:
        return {
            "response_type": self.request.response_type,
            "client_id": self.client.client_id,
            "redirect_uri": self.request.redirect_uri,
            "state": self.request.state,
            "scope": self.grant.scope_string,
            "workspace_scope": self.grant.workspace_scope,
            "code_challenge": self.request.code_challenge,
            "code_challenge_method": self.request.code_challenge_method,
        }


def append_query(uri: str, params: Mapping[str, str]) -> str:
    """Add *params* to *uri*, keeping whatever query it already carries."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v)
    return urlunsplit(parts._replace(query=urlencode(query)))


def error_redirect(redirect_uri: str, error: OAuthError, state: str = "") -> AuthorizeRedirect:
    return AuthorizeRedirect(
        append_query(
            redirect_uri,
            {"error": error.error, "error_description": error.description, "state": state},
        )
    )


class AuthorizationFlow:
    """Drives GET/POST /oauth/authorize for one signed-in human."""

    def __init__(
        self,
        clients: ClientRegistry,
        storage: OAuthStorage,
        issuer: TokenIssuer,
        roles: RoleLookup,
        audit: AuditLogger,
        web_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clients = clients
        self.storage = storage
        self.issuer = issuer
        self.roles = roles
        self.audit = audit
        self.web_url = web_url.rstrip("/")
        self._clock = clock

    def login_redirect(self, authorize_url: str) -> AuthorizeRedirect:
        return AuthorizeRedirect(
            f"{self.web_url}/auth/login?{urlencode({'redirect': authorize_url})}"
        )

    def validate_client(self, request: AuthorizeRequest) -> OAuthResult[OAuthClient]:
        """Identify the client and its callback; failures here are never redirected."""
        if not request.client_id:
            return None, OAuthError(INVALID_REQUEST, "client_id is required")
        if not request.redirect_uri:
            return None, OAuthError(INVALID_REQUEST, "redirect_uri is required")
        return self.clients.validate_client_redirect(request.client_id, request.redirect_uri)

    @staticmethod
    def validate_parameters(request: AuthorizeRequest) -> OAuthResult[ScopeGrant]:
        if request.response_type != "code":
            return None, OAuthError(UNSUPPORTED_RESPONSE_TYPE, "response_type must be code")
        if not request.scope:
            return None, OAuthError(INVALID_REQUEST, "scope is required")
        if not request.code_challenge:
            return None, OAuthError(INVALID_REQUEST, "code_challenge is required")
        method_error = validate_challenge_method(request.code_challenge_method)
        if method_error is not None:
            return None, method_error
        return validate_requested_scopes(request.scope)

    def validate_request(
        self, request: AuthorizeRequest
    ) -> tuple[ValidatedRequest | None, OAuthError | AuthorizeRedirect | None]:
        """Full authorize-request validation.

        The error side is an ``OAuthError`` while the redirect target is not
        yet trusted and an ``AuthorizeRedirect`` afterwards.
        """
        client, error = self.validate_client(request)
        if error is not None:
            logger.warning("Authorize request rejected: %s", error.error)
            return None, error

        grant, error = self.validate_parameters(request)
        if error is not None:
            logger.warning("Authorize request rejected: %s", error.error)
            return None, error_redirect(request.redirect_uri, error, request.state)

        return ValidatedRequest(request=request, client=client, grant=grant), None

    def _authorizing_role(self, grant: ScopeGrant, user: SessionUser) -> OAuthResult[str]:
        role = self.roles.get_role(grant.workspace_id, user.id)
        if not is_authorizing_role(role):
            logger.warning("User %s lacks an authorizing role in %s", user.id, grant.workspace_id)
            return None, OAuthError(
                ACCESS_DENIED, "Only workspace owners and admins can authorize agent access", 403
            )
        return role, None

    def prepare_consent(
        self,
        request: AuthorizeRequest,
        user: SessionUser | None,
        authorize_url: str,
    ) -> tuple[ConsentPrompt | AuthorizeRedirect | None, OAuthError | None]:
        """Handle GET /oauth/authorize.

        Returns a consent prompt, a redirect (login or error) or a JSON error.
        """
        validated, failure = self.validate_request(request)
        if isinstance(failure, OAuthError):
            return None, failure
        if failure is not None:
            return failure, None

        if user is None:
            return self.login_redirect(authorize_url), None

        role, error = self._authorizing_role(validated.grant, user)
        if error is not None:
            return error_redirect(request.redirect_uri, error, request.state), None

        return ConsentPrompt(
            request=request,
            client=validated.client,
            grant=validated.grant,
            user=user,
            role=role,
            tool_names=sorted(validated.grant.tool_names),
        ), None

    def decide(
        self,
        request: AuthorizeRequest,
        user: SessionUser | None,
        decision: str,
        approved_tools: Iterable[str],
        workspace_scope: str = "",
    ) -> OAuthResult[AuthorizeRedirect]:
        """Handle POST /oauth/authorize: re-validate, then issue a code or refuse."""
        client, error = self.validate_client(request)
        if error is not None:
            logger.warning("Consent decision rejected: %s", error.error)
            return None, error

        def fail(err: OAuthError) -> OAuthResult[AuthorizeRedirect]:
            return error_redirect(request.redirect_uri, err, request.state), None

        if decision == DENY:
            self.audit.log_oauth_event(
                action="consent_denied",
                actor=user.id if user else "anonymous",
                target=f"client:{client.client_id}",
                status="denied",
            )
            return fail(OAuthError(ACCESS_DENIED, "User denied authorization", 403))
        if decision != APPROVE:
            return fail(OAuthError(INVALID_REQUEST, "decision must be approve or deny"))

        grant, error = self.validate_parameters(request)
        if error is not None:
            return fail(error)
        if workspace_scope != grant.workspace_scope:
            return fail(OAuthError(INVALID_SCOPE, "workspace_scope does not match requested scope"))

        if user is None:
            return fail(OAuthError(ACCESS_DENIED, "Authentication required", 401))

        role, error = self._authorizing_role(grant, user)
        if error is not None:
            return fail(error)

        approved = grant.narrow(approved_tools)
        if not approved.tool_names:
            return fail(OAuthError(ACCESS_DENIED, "At least one tool permission must be approved", 403))

        self.storage.upsert_consent(
            user_id=user.id,
            workspace_id=approved.workspace_id,
            client_pk=client.id,
            grant=approved,
            granted_by_role=role,
            now=self._clock(),
        )
        code = self.issuer.issue_authorization_code(
            client_pk=client.id,
            user_id=user.id,
            redirect_uri=request.redirect_uri,
            grant=approved,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
        )

        narrowed = approved.tool_names != grant.tool_names
        if narrowed:
            logger.info(
                "Consent for %s narrowed from %d to %d tools",
                client.client_id,
                len(grant.tool_names),
                len(approved.tool_names),
            )
        self.audit.log_oauth_event(
            action="consent_granted",
            actor=user.id,
            target=f"workspace:{approved.workspace_id}",
            client_id=client.client_id,
            role=role,
            requested_tools=sorted(grant.tool_names),
            approved_tools=sorted(approved.tool_names),
            narrowed=narrowed,
        )

        return AuthorizeRedirect(
            append_query(request.redirect_uri, {"code": code, "state": request.state})
        ), None
