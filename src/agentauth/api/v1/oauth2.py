# OAuth2 router: discovery, registration, authorize, token, revoke.
# Created: 2026-02-20

from __future__ import annotations

import html
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from agentauth.api.deps import (
    check_rate_limit,
    get_base_url,
    get_current_user,
    get_services,
    oauth_error_response,
)
from agentauth.api.v1.schemas.oauth2 import (
    AuthorizationServerMetadata,
    ClientRegistrationResponse,
    TokenResponse,
)
from agentauth.oauth.clients import client_metadata
from agentauth.oauth.errors import (
    INVALID_CLIENT_METADATA,
    INVALID_REQUEST,
    UNSUPPORTED_GRANT_TYPE,
    OAuthError,
)
from agentauth.oauth.flow import AuthorizeRedirect, AuthorizeRequest, ConsentPrompt
from agentauth.oauth.metadata import (
    API_PREFIX,
    MCP_RESOURCE_PATH,
    authorization_server_metadata,
    protected_resource_metadata,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])
well_known_router = APIRouter(tags=["Discovery"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>Authorize agent access</title>
<style>
body {{ font-family: system-ui; max-width: 560px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.approve {{ background: #0f766e; color: white; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
.panel {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
label {{ display: block; margin: 6px 0; }}
</style></head><body>
<h2>Authorize {client_name}</h2>
<p><strong>{client_name}</strong> is requesting access to workspace tools.</p>
<div class="panel">
<div><strong>Signed in as:</strong> {user}</div>
<div><strong>Workspace:</strong> {workspace_id} ({role})</div>
</div>
<form method="POST" action="{action}">
<h3>Requested tool permissions</h3>
{tool_options}
{hidden_fields}
<button type="submit" name="decision" value="approve" class="btn approve">Approve</button>
<button type="submit" name="decision" value="deny" class="btn deny">Deny</button>
</form></body></html>"""


def _render_consent(prompt: ConsentPrompt) -> str:
    esc = html.escape
    tool_options = "\n".join(
        f'<label><input type="checkbox" name="approved_tools" value="{esc(name)}" checked> '
        f"<code>{esc(name)}</code></label>"
        for name in prompt.tool_names
    )
    hidden_fields = "\n".join(
        f'<input type="hidden" name="{esc(key)}" value="{esc(value)}">'
        for key, value in prompt.hidden_fields.items()
    )
    return _CONSENT_HTML.format(
        client_name=esc(prompt.client.client_name),
        user=esc(prompt.user.email or prompt.user.name or prompt.user.id),
        workspace_id=esc(prompt.grant.workspace_id),
        role=esc(prompt.role),
        action=f"{API_PREFIX}/oauth/authorize",
        tool_options=tool_options,
        hidden_fields=hidden_fields,
    )


def _redirect(outcome: AuthorizeRedirect) -> RedirectResponse:
    return RedirectResponse(outcome.location, status_code=302)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@well_known_router.get(
    "/.well-known/oauth-authorization-server", response_model=AuthorizationServerMetadata
)
async def authorization_server_document(request: Request):
    """RFC 8414 authorization server metadata."""
    return authorization_server_metadata(get_base_url(request))


@well_known_router.get("/.well-known/oauth-protected-resource")
@well_known_router.get("/.well-known/oauth-protected-resource/{resource_path:path}")
async def protected_resource_document(request: Request, resource_path: str = ""):
    """RFC 9728 protected resource metadata for the tool gateway."""
    return protected_resource_metadata(
        get_base_url(request), resource_path or MCP_RESOURCE_PATH
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/oauth/register", status_code=201, response_model=ClientRegistrationResponse)
async def register_client(request: Request):
    """Dynamic client registration (public clients only)."""
    services = get_services(request)
    try:
        payload = await request.json()
    except ValueError:
        return oauth_error_response(
            OAuthError(INVALID_CLIENT_METADATA, "Registration body must be valid JSON")
        )

    client, error = services.clients.register_client(payload)
    if error is not None:
        return oauth_error_response(error)
    return JSONResponse(status_code=201, content=client_metadata(client))


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize")
async def authorize(request: Request):
    """Show the consent screen, or send the browser to log in."""
    services = get_services(request)
    limited = check_rate_limit(services.authorize_limiter, request)
    if limited is not None:
        return limited

    auth_request = AuthorizeRequest.from_params(request.query_params)
    authorize_url = f"{get_base_url(request)}{request.url.path}"
    if request.url.query:
        authorize_url = f"{authorize_url}?{request.url.query}"

    outcome, error = services.flow.prepare_consent(
        auth_request, get_current_user(request), authorize_url
    )
    if error is not None:
        return oauth_error_response(error)
    if isinstance(outcome, AuthorizeRedirect):
        return _redirect(outcome)
    return HTMLResponse(_render_consent(outcome))


@router.post("/oauth/authorize")
async def authorize_decision(request: Request):
    """Process the consent form: approve issues a code, deny refuses."""
    services = get_services(request)
    limited = check_rate_limit(services.authorize_limiter, request)
    if limited is not None:
        return limited

    form = await request.form()
    auth_request = AuthorizeRequest.from_params(form)
    approved_tools = [str(value) for value in form.getlist("approved_tools")]

    outcome, error = services.flow.decide(
        auth_request,
        get_current_user(request),
        decision=str(form.get("decision") or ""),
        approved_tools=approved_tools,
        workspace_scope=str(form.get("workspace_scope") or ""),
    )
    if error is not None:
        return oauth_error_response(error)
    return _redirect(outcome)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post("/oauth/token", response_model=TokenResponse, response_model_exclude_none=True)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for an access token."""
    services = get_services(request)
    limited = check_rate_limit(services.token_limiter, request)
    if limited is not None:
        return limited

    form = await request.form()

    def field(name: str) -> str:
        return str(form.get(name) or "")

    grant_type = field("grant_type")
    if grant_type == "authorization_code":
        result, error = services.issuer.exchange_authorization_code(
            code=field("code"),
            client_id=field("client_id"),
            redirect_uri=field("redirect_uri"),
            code_verifier=field("code_verifier"),
        )
    elif grant_type == "refresh_token":
        result, error = services.issuer.refresh_access_token(
            refresh_token=field("refresh_token"),
            client_id=field("client_id"),
            scope=field("scope") or None,
        )
    elif not grant_type:
        error = OAuthError(INVALID_REQUEST, "grant_type is required")
    else:
        error = OAuthError(UNSUPPORTED_GRANT_TYPE, f"Unsupported grant_type: {grant_type}")

    if error is not None:
        logger.warning("Token request failed: %s", error.error)
        return oauth_error_response(error, headers=_NO_STORE)
    return JSONResponse(content=result, headers=_NO_STORE)


@router.post("/oauth/revoke")
async def revoke_token(request: Request):
    """Revoke an access or refresh token. Unknown tokens still get 200."""
    services = get_services(request)
    form = await request.form()
    token = str(form.get("token") or "")
    if not token:
        return oauth_error_response(OAuthError(INVALID_REQUEST, "token is required"))

    services.issuer.revoke_token(
        token,
        client_id=str(form.get("client_id") or "") or None,
        token_type_hint=str(form.get("token_type_hint") or "") or None,
    )
    return Response(status_code=200)
