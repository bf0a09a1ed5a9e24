# Tool gateway router: bearer-authenticated tool listing and calls.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from agentauth.api.deps import bearer_token, get_base_url, get_services, oauth_error_response
from agentauth.api.v1.schemas.mcp import ToolCallRequest, ToolCallResponse, ToolListResponse
from agentauth.oauth.errors import OAuthError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["MCP"])


def _gate_error(request: Request, error: OAuthError):
    headers = None
    if error.status_code == 401:
        headers = {
            "WWW-Authenticate": get_services(request).verifier.build_www_authenticate_header(
                get_base_url(request), error
            )
        }
    return oauth_error_response(error, headers=headers)


@router.get("/mcp/tools", response_model=ToolListResponse)
async def list_tools(request: Request):
    """Tools the presented access token may call."""
    services = get_services(request)
    context, error = services.tool_gate.authorize(bearer_token(request))
    if error is not None:
        return _gate_error(request, error)
    return ToolListResponse(
        workspace_id=context.workspace_id,
        client_id=context.client_id,
        tools=services.tool_gate.list_tools(context),
    )


@router.post("/mcp/tools/{tool_name}", response_model=ToolCallResponse)
async def call_tool(tool_name: str, request: Request, body: ToolCallRequest | None = None):
    """Invoke one tool on behalf of the token's workspace."""
    services = get_services(request)
    result, error = await services.tool_gate.call(
        bearer_token(request), tool_name, body.arguments if body else {}
    )
    if error is not None:
        return _gate_error(request, error)
    return ToolCallResponse(tool=tool_name, result=result)
