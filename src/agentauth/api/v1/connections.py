# Connections router: workspace admins review and edit agent access.
# Created: 2026-02-20

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Request

from agentauth.api.deps import get_current_user, get_services, oauth_error_response
from agentauth.api.v1.schemas.common import StatusResponse
from agentauth.api.v1.schemas.connections import (
    ConnectionListResponse,
    ConnectionResponse,
    UpdateConnectionScopesRequest,
)
from agentauth.oauth.errors import ACCESS_DENIED, OAuthError, OAuthResult
from agentauth.oauth.models import SessionUser
from agentauth.oauth.scopes import TOOL_SCOPE_PREFIX, is_authorizing_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Connections"])


def _require_workspace_admin(request: Request, workspace_id: str) -> OAuthResult[SessionUser]:
    user = get_current_user(request)
    if user is None:
        return None, OAuthError(ACCESS_DENIED, "Authentication required", 401)
    role = get_services(request).roles.get_role(workspace_id, user.id)
    if not is_authorizing_role(role):
        logger.warning("User %s may not manage connections of %s", user.id, workspace_id)
        return None, OAuthError(
            ACCESS_DENIED, "Only workspace owners and admins can manage agent connections", 403
        )
    return user, None


@router.get("/workspaces/{workspace_id}/connections", response_model=ConnectionListResponse)
async def list_connections(workspace_id: str, request: Request):
    """List agent clients holding standing consent in this workspace."""
    _, error = _require_workspace_admin(request, workspace_id)
    if error is not None:
        return oauth_error_response(error)
    connections = get_services(request).connections.list_connections(workspace_id)
    return ConnectionListResponse(
        connections=[ConnectionResponse(**asdict(c)) for c in connections]
    )


@router.patch(
    "/workspaces/{workspace_id}/connections/{consent_id}/scopes",
    response_model=ConnectionResponse,
)
async def update_connection_scopes(
    workspace_id: str,
    consent_id: int,
    body: UpdateConnectionScopesRequest,
    request: Request,
):
    """Narrow a connection to a subset of its tools."""
    user, error = _require_workspace_admin(request, workspace_id)
    if error is not None:
        return oauth_error_response(error)

    tool_names = [scope.removeprefix(TOOL_SCOPE_PREFIX) for scope in body.tool_scopes]
    connection, error = get_services(request).connections.narrow_connection(
        workspace_id, consent_id, tool_names, actor_user_id=user.id
    )
    if error is not None:
        return oauth_error_response(error)
    return ConnectionResponse(**asdict(connection))


@router.delete(
    "/workspaces/{workspace_id}/connections/{consent_id}", response_model=StatusResponse
)
async def delete_connection(workspace_id: str, consent_id: int, request: Request):
    """Remove a connection and revoke its outstanding tokens."""
    user, error = _require_workspace_admin(request, workspace_id)
    if error is not None:
        return oauth_error_response(error)

    error = get_services(request).connections.delete_connection(
        workspace_id, consent_id, actor_user_id=user.id
    )
    if error is not None:
        return oauth_error_response(error)
    return StatusResponse()
