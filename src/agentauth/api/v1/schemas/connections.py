# Connection management schemas.
# Created: 2026-02-20

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from agentauth.api.v1.schemas.common import APIResponse


class ConnectionResponse(APIResponse):
    """One agent client with standing access to a workspace."""

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


class ConnectionListResponse(APIResponse):
    connections: list[ConnectionResponse]


class UpdateConnectionScopesRequest(BaseModel):
    """New tool set for a connection; must be a non-empty subset of the current one."""

    tool_scopes: list[str] = Field(..., min_length=1)
