# Tool gateway schemas.
# Created: 2026-02-20

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agentauth.api.v1.schemas.common import APIResponse


class ToolInfo(APIResponse):
    name: str
    description: str = ""
    available: bool = True


class ToolListResponse(APIResponse):
    workspace_id: str
    client_id: str
    tools: list[ToolInfo]


class ToolCallRequest(BaseModel):
    """Arguments passed through to the tool handler."""

    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResponse(APIResponse):
    tool: str
    result: Any = None
