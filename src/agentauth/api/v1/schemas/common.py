# Common API response schemas.
# Created: 2026-02-20

from __future__ import annotations

from pydantic import BaseModel


class APIResponse(BaseModel):
    """Base response wrapper."""

    model_config = {"from_attributes": True}


class OAuthErrorResponse(APIResponse):
    """RFC 6749 error body."""

    error: str
    error_description: str


class StatusResponse(APIResponse):
    """Status string response."""

    status: str = "ok"
