# OAuth error values.
# Created: 2026-02-20
#
# Service operations never raise for protocol failures. They return a
# ``(value, error)`` pair where exactly one side is set; the HTTP layer maps
# the error to a JSON body or a redirect.

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

# RFC 6749 / 6750 / 7591 vocabulary used by this server
INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_GRANT = "invalid_grant"
UNAUTHORIZED_CLIENT = "unauthorized_client"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
INVALID_SCOPE = "invalid_scope"
ACCESS_DENIED = "access_denied"
SERVER_ERROR = "server_error"
INVALID_TOKEN = "invalid_token"
INVALID_CLIENT_METADATA = "invalid_client_metadata"
INVALID_REDIRECT_URI = "invalid_redirect_uri"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class OAuthError:
    """A protocol failure carrying its OAuth error code and HTTP status."""

    error: str
    description: str
    status_code: int = 400

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


# Either (value, None) or (None, error)
OAuthResult = tuple[T | None, OAuthError | None]


def server_error(description: str = "The server encountered an unexpected error") -> OAuthError:
    return OAuthError(SERVER_ERROR, description, 500)
