# Scope grammar for workspace-bound tool grants.
# Created: 2026-02-20
#
# A grant is exactly one ``mcp:workspace:<id>`` scope plus one or more
# ``mcp:tool:<name>`` scopes drawn from TOOL_CATALOG. Scope strings are parsed
# into a ScopeGrant at the boundary; nothing downstream handles raw strings.

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from agentauth.oauth.errors import INVALID_SCOPE, OAuthError, OAuthResult

logger = logging.getLogger(__name__)

WORKSPACE_SCOPE_PREFIX = "mcp:workspace:"
TOOL_SCOPE_PREFIX = "mcp:tool:"

TOOL_CATALOG: tuple[str, ...] = (
    "create_task",
    "update_task",
    "delete_task",
    "query_tasks",
    "move_task",
    "assign_task",
    "add_comment",
    "summarize_project",
    "create_smart_view",
    "search_tasks",
    "list_projects",
)

AUTHORIZING_ROLES = frozenset({"owner", "admin"})


@dataclass(frozen=True)
class ScopeGrant:
    """Validated scope set: one workspace and a non-empty set of tools."""

    workspace_id: str
    tool_names: frozenset[str]

    @property
    def workspace_scope(self) -> str:
        return f"{WORKSPACE_SCOPE_PREFIX}{self.workspace_id}"

    @property
    def tool_scopes(self) -> list[str]:
        return [f"{TOOL_SCOPE_PREFIX}{name}" for name in sorted(self.tool_names)]

    @property
    def scopes(self) -> list[str]:
        return [self.workspace_scope, *self.tool_scopes]

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)

    def narrow(self, tool_names: Iterable[str]) -> ScopeGrant:
        """Return a grant restricted to *tool_names* (intersection, may be empty)."""
        return ScopeGrant(self.workspace_id, self.tool_names & frozenset(tool_names))

    def covers(self, other: ScopeGrant) -> bool:
        return self.workspace_id == other.workspace_id and other.tool_names <= self.tool_names


def _invalid(description: str) -> OAuthError:
    return OAuthError(INVALID_SCOPE, description)


def validate_requested_scopes(scope: str | None) -> OAuthResult[ScopeGrant]:
    """Parse a space-delimited scope string into a ScopeGrant."""
    tokens = list(dict.fromkeys((scope or "").split()))

    workspace_ids: list[str] = []
    tool_names: list[str] = []
    unrecognized: list[str] = []
    for token in tokens:
        if token.startswith(WORKSPACE_SCOPE_PREFIX):
            workspace_ids.append(token[len(WORKSPACE_SCOPE_PREFIX) :])
        elif token.startswith(TOOL_SCOPE_PREFIX):
            tool_names.append(token[len(TOOL_SCOPE_PREFIX) :])
        else:
            unrecognized.append(token)

    if len(workspace_ids) != 1:
        return None, _invalid("Exactly one workspace scope is required")
    if not workspace_ids[0]:
        return None, _invalid("Invalid workspace scope")
    if unrecognized:
        # Non-mcp scopes such as openid or offline_access grant nothing here
        logger.debug("Ignoring unrecognized scopes: %s", ", ".join(unrecognized))
    if not tool_names:
        return None, _invalid("At least one tool scope is required")

    unknown = [name for name in tool_names if name not in TOOL_CATALOG]
    if unknown:
        return None, _invalid(f"Unknown tool scopes: {', '.join(unknown)}")

    return ScopeGrant(workspace_ids[0], frozenset(tool_names)), None


def validate_tool_names(tool_names: Iterable[str]) -> OAuthResult[frozenset[str]]:
    """Validate bare tool names (as used by the connection management API)."""
    names = frozenset(tool_names)
    if not names:
        return None, _invalid("At least one tool scope is required")
    unknown = sorted(names - frozenset(TOOL_CATALOG))
    if unknown:
        return None, _invalid(f"Unknown tool scopes: {', '.join(unknown)}")
    return names, None


def is_authorizing_role(role: str | None) -> bool:
    """Only workspace owners and admins may grant agents tool access."""
    return bool(role) and role in AUTHORIZING_ROLES


def supported_scopes() -> list[str]:
    return [
        f"{WORKSPACE_SCOPE_PREFIX}{{workspaceId}}",
        *(f"{TOOL_SCOPE_PREFIX}{name}" for name in TOOL_CATALOG),
    ]
