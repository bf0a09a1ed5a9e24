# Tool registry and the bearer-token gate in front of it.
# Created: 2026-02-20

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from agentauth.oauth.errors import NOT_FOUND, OAuthError, OAuthResult, server_error
from agentauth.oauth.models import AuthContext
from agentauth.oauth.principals import RoleLookup
from agentauth.oauth.scopes import TOOL_CATALOG
from agentauth.oauth.tokens import TokenVerifier
from agentauth.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)

# Domain services implement tools as (context, arguments) -> result
ToolHandler = Callable[[AuthContext, dict[str, Any]], Any | Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    handler: ToolHandler
    description: str = ""


class ToolRegistry:
    """
    Registry of workspace tools backed by domain services.

    Usage:
        registry = ToolRegistry()
        registry.register("create_task", create_task_handler, "Create a task")

        result, error = await ToolGate(verifier, roles, registry, audit).call(
            token, "create_task", {"title": "Ship it"}
        )
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, name: str, handler: ToolHandler, description: str = "") -> None:
        """Register a handler for a catalog tool."""
        if name not in TOOL_CATALOG:
            raise ValueError(f"Unknown tool: {name}")
        self._tools[name] = RegisteredTool(name=name, handler=handler, description=description)
        logger.debug("Registered tool: %s", name)

    def unregister(self, name: str) -> None:
        if self._tools.pop(name, None) is not None:
            logger.debug("Unregistered tool: %s", name)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)


class ToolGate:
    """Checks a bearer token, the caller's workspace role and tool scope before delegating."""

    def __init__(
        self,
        verifier: TokenVerifier,
        roles: RoleLookup,
        registry: ToolRegistry,
        audit: AuditLogger,
    ):
        self.verifier = verifier
        self.roles = roles
        self.registry = registry
        self.audit = audit

    def _deny(self, context: AuthContext, tool_name: str, error: OAuthError) -> OAuthError:
        logger.warning("Tool call %s refused: %s", tool_name, error.error)
        self.audit.log_oauth_event(
            action="tool_call_denied",
            actor=f"client:{context.client_id}",
            target=f"tool:{tool_name}",
            status="denied",
            severity=AuditSeverity.ALERT,
            workspace_id=context.workspace_id,
            user_id=context.user_id,
            reason=error.error,
        )
        return error

    def authorize(self, token: str | None) -> OAuthResult[AuthContext]:
        """Authenticate *token* and confirm the granting user still holds an admin role."""
        context, error = self.verifier.authenticate_access_token(token)
        if error is not None:
            return None, error
        role = self.roles.get_role(context.workspace_id, context.user_id)
        error = self.verifier.ensure_admin_role(role)
        if error is not None:
            return None, self._deny(context, "*", error)
        return context, None

    def list_tools(self, context: AuthContext) -> list[dict[str, Any]]:
        """Catalog entries *context* is allowed to call."""
        tools = []
        for name in sorted(context.tool_permissions):
            registered = self.registry.get(name)
            tools.append(
                {
                    "name": name,
                    "description": registered.description if registered else "",
                    "available": registered is not None,
                }
            )
        return tools

    async def call(
        self,
        token: str | None,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> OAuthResult[Any]:
        context, error = self.authorize(token)
        if error is not None:
            return None, error

        error = self.verifier.ensure_tool_allowed(context, tool_name)
        if error is not None:
            return None, self._deny(context, tool_name, error)

        tool = self.registry.get(tool_name)
        if tool is None:
            return None, OAuthError(NOT_FOUND, f"Tool is not available: {tool_name}", 404)

        try:
            result = tool.handler(context, dict(arguments or {}))
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception("Tool %s failed", tool_name)
            self.audit.log_oauth_event(
                action="tool_error",
                actor=f"client:{context.client_id}",
                target=f"tool:{tool_name}",
                status="error",
                severity=AuditSeverity.WARNING,
                workspace_id=context.workspace_id,
            )
            return None, server_error(f"Tool {tool_name} failed")

        logger.debug("Tool %s executed for client %s", tool_name, context.client_id)
        return result, None
