# Workspace tools exposed to authorized agents.
# Created: 2026-02-20

from agentauth.tools.registry import RegisteredTool, ToolGate, ToolHandler, ToolRegistry

__all__ = ["RegisteredTool", "ToolGate", "ToolHandler", "ToolRegistry"]
