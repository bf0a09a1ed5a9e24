# API v1 router aggregation.
# Created: 2026-02-20
#
# mount_v1_routers(app) registers all domain routers at /api/v1/ and the
# discovery documents at the server root, where RFC 8414/9728 clients look.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Domain routers, imported lazily inside mount_v1_routers().
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("agentauth.api.v1.oauth2", "router", "OAuth2"),
    ("agentauth.api.v1.connections", "router", "Connections"),
    ("agentauth.api.v1.mcp", "router", "MCP"),
]

_ROOT_ROUTERS: list[tuple[str, str, str]] = [
    ("agentauth.api.v1.oauth2", "well_known_router", "Discovery"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all v1 domain routers on *app*.

    Each router is mounted at ``/api/v1/<prefix>``; discovery routers are
    mounted without a prefix.
    """
    import importlib

    from fastapi import APIRouter

    for routers, prefix in ((_V1_ROUTERS, "/api/v1"), (_ROOT_ROUTERS, "")):
        for module_path, attr_name, tag in routers:
            mod = importlib.import_module(module_path)
            router: APIRouter = getattr(mod, attr_name)
            app.include_router(router, prefix=prefix)
            logger.debug("Mounted router: %s.%s (%s)", module_path, attr_name, tag)
