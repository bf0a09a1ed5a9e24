"""Application assembly for ``agentauth serve``.

Builds one FastAPI app with its own storage, audit log and service objects.
Tests and embedding hosts pass their own collaborators (role lookup, session
resolver, tool registry); nothing is shared between apps.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentauth import __version__
from agentauth.api.deps import build_services
from agentauth.config import Settings
from agentauth.oauth.errors import server_error
from agentauth.oauth.principals import RoleLookup, SessionResolver
from agentauth.oauth.storage import OAuthStorage
from agentauth.security.audit import AuditLogger
from agentauth.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def create_api_app(
    settings: Settings | None = None,
    *,
    storage: OAuthStorage | None = None,
    audit: AuditLogger | None = None,
    roles: RoleLookup | None = None,
    session_resolver: SessionResolver | None = None,
    tool_registry: ToolRegistry | None = None,
) -> FastAPI:
    """Build the authorization server application."""
    from agentauth.api.v1 import mount_v1_routers

    settings = settings or Settings.load()

    app = FastAPI(
        title="agentauth",
        description="OAuth 2.1 authorization server for workspace tool access by AI agents.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )
    app.state.services = build_services(
        settings,
        storage=storage,
        audit=audit,
        roles=roles,
        session_resolver=session_resolver,
        tool_registry=tool_registry,
    )

    # --- CORS -----------------------------------------------------------
    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # --- Unexpected failures ---------------------------------------------
    @app.exception_handler(Exception)
    async def _server_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = server_error(str(exc)) if settings.debug_errors else server_error()
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # --- Mount all routers ----------------------------------------------
    mount_v1_routers(app)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8787,
    dev: bool = False,
) -> None:
    """Start the authorization server under uvicorn."""
    import uvicorn

    print("\n" + "=" * 50)
    print("AGENTAUTH AUTHORIZATION SERVER")
    print("=" * 50)
    print(f"\nMetadata: http://{host}:{port}/.well-known/oauth-authorization-server")
    print(f"API docs: http://{host}:{port}/api/v1/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "agentauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
