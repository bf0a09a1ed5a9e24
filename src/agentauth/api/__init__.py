# HTTP surface of the authorization server.
# Created: 2026-02-20

from agentauth.api.serve import create_api_app, run_api_server

__all__ = ["create_api_app", "run_api_server"]
