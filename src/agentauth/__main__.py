"""agentauth entry point.

Changes:
  - 2026-02-20: serve / register-client / session-token subcommands.
"""

import argparse
import json
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from agentauth.config import Settings, get_settings
from agentauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("agentauth")
    except PackageNotFoundError:
        from agentauth import __version__

        return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentauth",
        description="OAuth 2.1 authorization server for AI-agent workspace tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agentauth serve                                   Start the server
  agentauth serve --dev                             Start with auto-reload
  agentauth register-client --name CLI \\
      --redirect-uri http://127.0.0.1:8976/callback Register a public client
  agentauth session-token --user-id u1              Print a dev session cookie
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the authorization server")
    serve.add_argument("--host", default=None, help="Bind address (default: settings.host)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: settings.port)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on source changes")

    register = sub.add_parser("register-client", help="Register an OAuth client from the shell")
    register.add_argument("--name", required=True, help="Client display name")
    register.add_argument(
        "--redirect-uri",
        action="append",
        required=True,
        dest="redirect_uris",
        help="Allowed redirect URI (repeatable)",
    )

    session = sub.add_parser("session-token", help="Print a signed session cookie value")
    session.add_argument("--user-id", required=True)
    session.add_argument("--ttl-hours", type=int, default=None)
    return parser


def _register_client(settings: Settings, name: str, redirect_uris: list[str]) -> int:
    from agentauth.oauth.clients import ClientRegistry, client_metadata
    from agentauth.oauth.storage import OAuthStorage
    from agentauth.security.audit import AuditLogger

    registry = ClientRegistry(
        OAuthStorage(settings.resolved_database_path()),
        AuditLogger(settings.resolved_audit_log_path()),
    )
    client, error = registry.register_client({"client_name": name, "redirect_uris": redirect_uris})
    if error is not None:
        logger.error("Registration failed: %s (%s)", error.description, error.error)
        return 1
    print(json.dumps(client_metadata(client), indent=2))
    return 0


def _session_token(settings: Settings, user_id: str, ttl_hours: int | None) -> int:
    from agentauth.security.session_tokens import create_session_token

    if "session_secret" not in settings.model_fields_set:
        logger.warning("AGENTAUTH_SESSION_SECRET is unset; this token only works in-process")
    try:
        token = create_session_token(
            settings.session_secret, user_id, ttl_hours or settings.session_ttl_hours
        )
    except ValueError as exc:
        logger.error("%s", exc)
        return 1
    print(token)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(level=settings.log_level)

    if args.command == "serve":
        from agentauth.api.serve import run_api_server

        try:
            run_api_server(
                host=args.host or settings.host,
                port=args.port or settings.port,
                dev=args.dev,
            )
        except KeyboardInterrupt:
            logger.info("agentauth stopped.")
        return 0
    if args.command == "register-client":
        return _register_client(settings, args.name, args.redirect_uris)
    return _session_token(settings, args.user_id, args.ttl_hours)


if __name__ == "__main__":
    raise SystemExit(main())
