"""Configuration management for agentauth.

Settings come from ``AGENTAUTH_*`` environment variables or a local ``.env``
file. Secrets are never logged.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _chmod_safe(path: Path, mode: int) -> None:
    """Set file permissions, ignoring errors on Windows."""
    try:
        path.chmod(mode)
    except OSError:
        pass


def get_config_dir() -> Path:
    """Get the config directory, creating if needed."""
    config_dir = Path.home() / ".agentauth"
    config_dir.mkdir(exist_ok=True)
    _chmod_safe(config_dir, 0o700)
    return config_dir


class Settings(BaseSettings):
    """agentauth settings with env and file support."""

    model_config = SettingsConfigDict(env_prefix="AGENTAUTH_", env_file=".env", extra="ignore")

    # Server
    host: str = Field(default="127.0.0.1", description="Bind address for `agentauth serve`")
    port: int = Field(default=8787, description="Bind port for `agentauth serve`")
    public_base_url: str | None = Field(
        default=None,
        description="Issuer URL advertised in metadata; derived from the request when unset",
    )
    cors_allowed_origins: list[str] = Field(
        default_factory=list, description="Extra origins allowed by CORS"
    )

    # Storage
    database_path: Path | None = Field(
        default=None, description="SQLite database file (default: ~/.agentauth/oauth.sqlite3)"
    )

    # Human sign-in
    web_url: str = Field(
        default="http://localhost:3000", description="Web app hosting the /auth/login page"
    )
    session_secret: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="HMAC key for session cookies (set explicitly for multi-process deployments)",
    )
    session_cookie_name: str = Field(default="agentauth_session")
    session_ttl_hours: int = Field(default=24)

    # Token lifetimes
    access_token_ttl_seconds: int = Field(default=15 * 60)
    refresh_token_ttl_seconds: int = Field(default=30 * 24 * 60 * 60)
    auth_code_ttl_seconds: int = Field(default=5 * 60)

    # Diagnostics
    debug_errors: bool = Field(
        default=False, description="Include exception text in server_error responses"
    )
    log_level: str = Field(default="INFO")
    audit_log_path: Path | None = Field(
        default=None, description="JSONL audit log (default: ~/.agentauth/audit.jsonl)"
    )

    @classmethod
    def load(cls) -> "Settings":
        return cls()

    def resolved_database_path(self) -> Path:
        return self.database_path or get_config_dir() / "oauth.sqlite3"

    def resolved_audit_log_path(self) -> Path:
        return self.audit_log_path or get_config_dir() / "audit.jsonl"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.load()
