# Shared fixtures: a fresh SQLite file and audit log per test.
# Created: 2026-02-20

import secrets

import pytest
from fastapi.testclient import TestClient

from agentauth.api.serve import create_api_app
from agentauth.config import Settings
from agentauth.oauth.clients import ClientRegistry
from agentauth.oauth.pkce import build_s256_code_challenge
from agentauth.oauth.principals import InMemoryRoleDirectory
from agentauth.oauth.scopes import validate_requested_scopes
from agentauth.oauth.storage import OAuthStorage
from agentauth.oauth.tokens import TokenIssuer, TokenVerifier
from agentauth.security.audit import AuditLogger
from agentauth.security.session_tokens import create_session_token
from agentauth.tools.registry import ToolRegistry

REDIRECT_URI = "https://client.example/cb"


@pytest.fixture
def storage(tmp_path):
    return OAuthStorage(tmp_path / "oauth.sqlite3")


@pytest.fixture
def audit(tmp_path):
    return AuditLogger(tmp_path / "audit.jsonl")


@pytest.fixture
def audit_events(audit):
    events: list[dict] = []
    audit.on_log(events.append)
    return events


@pytest.fixture
def roles():
    return InMemoryRoleDirectory({("w1", "u1"): "owner", ("w1", "u2"): "member"})


@pytest.fixture
def registry(storage, audit):
    return ClientRegistry(storage, audit)


@pytest.fixture
def oauth_client(registry):
    client, error = registry.register_client(
        {"client_name": "Test Agent", "redirect_uris": [REDIRECT_URI]}
    )
    assert error is None
    return client


@pytest.fixture
def issuer(storage, audit):
    return TokenIssuer(storage, audit)


@pytest.fixture
def verifier(storage):
    return TokenVerifier(storage)


@pytest.fixture
def pkce():
    verifier = secrets.token_urlsafe(48)
    return verifier, build_s256_code_challenge(verifier)


@pytest.fixture
def grant():
    scope_grant, error = validate_requested_scopes(
        "mcp:workspace:w1 mcp:tool:create_task mcp:tool:query_tasks mcp:tool:add_comment"
    )
    assert error is None
    return scope_grant


@pytest.fixture
def issue_code(issuer, oauth_client, pkce):
    """Issue a code for u1 in w1 as if consent had just been approved."""

    def _issue(scope_grant, challenge=None):
        return issuer.issue_authorization_code(
            client_pk=oauth_client.id,
            user_id="u1",
            redirect_uri=REDIRECT_URI,
            grant=scope_grant,
            code_challenge=challenge or pkce[1],
            code_challenge_method="S256",
        )

    return _issue


@pytest.fixture
def token_pair(issuer, issue_code, oauth_client, pkce, grant):
    code = issue_code(grant)
    result, error = issuer.exchange_authorization_code(
        code=code, client_id=oauth_client.client_id, redirect_uri=REDIRECT_URI, code_verifier=pkce[0]
    )
    assert error is None
    return result


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

SESSION_SECRET = "test-session-secret"
WEB_URL = "https://app.example"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=tmp_path / "api.sqlite3",
        audit_log_path=tmp_path / "api-audit.jsonl",
        session_secret=SESSION_SECRET,
        web_url=WEB_URL,
    )


@pytest.fixture
def tool_registry():
    registry = ToolRegistry()
    registry.register(
        "create_task",
        lambda context, arguments: {"id": 42, "workspace": context.workspace_id, **arguments},
        "Create a task",
    )
    registry.register("query_tasks", lambda context, arguments: [], "Query tasks")
    return registry


@pytest.fixture
def app(settings, roles, tool_registry):
    return create_api_app(settings, roles=roles, tool_registry=tool_registry)


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def sign_in(client, settings):
    """Set the session cookie for *user_id* on the test client."""

    def _sign_in(user_id="u1"):
        client.cookies.set(
            settings.session_cookie_name, create_session_token(SESSION_SECRET, user_id)
        )

    return _sign_in
