# Tests for the OAuth2 HTTP endpoints: discovery, registration, authorize, token, revoke.
# Created: 2026-02-20

import secrets
from urllib.parse import parse_qs, urlsplit

import pytest

from agentauth.oauth.pkce import build_s256_code_challenge

REDIRECT_URI = "https://client.example/cb"
SCOPE = "mcp:workspace:w1 mcp:tool:create_task mcp:tool:query_tasks"


def _make_pkce_pair():
    verifier = secrets.token_urlsafe(32)
    return verifier, build_s256_code_challenge(verifier)


def _query(location):
    return {k: v[0] for k, v in parse_qs(urlsplit(location).query).items()}


def _register(client, name="Agent", redirect_uri=REDIRECT_URI):
    resp = client.post(
        "/api/v1/oauth/register", json={"client_name": name, "redirect_uris": [redirect_uri]}
    )
    assert resp.status_code == 201
    return resp.json()["client_id"]


def _authorize_params(client_id, challenge, scope=SCOPE, state="xyz"):
    return {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": REDIRECT_URI,
        "scope": scope,
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }


def _approve(client, client_id, challenge, tools=("create_task", "query_tasks"), **extra):
    form = {
        **_authorize_params(client_id, challenge),
        "workspace_scope": "mcp:workspace:w1",
        "decision": "approve",
        "approved_tools": list(tools),
        **extra,
    }
    return client.post("/api/v1/oauth/authorize", data=form)


def _exchange(client, client_id, code, verifier):
    return client.post(
        "/api/v1/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "code_verifier": verifier,
        },
    )


@pytest.fixture
def authorized(client, sign_in):
    """Run the full browser flow for u1 and return (client_id, token response)."""
    sign_in("u1")
    client_id = _register(client)
    verifier, challenge = _make_pkce_pair()
    resp = _approve(client, client_id, challenge)
    code = _query(resp.headers["location"])["code"]
    tokens = _exchange(client, client_id, code, verifier)
    assert tokens.status_code == 200
    return client_id, tokens.json()


# ===================== Discovery =====================


class TestDiscovery:
    def test_authorization_server_metadata(self, client):
        resp = client.get("/.well-known/oauth-authorization-server")
        assert resp.status_code == 200
        data = resp.json()
        assert data["issuer"] == "http://testserver"
        assert data["authorization_endpoint"] == "http://testserver/api/v1/oauth/authorize"
        assert data["token_endpoint"] == "http://testserver/api/v1/oauth/token"
        assert data["registration_endpoint"] == "http://testserver/api/v1/oauth/register"
        assert data["revocation_endpoint"] == "http://testserver/api/v1/oauth/revoke"
        assert data["code_challenge_methods_supported"] == ["S256"]
        assert data["token_endpoint_auth_methods_supported"] == ["none"]
        assert data["grant_types_supported"] == ["authorization_code", "refresh_token"]
        assert "mcp:workspace:{workspaceId}" in data["scopes_supported"]
        assert "mcp:tool:create_task" in data["scopes_supported"]

    def test_forwarded_headers(self, client):
        resp = client.get(
            "/.well-known/oauth-authorization-server",
            headers={"X-Forwarded-Proto": "https", "X-Forwarded-Host": "auth.example.com"},
        )
        data = resp.json()
        assert data["issuer"] == "https://auth.example.com"
        assert data["token_endpoint"] == "https://auth.example.com/api/v1/oauth/token"

    def test_protected_resource_metadata(self, client):
        resp = client.get("/.well-known/oauth-protected-resource/api/v1/mcp")
        assert resp.status_code == 200
        data = resp.json()
        assert data["resource"] == "http://testserver/api/v1/mcp"
        assert data["authorization_servers"] == ["http://testserver"]
        assert data["bearer_methods_supported"] == ["header"]

    def test_protected_resource_default_path(self, client):
        data = client.get("/.well-known/oauth-protected-resource").json()
        assert data["resource"] == "http://testserver/api/v1/mcp"


# ===================== Registration =====================


class TestRegisterEndpoint:
    def test_register(self, client):
        resp = client.post(
            "/api/v1/oauth/register",
            json={"client_name": "Agent", "redirect_uris": [REDIRECT_URI]},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["client_id"].startswith("agc_")
        assert data["redirect_uris"] == [REDIRECT_URI]
        assert data["token_endpoint_auth_method"] == "none"
        assert "client_secret" not in data

    def test_invalid_metadata(self, client):
        resp = client.post("/api/v1/oauth/register", json={"client_name": "Agent"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_redirect_uri"

    def test_malformed_redirect_uri(self, client):
        resp = client.post(
            "/api/v1/oauth/register",
            json={"client_name": "Agent", "redirect_uris": ["http://[::1"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_redirect_uri"

    def test_invalid_json(self, client):
        resp = client.post(
            "/api/v1/oauth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client_metadata"


# ===================== Authorize =====================


class TestAuthorizeEndpoint:
    def test_login_redirect_without_session(self, client):
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = client.get("/api/v1/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("https://app.example/auth/login?")
        back = _query(location)["redirect"]
        assert back.startswith("http://testserver/api/v1/oauth/authorize?")
        assert f"client_id={client_id}" in back

    def test_consent_page(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client, name="<b>Agent</b>")
        _, challenge = _make_pkce_pair()
        resp = client.get("/api/v1/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        page = resp.text
        assert "&lt;b&gt;Agent&lt;/b&gt;" in page
        assert "<b>Agent</b>" not in page
        assert 'name="approved_tools" value="create_task" checked' in page
        assert 'name="approved_tools" value="query_tasks" checked' in page
        assert 'name="workspace_scope" value="mcp:workspace:w1"' in page
        assert 'name="state" value="xyz"' in page
        assert 'action="/api/v1/oauth/authorize"' in page

    def test_unknown_client_is_json(self, client, sign_in):
        sign_in("u1")
        _, challenge = _make_pkce_pair()
        resp = client.get(
            "/api/v1/oauth/authorize", params=_authorize_params("agc_unknown", challenge)
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"
        assert "location" not in resp.headers

    def test_unregistered_redirect_is_json(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        params = {**_authorize_params(client_id, challenge), "redirect_uri": "https://evil.example/cb"}
        resp = client.get("/api/v1/oauth/authorize", params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
        assert "location" not in resp.headers

    def test_bad_scope_redirects(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        params = _authorize_params(client_id, challenge, scope="mcp:tool:create_task")
        resp = client.get("/api/v1/oauth/authorize", params=params)
        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert resp.headers["location"].startswith(REDIRECT_URI)
        assert query["error"] == "invalid_scope"
        assert query["state"] == "xyz"

    def test_member_gets_access_denied(self, client, sign_in):
        sign_in("u2")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = client.get("/api/v1/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "access_denied"

    def test_tampered_session_cookie_ignored(self, client, settings):
        client.cookies.set(settings.session_cookie_name, "u1:9999999999:deadbeef")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = client.get("/api/v1/oauth/authorize", params=_authorize_params(client_id, challenge))
        assert resp.headers["location"].startswith("https://app.example/auth/login?")

    def test_approve_redirects_with_code(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = _approve(client, client_id, challenge)
        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert resp.headers["location"].startswith(REDIRECT_URI + "?")
        assert query["code"]
        assert query["state"] == "xyz"

    def test_deny(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = _approve(client, client_id, challenge, decision="deny")
        query = _query(resp.headers["location"])
        assert query["error"] == "access_denied"
        assert "code" not in query

    def test_approve_without_session(self, client):
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        resp = _approve(client, client_id, challenge)
        assert _query(resp.headers["location"])["error"] == "access_denied"

    def test_rate_limited(self, client):
        responses = [client.get("/api/v1/oauth/authorize") for _ in range(11)]
        assert responses[0].status_code == 400
        assert responses[-1].status_code == 429
        assert "Retry-After" in responses[-1].headers


# ===================== Token =====================


class TestTokenEndpoint:
    def test_code_exchange(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        verifier, challenge = _make_pkce_pair()
        code = _query(_approve(client, client_id, challenge).headers["location"])["code"]

        resp = _exchange(client, client_id, code, verifier)
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["pragma"] == "no-cache"
        data = resp.json()
        assert data["access_token"].startswith("agat_")
        assert data["refresh_token"].startswith("agrt_")
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 900
        assert data["scope"] == SCOPE

    def test_narrowed_approval_reflected_in_scope(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        verifier, challenge = _make_pkce_pair()
        resp = _approve(client, client_id, challenge, tools=["query_tasks"])
        code = _query(resp.headers["location"])["code"]
        data = _exchange(client, client_id, code, verifier).json()
        assert data["scope"] == "mcp:workspace:w1 mcp:tool:query_tasks"

    def test_code_is_single_use(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        verifier, challenge = _make_pkce_pair()
        code = _query(_approve(client, client_id, challenge).headers["location"])["code"]
        assert _exchange(client, client_id, code, verifier).status_code == 200
        second = _exchange(client, client_id, code, verifier)
        assert second.status_code == 400
        assert second.json()["error"] == "invalid_grant"
        assert second.headers["cache-control"] == "no-store"

    def test_wrong_verifier(self, client, sign_in):
        sign_in("u1")
        client_id = _register(client)
        _, challenge = _make_pkce_pair()
        code = _query(_approve(client, client_id, challenge).headers["location"])["code"]
        resp = _exchange(client, client_id, code, "x" * 43)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"

    def test_refresh(self, client, authorized):
        client_id, tokens = authorized
        resp = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
                "scope": "mcp:workspace:w1 mcp:tool:query_tasks",
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["access_token"] != tokens["access_token"]
        assert data["scope"] == "mcp:workspace:w1 mcp:tool:query_tasks"
        assert "refresh_token" not in data

    def test_refresh_cannot_widen(self, client, authorized):
        client_id, tokens = authorized
        resp = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
                "scope": "mcp:workspace:w1 mcp:tool:delete_task",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_scope"

    def test_missing_grant_type(self, client):
        resp = client.post("/api/v1/oauth/token", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_unsupported_grant_type(self, client):
        resp = client.post("/api/v1/oauth/token", data={"grant_type": "password"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"

    def test_unknown_client(self, client, authorized):
        _, tokens = authorized
        resp = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": "agc_unknown",
            },
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"


# ===================== Revoke =====================


class TestRevokeEndpoint:
    def test_revoke_access_token(self, client, authorized):
        client_id, tokens = authorized
        resp = client.post(
            "/api/v1/oauth/revoke", data={"token": tokens["access_token"], "client_id": client_id}
        )
        assert resp.status_code == 200
        assert resp.content == b""

        tools = client.get(
            "/api/v1/mcp/tools", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert tools.status_code == 401

    def test_revoke_refresh_token_cascades(self, client, authorized):
        client_id, tokens = authorized
        client.post(
            "/api/v1/oauth/revoke",
            data={"token": tokens["refresh_token"], "token_type_hint": "refresh_token"},
        )
        tools = client.get(
            "/api/v1/mcp/tools", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert tools.status_code == 401
        refreshed = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": tokens["refresh_token"],
                "client_id": client_id,
            },
        )
        assert refreshed.json()["error"] == "invalid_grant"

    def test_unknown_token_still_ok(self, client):
        resp = client.post("/api/v1/oauth/revoke", data={"token": "agat_nothing"})
        assert resp.status_code == 200

    def test_missing_token(self, client):
        resp = client.post("/api/v1/oauth/revoke", data={})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
