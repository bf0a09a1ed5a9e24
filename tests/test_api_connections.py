# Tests for the connection management and tool gateway HTTP endpoints.
# Created: 2026-02-20

import secrets
from urllib.parse import parse_qs, urlsplit

import pytest

from agentauth.oauth.pkce import build_s256_code_challenge

REDIRECT_URI = "https://client.example/cb"
SCOPE = "mcp:workspace:w1 mcp:tool:create_task mcp:tool:query_tasks"


@pytest.fixture
def tokens(client, sign_in):
    """Authorize an agent in w1 as u1 through the HTTP flow."""
    sign_in("u1")
    client_id = client.post(
        "/api/v1/oauth/register",
        json={"client_name": "Planner Bot", "redirect_uris": [REDIRECT_URI]},
    ).json()["client_id"]
    verifier = secrets.token_urlsafe(32)
    resp = client.post(
        "/api/v1/oauth/authorize",
        data={
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "scope": SCOPE,
            "state": "s",
            "code_challenge": build_s256_code_challenge(verifier),
            "code_challenge_method": "S256",
            "workspace_scope": "mcp:workspace:w1",
            "decision": "approve",
            "approved_tools": ["create_task", "query_tasks"],
        },
    )
    code = parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]
    data = client.post(
        "/api/v1/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "code_verifier": verifier,
        },
    ).json()
    data["client_id"] = client_id
    return data


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestConnectionsAPI:
    def test_list(self, client, tokens):
        resp = client.get("/api/v1/workspaces/w1/connections")
        assert resp.status_code == 200
        connections = resp.json()["connections"]
        assert len(connections) == 1
        conn = connections[0]
        assert conn["client_id"] == tokens["client_id"]
        assert conn["client_name"] == "Planner Bot"
        assert conn["granted_by_user_id"] == "u1"
        assert conn["granted_by_role"] == "owner"
        assert conn["tool_scopes"] == ["create_task", "query_tasks"]
        assert conn["last_activity_at"] is not None

    def test_requires_session(self, client, tokens):
        client.cookies.clear()
        resp = client.get("/api/v1/workspaces/w1/connections")
        assert resp.status_code == 401
        assert resp.json()["error"] == "access_denied"

    def test_member_forbidden(self, client, tokens, sign_in):
        sign_in("u2")
        resp = client.get("/api/v1/workspaces/w1/connections")
        assert resp.status_code == 403

    def test_other_workspace_empty_for_its_admin(self, client, roles, sign_in):
        roles.set_role("w2", "u3", "admin")
        sign_in("u3")
        resp = client.get("/api/v1/workspaces/w2/connections")
        assert resp.status_code == 200
        assert resp.json()["connections"] == []

    def test_narrow(self, client, tokens):
        consent_id = client.get("/api/v1/workspaces/w1/connections").json()["connections"][0][
            "consent_id"
        ]
        resp = client.patch(
            f"/api/v1/workspaces/w1/connections/{consent_id}/scopes",
            json={"tool_scopes": ["mcp:tool:query_tasks"]},
        )
        assert resp.status_code == 200
        assert resp.json()["tool_scopes"] == ["query_tasks"]

        denied = client.post("/api/v1/mcp/tools/create_task", headers=_bearer(tokens["access_token"]))
        assert denied.status_code == 403
        assert denied.json()["error"] == "invalid_scope"

    def test_narrow_accepts_bare_names(self, client, tokens):
        consent_id = client.get("/api/v1/workspaces/w1/connections").json()["connections"][0][
            "consent_id"
        ]
        resp = client.patch(
            f"/api/v1/workspaces/w1/connections/{consent_id}/scopes",
            json={"tool_scopes": ["create_task"]},
        )
        assert resp.json()["tool_scopes"] == ["create_task"]

    def test_widen_rejected(self, client, tokens):
        consent_id = client.get("/api/v1/workspaces/w1/connections").json()["connections"][0][
            "consent_id"
        ]
        resp = client.patch(
            f"/api/v1/workspaces/w1/connections/{consent_id}/scopes",
            json={"tool_scopes": ["query_tasks", "delete_task"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_scope"

    def test_empty_body_rejected(self, client, tokens):
        resp = client.patch("/api/v1/workspaces/w1/connections/1/scopes", json={"tool_scopes": []})
        assert resp.status_code == 422

    def test_delete(self, client, tokens):
        consent_id = client.get("/api/v1/workspaces/w1/connections").json()["connections"][0][
            "consent_id"
        ]
        resp = client.delete(f"/api/v1/workspaces/w1/connections/{consent_id}")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert client.get("/api/v1/workspaces/w1/connections").json()["connections"] == []

        tools = client.get("/api/v1/mcp/tools", headers=_bearer(tokens["access_token"]))
        assert tools.status_code == 401

    def test_delete_unknown(self, client, tokens):
        resp = client.delete("/api/v1/workspaces/w1/connections/999")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


class TestToolGatewayAPI:
    def test_list_tools(self, client, tokens):
        resp = client.get("/api/v1/mcp/tools", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["workspace_id"] == "w1"
        assert data["client_id"] == tokens["client_id"]
        assert [t["name"] for t in data["tools"]] == ["create_task", "query_tasks"]

    def test_call_tool(self, client, tokens):
        resp = client.post(
            "/api/v1/mcp/tools/create_task",
            headers=_bearer(tokens["access_token"]),
            json={"arguments": {"title": "Write docs"}},
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "tool": "create_task",
            "result": {"id": 42, "workspace": "w1", "title": "Write docs"},
        }

    def test_call_without_body(self, client, tokens):
        resp = client.post("/api/v1/mcp/tools/query_tasks", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["result"] == []

    def test_missing_token_challenge(self, client):
        resp = client.get("/api/v1/mcp/tools")
        assert resp.status_code == 401
        challenge = resp.headers["www-authenticate"]
        assert challenge.startswith("Bearer ")
        assert (
            'resource_metadata="http://testserver/.well-known/oauth-protected-resource/api/v1/mcp"'
            in challenge
        )
        assert 'error="invalid_token"' in challenge

    def test_wrong_scheme(self, client, tokens):
        resp = client.get(
            "/api/v1/mcp/tools", headers={"Authorization": f"Basic {tokens['access_token']}"}
        )
        assert resp.status_code == 401

    def test_out_of_scope_tool(self, client, tokens):
        resp = client.post("/api/v1/mcp/tools/delete_task", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 403
        assert "www-authenticate" not in resp.headers

    def test_demoted_user(self, client, tokens, roles):
        roles.set_role("w1", "u1", "member")
        resp = client.post("/api/v1/mcp/tools/create_task", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 403
        assert resp.json()["error"] == "access_denied"
