# Tests for dynamic client registration and redirect validation.
# Created: 2026-02-20

import pytest

from agentauth.oauth.clients import client_metadata

REDIRECT_URI = "https://client.example/cb"


class TestRegisterClient:
    def test_registers_public_client(self, registry, audit_events):
        client, error = registry.register_client(
            {"client_name": "Agent", "redirect_uris": [REDIRECT_URI], "logo_uri": "https://x/l.png"}
        )
        assert error is None
        assert client.client_id.startswith("agc_")
        assert client.redirect_uris == [REDIRECT_URI]
        assert client.token_endpoint_auth_method == "none"
        assert client.grant_types == ["authorization_code", "refresh_token"]
        assert client.logo_uri == "https://x/l.png"
        assert audit_events[-1]["action"] == "client_registered"

    def test_persisted(self, registry, storage):
        client, _ = registry.register_client(
            {"client_name": "Agent", "redirect_uris": [REDIRECT_URI, "http://127.0.0.1:9/cb"]}
        )
        stored = storage.get_client(client.client_id)
        assert stored.id == client.id
        assert stored.redirect_uris == [REDIRECT_URI, "http://127.0.0.1:9/cb"]

    def test_client_ids_unique(self, registry):
        a, _ = registry.register_client({"client_name": "A", "redirect_uris": [REDIRECT_URI]})
        b, _ = registry.register_client({"client_name": "B", "redirect_uris": [REDIRECT_URI]})
        assert a.client_id != b.client_id

    def test_metadata_body(self, registry):
        client, _ = registry.register_client({"client_name": "A", "redirect_uris": [REDIRECT_URI]})
        body = client_metadata(client)
        assert body["client_id"] == client.client_id
        assert isinstance(body["client_id_issued_at"], int)
        assert "logo_uri" not in body

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"redirect_uris": [REDIRECT_URI]}, "invalid_client_metadata"),
            ({"client_name": "  ", "redirect_uris": [REDIRECT_URI]}, "invalid_client_metadata"),
            ({"client_name": "A"}, "invalid_redirect_uri"),
            ({"client_name": "A", "redirect_uris": []}, "invalid_redirect_uri"),
            ({"client_name": "A", "redirect_uris": ["/relative/cb"]}, "invalid_redirect_uri"),
            ({"client_name": "A", "redirect_uris": ["https://x.example/cb#frag"]}, "invalid_redirect_uri"),
            ({"client_name": "A", "redirect_uris": ["https:///cb"]}, "invalid_redirect_uri"),
            ({"client_name": "A", "redirect_uris": ["http://[::1"]}, "invalid_redirect_uri"),
            (
                {
                    "client_name": "A",
                    "redirect_uris": [REDIRECT_URI],
                    "token_endpoint_auth_method": "client_secret_basic",
                },
                "invalid_client_metadata",
            ),
            (
                {"client_name": "A", "redirect_uris": [REDIRECT_URI], "grant_types": ["implicit"]},
                "invalid_client_metadata",
            ),
            (
                {"client_name": "A", "redirect_uris": [REDIRECT_URI], "response_types": ["token"]},
                "invalid_client_metadata",
            ),
            ({"client_name": "A", "redirect_uris": "https://x/cb"}, "invalid_client_metadata"),
        ],
    )
    def test_rejects_bad_metadata(self, registry, payload, expected):
        client, error = registry.register_client(payload)
        assert client is None
        assert error.error == expected
        assert error.status_code == 400

    def test_rejects_non_object(self, registry):
        _, error = registry.register_client(["not", "a", "dict"])
        assert error.error == "invalid_client_metadata"


class TestValidateClientRedirect:
    def test_exact_match(self, registry, oauth_client):
        client, error = registry.validate_client_redirect(oauth_client.client_id, REDIRECT_URI)
        assert error is None
        assert client.id == oauth_client.id

    def test_unknown_client(self, registry):
        client, error = registry.validate_client_redirect("agc_missing", REDIRECT_URI)
        assert client is None
        assert error.error == "invalid_client"
        assert error.status_code == 401

    @pytest.mark.parametrize(
        "redirect_uri",
        [
            "https://client.example/cb/",
            "https://client.example/cb?x=1",
            "https://client.example/c",
            "https://evil.example/cb",
            "HTTPS://client.example/cb",
        ],
    )
    def test_no_prefix_or_fuzzy_matching(self, registry, oauth_client, redirect_uri):
        _, error = registry.validate_client_redirect(oauth_client.client_id, redirect_uri)
        assert error.error == "invalid_request"
