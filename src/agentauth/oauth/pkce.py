# PKCE (RFC 7636) helpers. Only the S256 method is supported.
# Created: 2026-02-20

from __future__ import annotations

import base64
import hashlib
import hmac

from agentauth.oauth.errors import INVALID_REQUEST, OAuthError

S256 = "S256"


def build_s256_code_challenge(code_verifier: str) -> str:
    """S256 challenge: BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(code_verifier: str, code_challenge: str) -> bool:
    try:
        expected = build_s256_code_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode(), code_challenge.encode())


def validate_challenge_method(method: str | None) -> OAuthError | None:
    if method != S256:
        return OAuthError(INVALID_REQUEST, "Only code_challenge_method=S256 is supported")
    return None
