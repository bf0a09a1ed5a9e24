"""HMAC-based stateless session tokens identifying the signed-in human.

Token format: ``{user_id}:{expires_unix}:{hex_hmac}``

The web app that owns sign-in issues these as a cookie; the authorization
server only verifies them. Rotating the secret invalidates every outstanding
session.
"""

import hashlib
import hmac
import time

__all__ = ["create_session_token", "verify_session_token"]


def create_session_token(secret: str, user_id: str, ttl_hours: int = 24) -> str:
    """Issue a session token for *user_id* that expires after *ttl_hours*."""
    if not user_id or ":" in user_id:
        raise ValueError("user_id must be non-empty and must not contain ':'")
    expires = int(time.time()) + ttl_hours * 3600
    sig = _sign(secret, f"{user_id}:{expires}")
    return f"{user_id}:{expires}:{sig}"


def verify_session_token(token: str, secret: str) -> str | None:
    """Verify a session token. Returns the user id if valid and not expired."""
    parts = token.split(":")
    if len(parts) != 3:
        return None

    user_id, expires_str, sig = parts
    try:
        expires = int(expires_str)
    except ValueError:
        return None

    if not user_id or time.time() > expires:
        return None

    expected = _sign(secret, f"{user_id}:{expires_str}")
    if not hmac.compare_digest(sig.encode(), expected.encode()):
        return None
    return user_id


def _sign(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()
