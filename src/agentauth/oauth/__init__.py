# OAuth 2.1 core: scope grammar, PKCE, storage, issuance and verification.
# Created: 2026-02-20
