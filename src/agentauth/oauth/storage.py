# OAuth2 persistence on SQLite.
# Created: 2026-02-20
#
# Every request opens its own connection, so several server processes can
# share one database file. Invariants that must hold across processes
# (single-use codes, consent upsert, cascade revocation) are expressed as
# conditional updates inside BEGIN IMMEDIATE transactions, never as
# in-process locks.

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from agentauth.oauth.models import (
    AuthorizationCode,
    Connection,
    Consent,
    NewToken,
    OAuthClient,
    TokenRecord,
)
from agentauth.oauth.scopes import ScopeGrant, validate_requested_scopes

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS oauth_clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_id TEXT NOT NULL UNIQUE,
    client_name TEXT NOT NULL,
    redirect_uris TEXT NOT NULL,
    grant_types TEXT NOT NULL,
    response_types TEXT NOT NULL,
    token_endpoint_auth_method TEXT NOT NULL,
    scope TEXT,
    client_uri TEXT,
    logo_uri TEXT,
    tos_uri TEXT,
    policy_uri TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_consents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    client_pk INTEGER NOT NULL REFERENCES oauth_clients(id),
    approved_scopes TEXT NOT NULL,
    granted_by_role TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, workspace_id, client_pk)
);

CREATE TABLE IF NOT EXISTS oauth_authorization_codes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code_hash TEXT NOT NULL UNIQUE,
    client_pk INTEGER NOT NULL REFERENCES oauth_clients(id),
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    scope TEXT NOT NULL,
    code_challenge TEXT NOT NULL,
    code_challenge_method TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    consumed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_access_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_hash TEXT NOT NULL UNIQUE,
    token_prefix TEXT NOT NULL,
    client_pk INTEGER NOT NULL REFERENCES oauth_clients(id),
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    scope TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_refresh_tokens (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_hash TEXT NOT NULL UNIQUE,
    token_prefix TEXT NOT NULL,
    access_token_id INTEGER REFERENCES oauth_access_tokens(id),
    client_pk INTEGER NOT NULL REFERENCES oauth_clients(id),
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    scope TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    revoked_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_access_tokens_prefix ON oauth_access_tokens (token_prefix);
CREATE INDEX IF NOT EXISTS idx_refresh_tokens_prefix ON oauth_refresh_tokens (token_prefix);
CREATE INDEX IF NOT EXISTS idx_access_tokens_binding
    ON oauth_access_tokens (user_id, client_pk, workspace_id);
CREATE INDEX IF NOT EXISTS idx_refresh_tokens_binding
    ON oauth_refresh_tokens (user_id, client_pk, workspace_id);
"""

_TOKEN_TABLES = ("oauth_access_tokens", "oauth_refresh_tokens")


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC timestamp so that string comparison in SQL is chronological."""
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _grant(scope: str) -> ScopeGrant:
    grant, error = validate_requested_scopes(scope)
    if error is not None:
        raise ValueError(f"Stored scope is corrupt: {error.description}")
    return grant


def _client_from_row(row: sqlite3.Row) -> OAuthClient:
    return OAuthClient(
        id=row["id"],
        client_id=row["client_id"],
        client_name=row["client_name"],
        redirect_uris=json.loads(row["redirect_uris"]),
        grant_types=json.loads(row["grant_types"]),
        response_types=json.loads(row["response_types"]),
        token_endpoint_auth_method=row["token_endpoint_auth_method"],
        scope=row["scope"],
        client_uri=row["client_uri"],
        logo_uri=row["logo_uri"],
        tos_uri=row["tos_uri"],
        policy_uri=row["policy_uri"],
        created_at=_dt(row["created_at"]),
    )


def _consent_from_row(row: sqlite3.Row) -> Consent:
    return Consent(
        id=row["id"],
        user_id=row["user_id"],
        workspace_id=row["workspace_id"],
        client_pk=row["client_pk"],
        grant=_grant(row["approved_scopes"]),
        granted_by_role=row["granted_by_role"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


def _code_from_row(row: sqlite3.Row) -> AuthorizationCode:
    return AuthorizationCode(
        id=row["id"],
        code_hash=row["code_hash"],
        client_pk=row["client_pk"],
        user_id=row["user_id"],
        workspace_id=row["workspace_id"],
        redirect_uri=row["redirect_uri"],
        grant=_grant(row["scope"]),
        code_challenge=row["code_challenge"],
        code_challenge_method=row["code_challenge_method"],
        expires_at=_dt(row["expires_at"]),
        consumed_at=_dt(row["consumed_at"]),
        created_at=_dt(row["created_at"]),
    )


def _token_from_row(row: sqlite3.Row) -> TokenRecord:
    keys = row.keys()
    return TokenRecord(
        id=row["id"],
        token_hash=row["token_hash"],
        token_prefix=row["token_prefix"],
        client_pk=row["client_pk"],
        user_id=row["user_id"],
        workspace_id=row["workspace_id"],
        scope=row["scope"],
        expires_at=_dt(row["expires_at"]),
        revoked_at=_dt(row["revoked_at"]),
        created_at=_dt(row["created_at"]),
        access_token_id=row["access_token_id"] if "access_token_id" in keys else None,
    )


class OAuthStorage:
    """SQLite-backed store for clients, consents, codes and tokens."""

    def __init__(self, db_path: Path | str, busy_timeout: float = 10.0):
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database write lock up front."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        logger.debug("OAuth storage ready at %s", self._db_path)

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def create_client(self, client: OAuthClient) -> OAuthClient:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO oauth_clients (
                    client_id, client_name, redirect_uris, grant_types, response_types,
                    token_endpoint_auth_method, scope, client_uri, logo_uri, tos_uri,
                    policy_uri, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    client.client_id,
                    client.client_name,
                    json.dumps(client.redirect_uris),
                    json.dumps(client.grant_types),
                    json.dumps(client.response_types),
                    client.token_endpoint_auth_method,
                    client.scope,
                    client.client_uri,
                    client.logo_uri,
                    client.tos_uri,
                    client.policy_uri,
                    _ts(client.created_at),
                ),
            )
            client.id = cursor.lastrowid
        return client

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_clients WHERE client_id = ?", (client_id,)
            ).fetchone()
        return _client_from_row(row) if row else None

    def get_client_by_pk(self, client_pk: int) -> OAuthClient | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM oauth_clients WHERE id = ?", (client_pk,)).fetchone()
        return _client_from_row(row) if row else None

    # ------------------------------------------------------------------
    # Consents
    # ------------------------------------------------------------------

    def upsert_consent(
        self,
        user_id: str,
        workspace_id: str,
        client_pk: int,
        grant: ScopeGrant,
        granted_by_role: str,
        now: datetime,
    ) -> Consent:
        """Insert or replace the single consent row for (user, workspace, client)."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_consents (
                    user_id, workspace_id, client_pk, approved_scopes, granted_by_role,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, workspace_id, client_pk) DO UPDATE SET
                    approved_scopes = excluded.approved_scopes,
                    granted_by_role = excluded.granted_by_role,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    workspace_id,
                    client_pk,
                    grant.scope_string,
                    granted_by_role,
                    _ts(now),
                    _ts(now),
                ),
            )
            row = conn.execute(
                """
                SELECT * FROM oauth_consents
                WHERE user_id = ? AND workspace_id = ? AND client_pk = ?
                """,
                (user_id, workspace_id, client_pk),
            ).fetchone()
        return _consent_from_row(row)

    def get_consent(self, consent_id: int, workspace_id: str) -> Consent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_consents WHERE id = ? AND workspace_id = ?",
                (consent_id, workspace_id),
            ).fetchone()
        return _consent_from_row(row) if row else None

    def find_consent(self, user_id: str, workspace_id: str, client_pk: int) -> Consent | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM oauth_consents
                WHERE user_id = ? AND workspace_id = ? AND client_pk = ?
                """,
                (user_id, workspace_id, client_pk),
            ).fetchone()
        return _consent_from_row(row) if row else None

    def list_connections(self, workspace_id: str) -> list[Connection]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.*, cl.client_id AS public_client_id, cl.client_name,
                       (SELECT MAX(a.created_at) FROM oauth_access_tokens a
                         WHERE a.user_id = c.user_id
                           AND a.client_pk = c.client_pk
                           AND a.workspace_id = c.workspace_id) AS last_activity_at
                FROM oauth_consents c
                JOIN oauth_clients cl ON cl.id = c.client_pk
                WHERE c.workspace_id = ?
                ORDER BY c.updated_at DESC, c.id DESC
                """,
                (workspace_id,),
            ).fetchall()

        connections = []
        for row in rows:
            grant = _grant(row["approved_scopes"])
            connections.append(
                Connection(
                    consent_id=row["id"],
                    workspace_id=row["workspace_id"],
                    client_id=row["public_client_id"],
                    client_name=row["client_name"],
                    granted_by_user_id=row["user_id"],
                    granted_by_role=row["granted_by_role"],
                    tool_scopes=sorted(grant.tool_names),
                    created_at=_dt(row["created_at"]),
                    updated_at=_dt(row["updated_at"]),
                    last_activity_at=_dt(row["last_activity_at"]),
                )
            )
        return connections

    def narrow_consent(
        self,
        consent_id: int,
        workspace_id: str,
        expected: ScopeGrant,
        narrowed: ScopeGrant,
        now: datetime,
    ) -> bool:
        """Compare-and-set the consent scopes and narrow live tokens to match.

        Returns False when the consent vanished or changed since *expected*
        was read. Live tokens are intersected with the new tool set; a token
        left with no tools is revoked.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE oauth_consents SET approved_scopes = ?, updated_at = ?
                WHERE id = ? AND workspace_id = ? AND approved_scopes = ?
                """,
                (narrowed.scope_string, _ts(now), consent_id, workspace_id, expected.scope_string),
            )
            if cursor.rowcount != 1:
                return False

            consent = conn.execute(
                "SELECT * FROM oauth_consents WHERE id = ?", (consent_id,)
            ).fetchone()
            for table in _TOKEN_TABLES:
                rows = conn.execute(
                    f"""
                    SELECT id, scope FROM {table}
                    WHERE user_id = ? AND client_pk = ? AND workspace_id = ?
                      AND revoked_at IS NULL
                    """,
                    (consent["user_id"], consent["client_pk"], consent["workspace_id"]),
                ).fetchall()
                for row in rows:
                    grant, error = validate_requested_scopes(row["scope"])
                    remaining = grant.narrow(narrowed.tool_names) if error is None else None
                    if remaining is None or not remaining.tool_names:
                        conn.execute(
                            f"UPDATE {table} SET revoked_at = ? WHERE id = ?",
                            (_ts(now), row["id"]),
                        )
                    else:
                        conn.execute(
                            f"UPDATE {table} SET scope = ? WHERE id = ?",
                            (remaining.scope_string, row["id"]),
                        )

            # Codes not yet exchanged follow the same rule as live tokens
            codes = conn.execute(
                """
                SELECT id, scope FROM oauth_authorization_codes
                WHERE user_id = ? AND client_pk = ? AND workspace_id = ? AND consumed_at IS NULL
                """,
                (consent["user_id"], consent["client_pk"], consent["workspace_id"]),
            ).fetchall()
            for row in codes:
                grant, error = validate_requested_scopes(row["scope"])
                remaining = grant.narrow(narrowed.tool_names) if error is None else None
                if remaining is None or not remaining.tool_names:
                    conn.execute("DELETE FROM oauth_authorization_codes WHERE id = ?", (row["id"],))
                else:
                    conn.execute(
                        "UPDATE oauth_authorization_codes SET scope = ? WHERE id = ?",
                        (remaining.scope_string, row["id"]),
                    )
        return True

    def delete_consent(self, consent_id: int, workspace_id: str, now: datetime) -> bool:
        """Delete a consent and revoke every live token issued under it."""
        with self._transaction() as conn:
            consent = conn.execute(
                "SELECT * FROM oauth_consents WHERE id = ? AND workspace_id = ?",
                (consent_id, workspace_id),
            ).fetchone()
            if consent is None:
                return False
            conn.execute("DELETE FROM oauth_consents WHERE id = ?", (consent_id,))
            for table in _TOKEN_TABLES:
                conn.execute(
                    f"""
                    UPDATE {table} SET revoked_at = ?
                    WHERE user_id = ? AND client_pk = ? AND workspace_id = ?
                      AND revoked_at IS NULL
                    """,
                    (_ts(now), consent["user_id"], consent["client_pk"], consent["workspace_id"]),
                )
            conn.execute(
                """
                DELETE FROM oauth_authorization_codes
                WHERE user_id = ? AND client_pk = ? AND workspace_id = ? AND consumed_at IS NULL
                """,
                (consent["user_id"], consent["client_pk"], consent["workspace_id"]),
            )
        return True

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    def store_code(
        self,
        code_hash: str,
        client_pk: int,
        user_id: str,
        workspace_id: str,
        redirect_uri: str,
        grant: ScopeGrant,
        code_challenge: str,
        code_challenge_method: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_authorization_codes (
                    code_hash, client_pk, user_id, workspace_id, redirect_uri, scope,
                    code_challenge, code_challenge_method, expires_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    code_hash,
                    client_pk,
                    user_id,
                    workspace_id,
                    redirect_uri,
                    grant.scope_string,
                    code_challenge,
                    code_challenge_method,
                    _ts(expires_at),
                    _ts(now),
                ),
            )

    def get_code(self, code_hash: str) -> AuthorizationCode | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_authorization_codes WHERE code_hash = ?", (code_hash,)
            ).fetchone()
        return _code_from_row(row) if row else None

    def redeem_code(
        self,
        code_id: int,
        access: NewToken,
        refresh: NewToken,
        now: datetime,
    ) -> bool:
        """Consume a code and mint its token pair in one transaction.

        The conditional update is the single-use guarantee: of any number of
        concurrent redemptions exactly one sees rowcount 1. It also fails when
        the code was narrowed or removed after *access* was minted from it.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE oauth_authorization_codes SET consumed_at = ?
                WHERE id = ? AND consumed_at IS NULL AND expires_at > ? AND scope = ?
                """,
                (_ts(now), code_id, _ts(now), access.scope),
            )
            if cursor.rowcount != 1:
                return False

            code = conn.execute(
                "SELECT * FROM oauth_authorization_codes WHERE id = ?", (code_id,)
            ).fetchone()
            binding = (code["client_pk"], code["user_id"], code["workspace_id"])
            access_id = self._insert_token(conn, "oauth_access_tokens", access, binding, now)
            self._insert_token(conn, "oauth_refresh_tokens", refresh, binding, now, access_id)
        return True

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_token(
        conn: sqlite3.Connection,
        table: str,
        token: NewToken,
        binding: tuple[int, str, str],
        now: datetime,
        access_token_id: int | None = None,
    ) -> int:
        client_pk, user_id, workspace_id = binding
        columns = [
            "token_hash",
            "token_prefix",
            "client_pk",
            "user_id",
            "workspace_id",
            "scope",
            "expires_at",
            "created_at",
        ]
        values = [
            token.token_hash,
            token.token_prefix,
            client_pk,
            user_id,
            workspace_id,
            token.scope,
            _ts(token.expires_at),
            _ts(now),
        ]
        if table == "oauth_refresh_tokens":
            columns.append("access_token_id")
            values.append(access_token_id)
        placeholders = ", ".join("?" for _ in columns)
        cursor = conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", values
        )
        return cursor.lastrowid

    def find_access_tokens(self, token_prefix: str) -> list[TokenRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM oauth_access_tokens WHERE token_prefix = ?", (token_prefix,)
            ).fetchall()
        return [_token_from_row(r) for r in rows]

    def find_refresh_tokens(self, token_prefix: str) -> list[TokenRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM oauth_refresh_tokens WHERE token_prefix = ?", (token_prefix,)
            ).fetchall()
        return [_token_from_row(r) for r in rows]

    def get_access_token(self, token_id: int) -> TokenRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_access_tokens WHERE id = ?", (token_id,)
            ).fetchone()
        return _token_from_row(row) if row else None

    def rotate_access_token(
        self,
        refresh: TokenRecord,
        access: NewToken,
        now: datetime,
    ) -> int | None:
        """Mint a new access token behind *refresh* and revoke the one it replaces.

        Compare-and-set on the refresh row's current access token: when two
        refreshes race, only the first re-points the row; the other gets None.
        """
        with self._transaction() as conn:
            binding = (refresh.client_pk, refresh.user_id, refresh.workspace_id)
            new_id = self._insert_token(conn, "oauth_access_tokens", access, binding, now)
            cursor = conn.execute(
                """
                UPDATE oauth_refresh_tokens SET access_token_id = ?
                WHERE id = ? AND revoked_at IS NULL AND expires_at > ?
                  AND access_token_id IS ?
                """,
                (new_id, refresh.id, _ts(now), refresh.access_token_id),
            )
            if cursor.rowcount != 1:
                conn.execute("DELETE FROM oauth_access_tokens WHERE id = ?", (new_id,))
                return None
            if refresh.access_token_id is not None:
                conn.execute(
                    """
                    UPDATE oauth_access_tokens SET revoked_at = ?
                    WHERE id = ? AND revoked_at IS NULL
                    """,
                    (_ts(now), refresh.access_token_id),
                )
        return new_id

    def revoke_access_token(self, token_id: int, now: datetime) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE oauth_access_tokens SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL",
                (_ts(now), token_id),
            )
        return cursor.rowcount == 1

    def revoke_refresh_token(self, token_id: int, now: datetime) -> bool:
        """Revoke a refresh token together with the access token it backs."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT access_token_id FROM oauth_refresh_tokens WHERE id = ?", (token_id,)
            ).fetchone()
            if row is None:
                return False
            cursor = conn.execute(
                "UPDATE oauth_refresh_tokens SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL",
                (_ts(now), token_id),
            )
            revoked = cursor.rowcount == 1
            if row["access_token_id"] is not None:
                conn.execute(
                    """
                    UPDATE oauth_access_tokens SET revoked_at = ?
                    WHERE id = ? AND revoked_at IS NULL
                    """,
                    (_ts(now), row["access_token_id"]),
                )
        return revoked
