# Connection management: what agents a workspace has authorized, and edits.
# Created: 2026-02-20

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from agentauth.oauth.errors import INVALID_SCOPE, NOT_FOUND, OAuthError, OAuthResult
from agentauth.oauth.models import Connection, utcnow
from agentauth.oauth.scopes import ScopeGrant, validate_tool_names
from agentauth.oauth.storage import OAuthStorage
from agentauth.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)


def _not_found() -> OAuthError:
    return OAuthError(NOT_FOUND, "Connection not found", 404)


class ConnectionManager:
    """Lists, narrows and deletes consents for workspace admins."""

    def __init__(
        self,
        storage: OAuthStorage,
        audit: AuditLogger,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.audit = audit
        self._clock = clock

    def list_connections(self, workspace_id: str) -> list[Connection]:
        return self.storage.list_connections(workspace_id)

    def get_connection(self, workspace_id: str, consent_id: int) -> Connection | None:
        for connection in self.list_connections(workspace_id):
            if connection.consent_id == consent_id:
                return connection
        return None

    def narrow_connection(
        self,
        workspace_id: str,
        consent_id: int,
        tool_names: Iterable[str],
        actor_user_id: str,
    ) -> OAuthResult[Connection]:
        """Reduce a consent to a subset of its tools.

        Outstanding tokens under the consent lose the removed tools at once;
        tokens left with no tools are revoked. Widening is refused.
        """
        names, error = validate_tool_names(tool_names)
        if error is not None:
            return None, error

        consent = self.storage.get_consent(consent_id, workspace_id)
        if consent is None:
            return None, _not_found()

        current = consent.grant
        if not names <= current.tool_names:
            added = sorted(names - current.tool_names)
            return None, OAuthError(
                INVALID_SCOPE, f"Cannot add tools to an existing connection: {', '.join(added)}"
            )

        narrowed = ScopeGrant(current.workspace_id, names)
        if narrowed != current:
            if not self.storage.narrow_consent(
                consent_id, workspace_id, current, narrowed, self._clock()
            ):
                logger.warning("Consent %d changed or vanished during narrowing", consent_id)
                return None, OAuthError(
                    INVALID_SCOPE, "Connection was modified concurrently, reload and retry", 409
                )
            self.audit.log_oauth_event(
                action="connection_narrowed",
                actor=actor_user_id,
                target=f"workspace:{workspace_id}",
                severity=AuditSeverity.WARNING,
                consent_id=consent_id,
                removed_tools=sorted(current.tool_names - names),
                tool_scopes=sorted(names),
            )

        connection = self.get_connection(workspace_id, consent_id)
        if connection is None:
            return None, _not_found()
        return connection, None

    def delete_connection(
        self, workspace_id: str, consent_id: int, actor_user_id: str
    ) -> OAuthError | None:
        """Delete a consent and revoke every live token issued under it."""
        if not self.storage.delete_consent(consent_id, workspace_id, self._clock()):
            return _not_found()
        logger.info("Deleted connection %d in workspace %s", consent_id, workspace_id)
        self.audit.log_oauth_event(
            action="connection_deleted",
            actor=actor_user_id,
            target=f"workspace:{workspace_id}",
            severity=AuditSeverity.WARNING,
            consent_id=consent_id,
        )
        return None
