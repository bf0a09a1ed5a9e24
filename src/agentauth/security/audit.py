"""
Grant audit trail.
Created: 2026-02-20

One JSON object per line for every decision that changes or exercises a
grant: client registration, consent, code exchange, refresh, revocation,
connection edits and refused tool calls. Events carry identifiers and scope
names only; token and code values never reach this module.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")

AuditListener = Callable[[dict[str, Any]], None]


class AuditSeverity(str, Enum):
    INFO = "info"  # token issued or refreshed
    WARNING = "warning"  # grant narrowed or removed
    ALERT = "alert"  # refused tool call


@dataclass(frozen=True)
class AuditEvent:
    action: str  # consent_granted, token_revoked, ...
    actor: str  # human user id, or "client:<client_id>"
    target: str  # workspace:<id>, client:<id>, tool:<name>
    status: str = "success"  # success | denied | error
    severity: AuditSeverity = AuditSeverity.INFO
    context: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "action": self.action,
            "actor": self.actor,
            "target": self.target,
            "status": self.status,
            "context": self.context,
        }


class AuditLogger:
    """
    Append-only JSONL audit sink.

    With no *log_path* events go to the ``audit`` logger only. Listeners
    registered with ``on_log`` see every event after it is written.
    """

    def __init__(self, log_path: Path | None = None):
        self.log_path = Path(log_path) if log_path is not None else None
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: list[AuditListener] = []
        self._write_lock = threading.Lock()

    def on_log(self, listener: AuditListener) -> None:
        self._listeners.append(listener)

    def log(self, event: AuditEvent) -> None:
        record = event.to_dict()
        if self.log_path is None:
            logger.info("%s %s %s", event.action, event.target, event.status)
        else:
            line = json.dumps(record, default=str)
            try:
                with self._write_lock, self.log_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError:
                # Audit I/O errors never fail the request
                logger.critical("Audit write to %s failed: %s", self.log_path, line, exc_info=True)

        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("Audit listener failed")

    def log_oauth_event(
        self,
        action: str,
        actor: str,
        target: str,
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Record one grant lifecycle event and return its id."""
        event = AuditEvent(
            action=action,
            actor=actor,
            target=target,
            status=status,
            severity=severity,
            context=context,
        )
        self.log(event)
        return event.id
