# Security helpers: audit log, session cookies, rate limiting.
# Created: 2026-02-20

from agentauth.security.audit import AuditEvent, AuditLogger, AuditSeverity

__all__ = ["AuditEvent", "AuditLogger", "AuditSeverity"]
