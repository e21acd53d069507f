"""Audit trail of changes made to remote environments."""

from envsync.security.audit_log import AuditEntry, AuditLogger

__all__ = ["AuditEntry", "AuditLogger"]
