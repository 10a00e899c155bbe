"""Audit trail system for tracking ledger changes."""
from cashbook.audit.models import AuditLog
from cashbook.audit.services import AuditService, snapshot

__all__ = ["AuditLog", "AuditService", "snapshot"]
