"""
Audit Log model for tracking ledger changes.

Every transfer written, every flow removed and every balance repaired leaves a
row here, so that drift found later can be traced back to the write path that
produced it.
"""
from sqlalchemy import Column, String, DateTime, Text, Index, JSON

from cashbook.database import Base
from cashbook.models.base import generate_id, utcnow


class AuditLog(Base):
    """
    Audit Log - Tracks all ledger changes.

    Rows are added inside the caller's transaction, so a rolled-back write
    leaves no audit trail behind.
    """

    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("audit"))

    # What changed?
    entity_type = Column(String, nullable=False, index=True)
    # Options: "account", "flow", "transfer"

    entity_id = Column(String, nullable=False, index=True)

    # What kind of change?
    action = Column(String, nullable=False, index=True)
    # Options:
    # - "create": New record created
    # - "update": Record updated (transfers: delete + recreate)
    # - "delete": Record deleted
    # - "reconcile": Cached balance overwritten by a recompute
    # - "repair": Recompute forced by an inconsistency
    # - "migrate": Legacy rows converted into a transfer
    # - "merge": Duplicate transfer removed during consolidation

    field_name = Column(String, nullable=True)

    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)

    # Who made the change?
    user_id = Column(String, nullable=True, index=True)

    # What triggered the change?
    source = Column(String, nullable=False, default="api")
    # Options: "api", "system", "migration", "maintenance"

    extra_data = Column("extra_data", JSON, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_user_time", "user_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<AuditLog {self.id}: "
            f"{self.action} on {self.entity_type}/{self.entity_id} "
            f"at {self.created_at}>"
        )
