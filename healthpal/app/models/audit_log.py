"""
Audit trail rows.

Written in the same transaction as the change they describe, so a
donation, refund or consultation transition is never visible without its
audit row. Action names live in services.audit.AuditAction.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from healthpal.app.db.session import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # NULL for gateway webhooks and other system actions
    actor_id = Column(Integer, index=True, nullable=True)
    actor_email = Column(String(255), nullable=True)

    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(50), nullable=True)  # sponsorship / transaction / consultation / call / user
    entity_id = Column(Integer, index=True, nullable=True)
    meta_data = Column(JSON, nullable=True)
    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
