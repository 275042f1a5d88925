"""
Audit logging service for tracking security events and ledger changes.

Provides centralized logging for compliance and dispute resolution.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from healthpal.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    USER_REGISTERED = "USER_REGISTERED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # Ledger
    SPONSORSHIP_CREATED = "SPONSORSHIP_CREATED"
    SPONSORSHIP_FUNDED = "SPONSORSHIP_FUNDED"
    SPONSORSHIP_REOPENED = "SPONSORSHIP_REOPENED"
    SPONSORSHIP_CLOSED = "SPONSORSHIP_CLOSED"
    DONATION_RECORDED = "DONATION_RECORDED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    DONATION_REFUNDED = "DONATION_REFUNDED"

    # Consultations
    CONSULTATION_BOOKED = "CONSULTATION_BOOKED"
    CONSULTATION_STATUS_CHANGED = "CONSULTATION_STATUS_CHANGED"
    CALL_STARTED = "CALL_STARTED"
    CALL_FORCE_ENDED = "CALL_FORCE_ENDED"
    CALL_ENDED = "CALL_ENDED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_email: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    commit: bool = True
) -> AuditLog:
    """
    Log a security or ledger event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system/webhook)
        actor_email: Email of actor
        entity_type: Affected table, e.g. "sponsorship"
        entity_id: Affected row
        metadata: Additional context as JSON
        ip_address: IP address of the request
        commit: When False the row joins the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def get_audit_logs(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
