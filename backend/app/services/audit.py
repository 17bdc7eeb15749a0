"""
Audit logging service for reservation and payment events.

Audit rows are added to the caller's session so they commit or roll back
together with the change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    RENTAL_CREATED = "RENTAL_CREATED"
    RENTAL_CANCELLED = "RENTAL_CANCELLED"
    RENTAL_APPROVED = "RENTAL_APPROVED"
    RENTAL_REJECTED = "RENTAL_REJECTED"
    RENTAL_ACTIVATED = "RENTAL_ACTIVATED"
    RENTAL_COMPLETED = "RENTAL_COMPLETED"

    PAYMENT_STATUS_CHANGED = "PAYMENT_STATUS_CHANGED"
    PAYMENT_RETRIED = "PAYMENT_RETRIED"
    GATEWAY_CANCEL_FAILED = "GATEWAY_CANCEL_FAILED"


async def log_event(
    db: AsyncSession,
    action: str,
    rental_id: Optional[int] = None,
    actor: Optional[dict] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Record an audit event in the current transaction.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        rental_id: Rental the event applies to
        actor: Authenticated user payload, None for system events
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor.get("user_id") if actor else None,
        actor_role=actor.get("role") if actor else None,
        action=action,
        rental_id=rental_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_rental_audit_trail(
    db: AsyncSession,
    rental_id: int,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve the audit trail of one rental, most recent first.
    """
    query = select(AuditLog).where(
        AuditLog.rental_id == rental_id
    ).order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
