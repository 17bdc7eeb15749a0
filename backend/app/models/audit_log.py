"""
Audit Log Database Model.

Tracks reservation, payment and approval events for support and compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - RENTAL_CREATED / RENTAL_CANCELLED / RENTAL_COMPLETED
    - RENTAL_APPROVED / RENTAL_REJECTED
    - PAYMENT_STATUS_CHANGED / PAYMENT_RETRIED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for gateway and sweeper events)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_role = Column(String(20), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which rental the action applies to
    rental_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', rental_id={self.rental_id})>"
