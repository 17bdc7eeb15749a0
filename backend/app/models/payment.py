"""
Payment database model.

One-to-one with a Rental. Mutated by the allocator (session handle),
the payment reconciler and the cancellation/approval paths.
"""

from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.rental_enums import PaymentStatus


class Payment(Base):
    """
    Payment model.

    Only SETTLEMENT and CAPTURE count as paid. `payment_response` keeps the
    last raw gateway payload for audit.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    rental_id = Column(Integer, ForeignKey('rentals.id'), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)

    # Gateway references
    gateway_order_id = Column(String(100), unique=True, nullable=True, index=True)
    gateway_transaction_id = Column(String(100), nullable=True)
    snap_token = Column(Text, nullable=True)
    snap_redirect_url = Column(Text, nullable=True)
    payment_response = Column(JSON, nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, order='{self.gateway_order_id}', status='{self.payment_status.value}')>"
