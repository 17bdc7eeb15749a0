"""
Payment schemas.

Gateway callback body and renter-facing payment views.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.rental_enums import PaymentStatus


class GatewayNotification(BaseModel):
    """
    Signed callback delivered by the payment gateway.

    Unknown fields are kept so the raw payload can be stored as delivered.
    """
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: str
    status_code: str
    gross_amount: str
    signature_key: Optional[str] = None
    transaction_status: Optional[str] = None
    fraud_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None


class PaymentResponse(BaseModel):
    """Schema for payment response."""
    id: int
    rental_id: int
    user_id: int
    amount: Decimal
    payment_method: Optional[str]
    payment_status: PaymentStatus
    gateway_order_id: Optional[str]
    gateway_transaction_id: Optional[str]
    snap_redirect_url: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentListResponse(BaseModel):
    """Schema for paginated payment list."""
    payments: List[PaymentResponse]
    total: int
    page: int
    page_size: int


class NotificationAck(BaseModel):
    status: str = "ok"
    order_id: str
    payment_status: PaymentStatus
