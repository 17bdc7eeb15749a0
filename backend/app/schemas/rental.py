"""
Rental schemas.

Request and response models for booking, listing and admin decisions.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional
from backend.app.models.rental_enums import RentalStatus, ApprovalStatus, PaymentStatus


class RentalCreate(BaseModel):
    """Schema for a booking request. Either unit_id or vehicle_id is required."""
    unit_id: Optional[int] = Field(None, gt=0, description="Specific unit to book")
    vehicle_id: Optional[int] = Field(None, gt=0, description="Vehicle to book any free unit of")
    start_date: date = Field(..., description="First rental day (inclusive)")
    end_date: date = Field(..., description="Return day (exclusive)")
    pickup_location: Optional[str] = Field(None, max_length=255)
    pickup_latitude: Optional[Decimal] = Field(None, ge=-90, le=90)
    pickup_longitude: Optional[Decimal] = Field(None, ge=-180, le=180)
    return_location: Optional[str] = Field(None, max_length=255)
    return_latitude: Optional[Decimal] = Field(None, ge=-90, le=90)
    return_longitude: Optional[Decimal] = Field(None, ge=-180, le=180)
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def check_booking(self):
        if self.unit_id is None and self.vehicle_id is None:
            raise ValueError("Either unit_id or vehicle_id is required")
        if self.start_date < date.today():
            raise ValueError("Start date cannot be in the past")
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class RejectRequest(BaseModel):
    """Schema for an admin rejection."""
    reason: str = Field(..., min_length=1, max_length=1000, description="Why the rental is rejected")


class PaymentSummary(BaseModel):
    """Payment fields embedded in rental responses."""
    id: int
    amount: Decimal
    payment_status: PaymentStatus
    payment_method: Optional[str]
    gateway_order_id: Optional[str]
    paid_at: Optional[datetime]

    class Config:
        from_attributes = True


class RentalResponse(BaseModel):
    """Schema for rental response."""
    id: int
    user_id: int
    vehicle_id: int
    unit_id: Optional[int]
    start_date: date
    end_date: date
    total_days: int
    price_per_day: Decimal
    total_amount: Decimal
    status: RentalStatus
    admin_approval_status: ApprovalStatus
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    rejection_reason: Optional[str]
    pickup_location: Optional[str]
    pickup_latitude: Optional[Decimal]
    pickup_longitude: Optional[Decimal]
    return_location: Optional[str]
    return_latitude: Optional[Decimal]
    return_longitude: Optional[Decimal]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RentalDetailResponse(RentalResponse):
    """Rental with its payment."""
    payment: Optional[PaymentSummary] = None


class PaymentHandle(BaseModel):
    """What the client needs to open the payment page."""
    order_id: str
    snap_token: str
    redirect_url: str


class RentalCreateResponse(BaseModel):
    """Response after a reservation is allocated."""
    rental: RentalResponse
    payment: PaymentHandle


class RentalListResponse(BaseModel):
    """Schema for paginated rental list."""
    rentals: List[RentalResponse]
    total: int
    page: int
    page_size: int


class RenterStatsResponse(BaseModel):
    total_trips: int
    active_rentals: int
    active_rental_details: List[RentalResponse]


class AdminStatsResponse(BaseModel):
    total_rentals: int
    pending_approvals: int
    active_rentals: int
    completed_rentals: int
    total_revenue: Decimal


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: Optional[int]
    actor_role: Optional[str]
    action: str
    rental_id: Optional[int]
    meta_data: Optional[dict]
    timestamp: datetime

    class Config:
        from_attributes = True
