"""Pydantic schemas for advance data validation."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

from components.advance.models import AdvanceStatus, PaymentMethod


class AdvanceCreate(BaseModel):
    """Schema for an advance request."""
    amount: Decimal = Field(..., gt=0)
    repayment_period: int = Field(..., ge=1)
    purpose: Optional[str] = None
    comments: Optional[str] = None
    preferred_payment_method: PaymentMethod = PaymentMethod.MPESA


class AdvanceStatusUpdate(BaseModel):
    """Schema for an administrator's status change."""
    status: AdvanceStatus
    comments: Optional[str] = None


class AdvanceFilter(BaseModel):
    """Filters for listing advances."""
    status: Optional[AdvanceStatus] = None
    employee_id: Optional[int] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class AdvanceEvent(BaseModel):
    """Schema for an audit trail entry."""
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[int] = None
    comments: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Advance(BaseModel):
    """Schema for advance response."""
    id: int
    employee_id: int
    amount: Decimal
    interest_rate: Decimal
    total_interest: Decimal
    total_repayment: Decimal
    installment_amount: Decimal
    amount_repaid: Decimal
    amount_withdrawn: Decimal
    repayment_period: int
    status: AdvanceStatus
    purpose: Optional[str] = None
    comments: Optional[str] = None
    preferred_payment_method: PaymentMethod
    requested_date: datetime
    approved_date: Optional[datetime] = None
    disbursed_date: Optional[datetime] = None
    repaid_date: Optional[datetime] = None
    approved_by: Optional[int] = None
    disbursed_by: Optional[int] = None

    class Config:
        from_attributes = True


class AdvancePage(BaseModel):
    """Schema for a page of advances."""
    data: List[Advance]
    total: int


class PayrollSettlementRequest(BaseModel):
    """Schema for marking advances repaid through salary deduction."""
    advance_ids: List[int] = Field(..., min_length=1)


class PayrollSettlementFailure(BaseModel):
    advance_id: int
    reason: str


class PayrollSettlementResult(BaseModel):
    """Schema for the outcome of a payroll settlement batch."""
    updated: List[int]
    failed: List[PayrollSettlementFailure]


class ApprovedBalance(BaseModel):
    """Schema for disbursed advance funds available to withdraw."""
    approved_amount: Decimal
    withdrawn_amount: Decimal
    available_amount: Decimal


class WithdrawalRequest(BaseModel):
    """Schema for moving disbursed advance funds to mobile money."""
    amount: Decimal = Field(..., gt=0)
    phone_number: str
    payout_channel: PaymentMethod = PaymentMethod.MPESA


class RepaymentRequest(BaseModel):
    """Schema for an employee-initiated repayment."""
    amount: Decimal = Field(..., gt=0)
    phone_number: str
