"""Pydantic schemas for payment data validation."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

from components.payment.models import PaymentDirection, PaymentKind, PaymentStatus


class PaymentAllocation(BaseModel):
    """Schema for one advance's share of a payment."""
    advance_id: int
    kind: str
    amount: Decimal
    reversed: bool

    class Config:
        from_attributes = True


class PaymentTransaction(BaseModel):
    """Schema for payment transaction response."""
    id: int
    employee_id: Optional[int] = None
    direction: PaymentDirection
    kind: PaymentKind
    amount: Decimal
    confirmed_amount: Optional[Decimal] = None
    phone_number: Optional[str] = None
    account_reference: Optional[str] = None
    status: PaymentStatus
    merchant_request_id: Optional[str] = None
    network_request_id: Optional[str] = None
    receipt_number: Optional[str] = None
    result_code: Optional[str] = None
    result_description: Optional[str] = None
    needs_review: bool
    review_reason: Optional[str] = None
    created_at: datetime
    settled_at: Optional[datetime] = None
    resolved_by: Optional[int] = None

    class Config:
        from_attributes = True


class PaymentTransactionPage(BaseModel):
    data: List[PaymentTransaction]
    total: int


class ResolveRequest(BaseModel):
    """Schema for manually settling a pending transaction."""
    status: PaymentStatus
    receipt_number: Optional[str] = None
    comments: Optional[str] = None


class AssignRequest(BaseModel):
    """Schema for attributing an unattributed payment to an employee."""
    employee_id: int
    apply_as_repayment: bool = True


class AccountBalance(BaseModel):
    account: str
    currency: str
    balance: Decimal
    updated_at: datetime

    class Config:
        from_attributes = True


class CallbackAck(BaseModel):
    """Acknowledgement the network expects for every callback."""
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
