"""Advance models for the database."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from components.core.database import Base, utcnow


class AdvanceStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    REPAID = "repaid"


class PaymentMethod(str, enum.Enum):
    MPESA = "mpesa"
    BANK = "bank"
    WALLET = "wallet"


ALLOWED_TRANSITIONS = {
    AdvanceStatus.PENDING: frozenset({AdvanceStatus.APPROVED, AdvanceStatus.DECLINED}),
    AdvanceStatus.APPROVED: frozenset({AdvanceStatus.DISBURSED}),
    AdvanceStatus.DECLINED: frozenset(),
    AdvanceStatus.DISBURSED: frozenset({AdvanceStatus.REPAYING}),
    AdvanceStatus.REPAYING: frozenset({AdvanceStatus.REPAID}),
    AdvanceStatus.REPAID: frozenset(),
}

ACTIVE_STATUSES = (
    AdvanceStatus.PENDING.value,
    AdvanceStatus.APPROVED.value,
    AdvanceStatus.DISBURSED.value,
    AdvanceStatus.REPAYING.value,
)

# Advances whose funds are out and owed back
OUTSTANDING_STATUSES = (
    AdvanceStatus.DISBURSED.value,
    AdvanceStatus.REPAYING.value,
)


class Advance(Base):
    """Salary advance requested by an employee."""
    __tablename__ = "advances"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False, default=0)
    total_interest = Column(Numeric(12, 2), nullable=False, default=0)
    total_repayment = Column(Numeric(12, 2), nullable=False)
    installment_amount = Column(Numeric(12, 2), nullable=False)
    amount_repaid = Column(Numeric(12, 2), nullable=False, default=0)
    amount_withdrawn = Column(Numeric(12, 2), nullable=False, default=0)
    repayment_period = Column(Integer, nullable=False)

    status = Column(String(10), nullable=False, default=AdvanceStatus.PENDING.value, index=True)
    purpose = Column(String(255), nullable=True)
    comments = Column(Text, nullable=True)
    preferred_payment_method = Column(String(10), nullable=False, default=PaymentMethod.MPESA.value)

    requested_date = Column(DateTime, nullable=False, default=utcnow)
    approved_date = Column(DateTime, nullable=True)
    disbursed_date = Column(DateTime, nullable=True)
    repaid_date = Column(DateTime, nullable=True)
    last_withdrawal_date = Column(DateTime, nullable=True)
    last_repayment_date = Column(DateTime, nullable=True)
    approved_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    disbursed_by = Column(Integer, ForeignKey("employees.id"), nullable=True)

    # Relationships
    employee = relationship("Employee", back_populates="advances", foreign_keys=[employee_id])
    events = relationship("AdvanceEvent", back_populates="advance", order_by="AdvanceEvent.id")
    allocations = relationship("PaymentAllocation", back_populates="advance")

    @property
    def outstanding(self):
        """Amount still owed on the advance."""
        return self.total_repayment - self.amount_repaid

    @property
    def withdrawable(self):
        """Disbursed funds not yet withdrawn."""
        return self.amount - self.amount_withdrawn


class AdvanceEvent(Base):
    """Audit trail entry for an advance status change."""
    __tablename__ = "advance_events"

    id = Column(Integer, primary_key=True, index=True)
    advance_id = Column(Integer, ForeignKey("advances.id"), nullable=False, index=True)
    from_status = Column(String(10), nullable=True)
    to_status = Column(String(10), nullable=False)
    actor_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    advance = relationship("Advance", back_populates="events")
