"""Payment models for the database."""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from components.core.database import Base, utcnow


class PaymentDirection(str, enum.Enum):
    OUTBOUND = "outbound"  # to the employee (B2C)
    INBOUND = "inbound"  # from the employee (STK push, pay bill)


class PaymentKind(str, enum.Enum):
    ADVANCE_WITHDRAWAL = "advance_withdrawal"
    ADVANCE_REPAYMENT = "advance_repayment"
    PAYBILL = "paybill"
    TOP_UP = "top_up"
    UNKNOWN = "unknown"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value})


class AllocationKind(str, enum.Enum):
    WITHDRAWAL = "withdrawal"
    REPAYMENT = "repayment"


class PaymentTransaction(Base):
    """One outbound or inbound payment attempt against the payment network."""
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("merchant_request_id", "network_request_id", name="uq_payment_correlation"),
    )

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    direction = Column(String(10), nullable=False)
    kind = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    confirmed_amount = Column(Numeric(12, 2), nullable=True)
    phone_number = Column(String(20), nullable=True, index=True)
    account_reference = Column(String(100), nullable=True)
    status = Column(String(10), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    # Correlation identifiers issued by the network
    merchant_request_id = Column(String(100), nullable=True, index=True)
    network_request_id = Column(String(100), nullable=True, index=True)
    receipt_number = Column(String(50), unique=True, nullable=True)

    result_code = Column(String(10), nullable=True)
    result_description = Column(String(255), nullable=True)
    settlement_metadata = Column(JSON, nullable=True)
    raw_payload = Column(JSON, nullable=True)

    # Unattributed holding queue
    needs_review = Column(Boolean, nullable=False, default=False, index=True)
    review_reason = Column(String(255), nullable=True)

    repayment_applied = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    settled_at = Column(DateTime, nullable=True)
    resolved_by = Column(Integer, ForeignKey("employees.id"), nullable=True)

    # Relationships
    employee = relationship("Employee", foreign_keys=[employee_id])
    allocations = relationship("PaymentAllocation", back_populates="transaction", order_by="PaymentAllocation.id")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES


class PaymentAllocation(Base):
    """The share of a payment applied to one advance."""
    __tablename__ = "payment_allocations"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("payment_transactions.id"), nullable=True, index=True)
    advance_id = Column(Integer, ForeignKey("advances.id"), nullable=False, index=True)
    kind = Column(String(15), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    reversed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    transaction = relationship("PaymentTransaction", back_populates="allocations")
    advance = relationship("Advance", back_populates="allocations")


class AccountBalance(Base):
    """Latest network-reported balance of one sub-account."""
    __tablename__ = "account_balances"

    id = Column(Integer, primary_key=True, index=True)
    account = Column(String(50), unique=True, nullable=False)
    currency = Column(String(3), nullable=False, default="KES")
    balance = Column(Numeric(14, 2), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
