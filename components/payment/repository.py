"""Repository for payment transactions, allocations and account balances."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from components.core.database import utcnow
from components.payment.models import (
    AccountBalance,
    AllocationKind,
    PaymentAllocation,
    PaymentStatus,
    PaymentTransaction,
)


class PaymentRepository:
    """Repository for payment operations."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    def _locked(self, query, for_update: bool):
        if for_update:
            return query.with_for_update().execution_options(populate_existing=True)
        return query

    async def get_by_id(self, transaction_id: int, for_update: bool = False) -> Optional[PaymentTransaction]:
        query = select(PaymentTransaction).where(PaymentTransaction.id == transaction_id)
        result = await self.session.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def get_by_correlation(
        self,
        merchant_request_id: Optional[str],
        network_request_id: Optional[str],
        for_update: bool = False,
    ) -> Optional[PaymentTransaction]:
        """Find the transaction a result callback refers to by either identifier."""
        conditions = []
        if merchant_request_id:
            conditions.append(PaymentTransaction.merchant_request_id == merchant_request_id)
        if network_request_id:
            conditions.append(PaymentTransaction.network_request_id == network_request_id)
        if not conditions:
            return None
        query = select(PaymentTransaction).where(or_(*conditions)).order_by(PaymentTransaction.id).limit(1)
        result = await self.session.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def get_by_receipt(self, receipt_number: Optional[str]) -> Optional[PaymentTransaction]:
        if not receipt_number:
            return None
        result = await self.session.execute(
            select(PaymentTransaction).where(PaymentTransaction.receipt_number == receipt_number)
        )
        return result.scalar_one_or_none()

    async def find_pending(
        self,
        direction: str,
        phone_number: Optional[str],
        amount: Optional[Decimal],
        for_update: bool = False,
    ) -> Optional[PaymentTransaction]:
        """Oldest pending transaction with the same direction, phone and amount."""
        if not phone_number or amount is None:
            return None
        query = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.direction == direction,
                PaymentTransaction.phone_number == phone_number,
                PaymentTransaction.amount == amount,
                PaymentTransaction.status == PaymentStatus.PENDING.value,
            )
            .order_by(PaymentTransaction.created_at, PaymentTransaction.id)
            .limit(1)
        )
        result = await self.session.execute(self._locked(query, for_update))
        return result.scalar_one_or_none()

    async def list(
        self,
        status: Optional[PaymentStatus] = None,
        employee_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[PaymentTransaction], int]:
        """Get a page of transactions, newest first."""
        conditions = []
        if status:
            conditions.append(PaymentTransaction.status == status.value)
        if employee_id:
            conditions.append(PaymentTransaction.employee_id == employee_id)
        query = select(PaymentTransaction).where(*conditions).order_by(PaymentTransaction.id.desc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        total = await self.session.execute(select(func.count(PaymentTransaction.id)).where(*conditions))
        return list(result.scalars().all()), total.scalar_one()

    async def stale_pending(self, older_than: datetime) -> List[PaymentTransaction]:
        """Pending transactions created before the cutoff, oldest first."""
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.status == PaymentStatus.PENDING.value,
                PaymentTransaction.created_at < older_than,
            )
            .order_by(PaymentTransaction.created_at, PaymentTransaction.id)
        )
        return list(result.scalars().all())

    async def needing_review(self) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.needs_review.is_(True))
            .order_by(PaymentTransaction.created_at, PaymentTransaction.id)
        )
        return list(result.scalars().all())

    def add(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self.session.add(transaction)
        return transaction

    def allocate(self, advance, kind: AllocationKind, amount: Decimal, transaction=None) -> PaymentAllocation:
        allocation = PaymentAllocation(
            transaction=transaction,
            advance=advance,
            kind=kind.value,
            amount=amount,
        )
        self.session.add(allocation)
        return allocation

    async def allocations(self, transaction_id: int) -> List[PaymentAllocation]:
        """Every allocation of a transaction, reversed ones included."""
        result = await self.session.execute(
            select(PaymentAllocation)
            .where(PaymentAllocation.transaction_id == transaction_id)
            .order_by(PaymentAllocation.id)
        )
        return list(result.scalars().all())

    async def open_withdrawals(self, transaction_id: int) -> List[PaymentAllocation]:
        """Withdrawal allocations of a transaction that have not been reversed."""
        result = await self.session.execute(
            select(PaymentAllocation)
            .where(
                PaymentAllocation.transaction_id == transaction_id,
                PaymentAllocation.kind == AllocationKind.WITHDRAWAL.value,
                PaymentAllocation.reversed.is_(False),
            )
            .order_by(PaymentAllocation.id)
        )
        return list(result.scalars().all())

    async def get_balance(self, account: str) -> Optional[AccountBalance]:
        result = await self.session.execute(select(AccountBalance).where(AccountBalance.account == account))
        return result.scalar_one_or_none()

    async def list_balances(self) -> List[AccountBalance]:
        result = await self.session.execute(select(AccountBalance).order_by(AccountBalance.account))
        return list(result.scalars().all())

    async def set_balance(self, account: str, balance: Decimal, currency: str = "KES") -> AccountBalance:
        """Insert or overwrite the last known balance of an account."""
        record = await self.get_balance(account)
        if record is None:
            record = AccountBalance(account=account)
            self.session.add(record)
        record.balance = balance
        record.currency = currency
        record.updated_at = utcnow()
        return record
