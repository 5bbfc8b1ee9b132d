"""Repayment allocation: spreads incoming money over outstanding advances."""

from decimal import Decimal, ROUND_CEILING
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from components.advance.repository import AdvanceRepository
from components.advance.service import AdvanceService
from components.core.exceptions import ValidationError
from components.core.locks import KeyedLock, employee_key
from components.core.logging import get_logger
from components.employee.models import Employee
from components.employee.repository import EmployeeRepository
from components.employee.utils import normalize_phone, to_money
from components.notification import templates
from components.notification.service import Notifier
from components.payment.callbacks import REPAYMENT_REFERENCE_PREFIX
from components.payment.models import (
    AllocationKind,
    PaymentDirection,
    PaymentKind,
    PaymentStatus,
    PaymentTransaction,
)
from components.payment.network import PaymentNetwork, require_network_amount
from components.payment.repository import PaymentRepository
from components.repayment.schemas import AllocationResult, AllocationSlice

logger = get_logger(__name__)


def repayment_reference(employee_id: int) -> str:
    return f"{REPAYMENT_REFERENCE_PREFIX}{employee_id}"


class RepaymentAllocator:
    """Applies repayments oldest approval first.

    ``allocate`` runs inside a caller's critical section and leaves the
    commit to the caller. ``apply_repayment`` is the standalone form that
    takes the employee lock and commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        lifecycle: AdvanceService,
        locks: KeyedLock,
        notifier: Notifier,
        network: Optional[PaymentNetwork] = None,
    ):
        self.session = session
        self.lifecycle = lifecycle
        self.locks = locks
        self.notifier = notifier
        self.network = network
        self.advances = AdvanceRepository(session)
        self.employees = EmployeeRepository(session)
        self.payments = PaymentRepository(session)

    async def apply_repayment(
        self,
        employee_id: int,
        amount: Decimal,
        transaction: Optional[PaymentTransaction] = None,
    ) -> AllocationResult:
        async with self.locks.hold(employee_key(employee_id)):
            result = await self.allocate(employee_id, amount, transaction)
            await self.session.commit()
        logger.info("Repayment of %s for employee #%s: applied %s, surplus %s",
                    amount, employee_id, result.applied, result.surplus)
        return result

    async def allocate(
        self,
        employee_id: int,
        amount: Decimal,
        transaction: Optional[PaymentTransaction] = None,
    ) -> AllocationResult:
        """Apply ``amount`` to the employee's advances, FIFO by approval date."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Repayment amount must be greater than 0")

        remaining = amount
        slices = []
        now = self.lifecycle.clock()
        for advance in await self.advances.repayable(employee_id, for_update=True):
            if remaining <= 0:
                break
            applied = min(remaining, advance.outstanding)
            advance.amount_repaid = advance.amount_repaid + applied
            advance.last_repayment_date = now
            self.payments.allocate(advance, AllocationKind.REPAYMENT, applied, transaction)
            self.lifecycle.sync_after_repayment(advance)
            remaining -= applied
            slices.append(AllocationSlice(
                advance_id=advance.id,
                amount=applied,
                remaining_due=advance.outstanding,
                status=advance.status,
            ))

        if remaining > 0:
            logger.warning("Repayment surplus of %s for employee #%s", remaining, employee_id)
        return AllocationResult(slices=slices, applied=amount - remaining, surplus=remaining)

    async def notify_settled(self, result: AllocationResult, employee: Employee) -> None:
        """Send the repaid notice for every advance the repayment closed."""
        for advance_id in result.settled_advance_ids:
            advance = await self.advances.get_by_id(advance_id)
            self.lifecycle.notify_status(advance, employee)

    async def request_repayment(self, employee_id: int, amount: Decimal, phone_number: str) -> PaymentTransaction:
        """Ask the employee's phone to pay ``amount`` towards their advances."""
        amount = require_network_amount(to_money(amount))
        employee = await self.employees.get(employee_id)
        phone = normalize_phone(phone_number or employee.phone_number)
        if not phone:
            raise ValidationError("Phone number is required")
        reference = repayment_reference(employee_id)

        async with self.locks.hold(employee_key(employee_id)):
            due = await self.lifecycle.repayment_balance(employee_id)
            if due <= 0:
                raise ValidationError("No outstanding advance balance to repay")
            ceiling = due.to_integral_value(rounding=ROUND_CEILING)
            if amount > ceiling:
                raise ValidationError(f"Repayment amount cannot exceed outstanding balance of {ceiling:.2f}")

            ids = await self.network.initiate_inbound_payment_request(phone, amount, reference)
            transaction = self.payments.add(PaymentTransaction(
                employee_id=employee_id,
                direction=PaymentDirection.INBOUND.value,
                kind=PaymentKind.ADVANCE_REPAYMENT.value,
                amount=amount,
                phone_number=phone,
                account_reference=reference,
                status=PaymentStatus.PENDING.value,
                merchant_request_id=ids.merchant_request_id,
                network_request_id=ids.network_request_id,
                created_at=self.lifecycle.clock(),
            ))
            await self.session.commit()

        logger.info("Repayment request of %s sent to %s for employee #%s", amount, phone, employee_id)
        return transaction

    def notify_received(self, employee: Employee, amount: Decimal) -> None:
        self.notifier.sms(employee.phone_number, templates.repayment_received(amount))
