"""Disbursement: moves approved advance funds to the employee's mobile money."""

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from components.advance.models import PaymentMethod
from components.advance.repository import AdvanceRepository
from components.advance.schemas import ApprovedBalance
from components.advance.service import AdvanceService
from components.core.exceptions import (
    InsufficientApprovedBalance,
    PaymentInitiationError,
    ValidationError,
)
from components.core.locks import KeyedLock, employee_key
from components.core.logging import get_logger
from components.employee.repository import EmployeeRepository
from components.employee.utils import normalize_phone, to_money
from components.notification import templates
from components.notification.service import Notifier
from components.payment.models import (
    AllocationKind,
    PaymentDirection,
    PaymentKind,
    PaymentStatus,
    PaymentTransaction,
)
from components.payment.network import PaymentNetwork, require_network_amount
from components.payment.repository import PaymentRepository

logger = get_logger(__name__)

UTILITY_ACCOUNT = "utility"


class DisbursementService:
    """Disbursement Coordinator."""

    def __init__(
        self,
        session: AsyncSession,
        lifecycle: AdvanceService,
        network: PaymentNetwork,
        locks: KeyedLock,
        notifier: Notifier,
    ):
        self.session = session
        self.lifecycle = lifecycle
        self.network = network
        self.locks = locks
        self.notifier = notifier
        self.advances = AdvanceRepository(session)
        self.employees = EmployeeRepository(session)
        self.payments = PaymentRepository(session)

    async def approved_balance(self, employee_id: int) -> ApprovedBalance:
        """Approved, withdrawn and still withdrawable totals."""
        advances = await self.advances.outstanding(employee_id)
        approved = sum((advance.amount for advance in advances), Decimal(0))
        withdrawn = sum((advance.amount_withdrawn for advance in advances), Decimal(0))
        return ApprovedBalance(
            approved_amount=approved,
            withdrawn_amount=withdrawn,
            available_amount=approved - withdrawn,
        )

    async def withdraw(
        self,
        employee_id: int,
        amount: Decimal,
        phone_number: Optional[str] = None,
        payout_channel: PaymentMethod = PaymentMethod.MPESA,
    ) -> PaymentTransaction:
        """Send ``amount`` of disbursed advance funds to the employee.

        The network is called once for the whole amount. Allocation onto the
        advances happens only after the network has accepted the request, so
        a rejected request leaves every advance untouched.
        """
        if payout_channel != PaymentMethod.MPESA:
            raise ValidationError(f"Payout channel {payout_channel.value} is not supported")
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        require_network_amount(amount)

        employee = await self.employees.get(employee_id)
        phone = normalize_phone(phone_number or employee.phone_number)
        if not phone:
            raise ValidationError("Phone number is required")

        async with self.locks.hold(employee_key(employee_id)):
            advances = await self.advances.outstanding(employee_id, for_update=True)
            available = sum((advance.withdrawable for advance in advances), Decimal(0))
            if amount > available:
                raise InsufficientApprovedBalance(available)

            utility = await self.payments.get_balance(UTILITY_ACCOUNT)
            if utility is not None and amount > utility.balance:
                logger.warning("Withdrawal of %s refused: utility balance is %s", amount, utility.balance)
                raise PaymentInitiationError("Withdrawals are temporarily disabled, try again later")

            ids = await self.network.initiate_outbound_payment(
                phone, amount, remarks="Salary advance withdrawal", occasion="Advance"
            )

            transaction = self.payments.add(PaymentTransaction(
                employee_id=employee_id,
                direction=PaymentDirection.OUTBOUND.value,
                kind=PaymentKind.ADVANCE_WITHDRAWAL.value,
                amount=amount,
                phone_number=phone,
                status=PaymentStatus.PENDING.value,
                merchant_request_id=ids.merchant_request_id,
                network_request_id=ids.network_request_id,
                created_at=self.lifecycle.clock(),
            ))

            remaining = amount
            now = self.lifecycle.clock()
            for advance in advances:
                if remaining <= 0:
                    break
                portion = min(remaining, advance.withdrawable)
                if portion <= 0:
                    continue
                advance.amount_withdrawn = advance.amount_withdrawn + portion
                advance.last_withdrawal_date = now
                self.payments.allocate(advance, AllocationKind.WITHDRAWAL, portion, transaction)
                self.lifecycle.sync_after_withdrawal(advance)
                remaining -= portion

            await self.session.commit()
            left = available - amount

        logger.info("Withdrawal of %s to %s initiated for employee #%s", amount, phone, employee_id)
        self.notifier.sms(employee.phone_number, templates.withdrawal_sent(amount, left))
        return transaction
