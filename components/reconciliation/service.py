"""Payment reconciliation: turns network callbacks into ledger changes.

Every callback is handled in one critical section under the owning
employee's lock and the transaction's lock, and committed once. Callbacks
that match nothing are still persisted, either attributed to the employee
named by their account reference or parked for review.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, NamedTuple, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from components.advance.models import AdvanceStatus
from components.advance.repository import AdvanceRepository
from components.core import config
from components.core.exceptions import NotFoundError, ValidationError
from components.core.locks import KeyedLock, employee_key, transaction_key
from components.core.logging import get_logger
from components.employee.repository import EmployeeRepository
from components.employee.utils import normalize_phone, to_money
from components.notification import templates
from components.notification.service import BALANCE_ALERT, RECONCILIATION_ALERT, Notifier
from components.payment.callbacks import (
    AccountBalanceResult,
    B2CResult,
    PayBillNotice,
    StkPushResult,
    UnrecognizedPayload,
    parse_callback,
    reference_employee_id,
)
from components.payment.models import (
    PaymentDirection,
    PaymentKind,
    PaymentStatus,
    PaymentTransaction,
)
from components.payment.repository import PaymentRepository
from components.repayment.schemas import AllocationResult
from components.repayment.service import RepaymentAllocator
from components.system_config.schemas import NotificationConfig

settings = config.get_settings()
logger = get_logger(__name__)

UTILITY_ACCOUNT = "utility"

SETTLED = "settled"
DUPLICATE = "duplicate"
ATTRIBUTED = "attributed"
UNATTRIBUTED = "unattributed"
TOP_UP = "top_up"
BALANCES = "balances_updated"
UNRECOGNIZED = "unrecognized"


class ReconciliationOutcome(NamedTuple):
    action: str
    transaction_id: Optional[int] = None


class _Settlement:
    """Side effects collected inside a critical section, run after commit."""

    def __init__(self) -> None:
        self.notices: List[Callable[[], None]] = []
        self.repayment: Optional[AllocationResult] = None
        self.employee_id: Optional[int] = None

    def later(self, notice: Callable[[], None]) -> None:
        self.notices.append(notice)


ResultRecord = Union[StkPushResult, B2CResult]


class ReconciliationService:
    """Payment Reconciliation Gateway."""

    def __init__(
        self,
        session: AsyncSession,
        allocator: RepaymentAllocator,
        locks: KeyedLock,
        notifier: Notifier,
    ):
        self.session = session
        self.allocator = allocator
        self.locks = locks
        self.notifier = notifier
        self.clock = allocator.lifecycle.clock
        self.advances = AdvanceRepository(session)
        self.employees = EmployeeRepository(session)
        self.payments = PaymentRepository(session)

    async def handle_callback(self, payload: Any, notification_config: NotificationConfig) -> ReconciliationOutcome:
        """Parse, match and settle one callback payload.

        A payload that fails while being settled is rolled back and kept
        for review as an unrecognized callback.
        """
        try:
            return await self._handle(payload, notification_config)
        except Exception as exc:
            logger.exception("Payment callback could not be settled")
            await self.session.rollback()
            raw = payload if isinstance(payload, dict) else {"body": payload}
            reason = f"Callback could not be settled: {type(exc).__name__}: {exc}"
            return await self._unrecognized(UnrecognizedPayload(raw=raw, reason=reason), notification_config)

    async def _handle(self, payload: Any, notification_config: NotificationConfig) -> ReconciliationOutcome:
        record = parse_callback(payload)
        if isinstance(record, StkPushResult):
            return await self._settle_result(record, PaymentDirection.INBOUND, notification_config)
        if isinstance(record, B2CResult):
            return await self._settle_result(record, PaymentDirection.OUTBOUND, notification_config)
        if isinstance(record, PayBillNotice):
            return await self._pay_bill(record, notification_config)
        if isinstance(record, AccountBalanceResult):
            return await self._balances(record, notification_config)
        return await self._unrecognized(record, notification_config)

    # Result callbacks for payments the service initiated

    async def _settle_result(
        self,
        record: ResultRecord,
        direction: PaymentDirection,
        notification_config: NotificationConfig,
    ) -> ReconciliationOutcome:
        merchant_request_id, network_request_id = record.correlation
        phone = normalize_phone(record.phone_number)
        amount = to_money(record.amount) if record.amount is not None else None
        lock_reference = network_request_id or merchant_request_id or record.receipt_number or phone

        known = await self.payments.get_by_correlation(merchant_request_id, network_request_id)
        if known is not None:
            owner_id = known.employee_id
        else:
            owner = await self.employees.get_by_phone(phone)
            owner_id = owner.id if owner else None

        for attempt in range(2):
            settlement = _Settlement()
            async with self.locks.hold(employee_key(owner_id) if owner_id else None, transaction_key(lock_reference)):
                transaction = await self.payments.get_by_correlation(
                    merchant_request_id, network_request_id, for_update=True
                )
                if transaction is None:
                    transaction = await self.payments.find_pending(direction.value, phone, amount, for_update=True)
                    if transaction is not None:
                        logger.info("Callback %s matched transaction #%s by phone and amount",
                                    lock_reference, transaction.id)

                if (transaction is not None and transaction.employee_id
                        and transaction.employee_id != owner_id and attempt == 0):
                    # Matched someone else's transaction: retry under the right lock
                    owner_id = transaction.employee_id
                    await self.session.rollback()
                    continue

                if transaction is None:
                    receipt_owner = await self.payments.get_by_receipt(record.receipt_number)
                    if receipt_owner is not None:
                        duplicate_id = receipt_owner.id
                        logger.info("Receipt %s already recorded on transaction #%s",
                                    record.receipt_number, duplicate_id)
                        await self.session.rollback()
                        return ReconciliationOutcome(DUPLICATE, duplicate_id)
                    transaction = self._record_unmatched_result(record, direction, phone, amount)
                    outcome = UNATTRIBUTED
                elif transaction.is_terminal:
                    duplicate_id = transaction.id
                    receipt = record.receipt_number if record.succeeded else None
                    if (not receipt or receipt == transaction.receipt_number
                            or await self.payments.get_by_receipt(receipt) is not None):
                        logger.info("Duplicate callback for settled transaction #%s ignored", duplicate_id)
                        await self.session.rollback()
                        return ReconciliationOutcome(DUPLICATE, duplicate_id)
                    # Settled already under another receipt: money arrived twice
                    logger.warning("Receipt %s arrived for transaction #%s already %s under %s",
                                   receipt, duplicate_id, transaction.status, transaction.receipt_number)
                    transaction = self._record_unmatched_result(
                        record, direction, phone, amount,
                        employee_id=transaction.employee_id,
                        review_reason=f"Second receipt for transaction #{duplicate_id}, already {transaction.status}",
                    )
                    outcome = UNATTRIBUTED
                else:
                    if transaction.merchant_request_id is None and transaction.network_request_id is None:
                        transaction.merchant_request_id = merchant_request_id
                        transaction.network_request_id = network_request_id
                    transaction.raw_payload = record.raw
                    transaction.settlement_metadata = record.metadata
                    transaction.result_code = str(record.result_code)
                    transaction.result_description = record.result_description
                    if record.succeeded:
                        if not await self._complete(transaction, amount, record.receipt_number, settlement):
                            duplicate_id = transaction.id
                            await self.session.rollback()
                            return ReconciliationOutcome(DUPLICATE, duplicate_id)
                    else:
                        await self._fail(transaction, record.result_description, settlement)
                    outcome = SETTLED

                if isinstance(record, B2CResult) and record.utility_account_balance is not None:
                    await self.payments.set_balance(UTILITY_ACCOUNT, record.utility_account_balance)
                await self.session.commit()

            await self._after_commit(transaction, settlement, notification_config)
            if isinstance(record, B2CResult) and record.utility_account_balance is not None:
                self._check_threshold(UTILITY_ACCOUNT, record.utility_account_balance, notification_config)
            return ReconciliationOutcome(outcome, transaction.id)

    def _record_unmatched_result(
        self,
        record: ResultRecord,
        direction: PaymentDirection,
        phone: Optional[str],
        amount: Optional[Decimal],
        employee_id: Optional[int] = None,
        review_reason: Optional[str] = None,
    ) -> PaymentTransaction:
        merchant_request_id, network_request_id = record.correlation
        if review_reason is None:
            logger.warning("No pending transaction for %s callback %s from %s for %s",
                           direction.value, network_request_id or merchant_request_id, phone, amount)
            review_reason = "No matching pending transaction"
        else:
            # The correlation ids stay with the settled transaction
            merchant_request_id = network_request_id = None
        return self.payments.add(PaymentTransaction(
            employee_id=employee_id,
            direction=direction.value,
            kind=PaymentKind.UNKNOWN.value,
            amount=amount or Decimal(0),
            confirmed_amount=amount if record.succeeded else None,
            phone_number=phone,
            status=(PaymentStatus.COMPLETED if record.succeeded else PaymentStatus.FAILED).value,
            receipt_number=record.receipt_number if record.succeeded else None,
            merchant_request_id=merchant_request_id,
            network_request_id=network_request_id,
            result_code=str(record.result_code),
            result_description=record.result_description,
            settlement_metadata=record.metadata,
            raw_payload=record.raw,
            needs_review=True,
            review_reason=review_reason[:255],
            created_at=self.clock(),
            settled_at=self.clock(),
        ))

    async def _complete(
        self,
        transaction: PaymentTransaction,
        amount: Optional[Decimal],
        receipt_number: Optional[str],
        settlement: _Settlement,
    ) -> bool:
        """Mark a pending transaction completed and apply its money.

        Returns False when the receipt already belongs to another transaction.
        """
        if receipt_number:
            other = await self.payments.get_by_receipt(receipt_number)
            if other is not None and other.id != transaction.id:
                logger.info("Receipt %s already recorded on transaction #%s", receipt_number, other.id)
                return False
            transaction.receipt_number = receipt_number
        confirmed = amount if amount is not None else transaction.amount
        transaction.confirmed_amount = confirmed
        transaction.status = PaymentStatus.COMPLETED.value
        transaction.settled_at = self.clock()
        settlement.employee_id = transaction.employee_id

        if (transaction.direction == PaymentDirection.INBOUND.value
                and transaction.kind == PaymentKind.ADVANCE_REPAYMENT.value
                and transaction.employee_id):
            await self._apply_repayment(transaction, confirmed, settlement)
        return True

    async def _apply_repayment(
        self,
        transaction: PaymentTransaction,
        amount: Decimal,
        settlement: _Settlement,
    ) -> None:
        if transaction.repayment_applied:
            return
        if amount <= 0:
            transaction.needs_review = True
            transaction.review_reason = "Repayment callback carried no amount"
            return
        result = await self.allocator.allocate(transaction.employee_id, amount, transaction)
        transaction.repayment_applied = True
        settlement.repayment = result
        settlement.employee_id = transaction.employee_id
        if result.surplus > 0:
            transaction.needs_review = True
            transaction.review_reason = f"Surplus of {result.surplus:.2f} after repaying all advances"

    async def _fail(self, transaction: PaymentTransaction, reason: Optional[str], settlement: _Settlement) -> None:
        """Mark a pending transaction failed; give back what a withdrawal took."""
        transaction.status = PaymentStatus.FAILED.value
        transaction.settled_at = self.clock()
        if transaction.direction == PaymentDirection.OUTBOUND.value:
            for allocation in await self.payments.open_withdrawals(transaction.id):
                advance = await self.advances.get_by_id(allocation.advance_id, for_update=True)
                if advance.status == AdvanceStatus.REPAID.value:
                    # Repaid advances are closed; an administrator settles the difference
                    logger.warning("Withdrawal of %s on repaid advance #%s left in place after failed transaction #%s",
                                   allocation.amount, advance.id, transaction.id)
                    transaction.needs_review = True
                    transaction.review_reason = f"Failed after advance #{advance.id} was repaid"
                    continue
                advance.amount_withdrawn = advance.amount_withdrawn - allocation.amount
                allocation.reversed = True
                logger.warning("Reversed withdrawal of %s on advance #%s after failed transaction #%s",
                               allocation.amount, advance.id, transaction.id)
            message = templates.withdrawal_failed(transaction.amount, reason)
        else:
            message = templates.repayment_failed(transaction.amount, reason)
        settlement.later(lambda: self._notify_employee(transaction, message))

    async def _after_commit(
        self,
        transaction: PaymentTransaction,
        settlement: _Settlement,
        notification_config: NotificationConfig,
    ) -> None:
        for notice in settlement.notices:
            notice()
        if settlement.repayment is not None:
            employee = await self.employees.get(settlement.employee_id)
            self.allocator.notify_received(employee, settlement.repayment.applied + settlement.repayment.surplus)
            await self.allocator.notify_settled(settlement.repayment, employee)
        if transaction.needs_review:
            subject, message = templates.unattributed_payment(transaction)
            self.notifier.alert_admins(notification_config, RECONCILIATION_ALERT, subject, message)

    def _notify_employee(self, transaction: PaymentTransaction, message: str) -> None:
        self.notifier.sms(transaction.phone_number, message)

    # Customer-initiated pay bill confirmations

    async def _pay_bill(self, record: PayBillNotice, notification_config: NotificationConfig) -> ReconciliationOutcome:
        amount = to_money(record.amount)
        phone = normalize_phone(record.phone_number)

        if not record.is_pay_bill:
            return await self._top_up(record, amount)

        owner = None
        referenced = reference_employee_id(record.bill_reference)
        if referenced is not None:
            owner = await self.employees.get_by_id(referenced)
        if owner is None:
            owner = await self.employees.get_by_phone(phone)
        owner_id = owner.id if owner else None

        settlement = _Settlement()
        async with self.locks.hold(employee_key(owner_id) if owner_id else None, transaction_key(record.receipt_number)):
            duplicate = await self.payments.get_by_receipt(record.receipt_number)
            if duplicate is not None:
                logger.info("Duplicate pay bill notice %s for transaction #%s ignored",
                            record.receipt_number, duplicate.id)
                return ReconciliationOutcome(DUPLICATE, duplicate.id)

            transaction = await self.payments.find_pending(PaymentDirection.INBOUND.value, phone, amount, for_update=True)
            if transaction is not None and transaction.employee_id == owner_id:
                logger.info("Pay bill notice %s matched transaction #%s", record.receipt_number, transaction.id)
                transaction.raw_payload = record.raw
                transaction.result_code = "0"
                await self._complete(transaction, amount, record.receipt_number, settlement)
                outcome = SETTLED
            else:
                transaction = self.payments.add(PaymentTransaction(
                    direction=PaymentDirection.INBOUND.value,
                    kind=PaymentKind.PAYBILL.value,
                    amount=amount,
                    confirmed_amount=amount,
                    phone_number=phone,
                    account_reference=record.bill_reference,
                    status=PaymentStatus.COMPLETED.value,
                    receipt_number=record.receipt_number,
                    result_code="0",
                    raw_payload=record.raw,
                    created_at=self.clock(),
                    settled_at=self.clock(),
                ))
                employee_id = referenced if owner is not None and owner.id == referenced else None
                if employee_id is not None:
                    transaction.employee_id = employee_id
                    transaction.kind = PaymentKind.ADVANCE_REPAYMENT.value
                    await self._apply_repayment(transaction, amount, settlement)
                    outcome = ATTRIBUTED
                else:
                    transaction.needs_review = True
                    transaction.review_reason = (
                        f"Account reference '{record.bill_reference}' does not name a known employee"
                    )
                    logger.warning("Unattributed pay bill payment %s of %s from %s",
                                   record.receipt_number, amount, phone)
                    outcome = UNATTRIBUTED
            await self.session.commit()

        await self._after_commit(transaction, settlement, notification_config)
        return ReconciliationOutcome(outcome, transaction.id)

    async def _top_up(self, record: PayBillNotice, amount: Decimal) -> ReconciliationOutcome:
        """Money paid into the business account that is not an employee payment."""
        async with self.locks.hold(transaction_key(record.receipt_number)):
            duplicate = await self.payments.get_by_receipt(record.receipt_number)
            if duplicate is not None:
                logger.info("Duplicate top-up notice %s ignored", record.receipt_number)
                return ReconciliationOutcome(DUPLICATE, duplicate.id)
            transaction = self.payments.add(PaymentTransaction(
                direction=PaymentDirection.INBOUND.value,
                kind=PaymentKind.TOP_UP.value,
                amount=amount,
                confirmed_amount=amount,
                phone_number=record.business_short_code,
                account_reference=record.bill_reference,
                status=PaymentStatus.COMPLETED.value,
                receipt_number=record.receipt_number,
                result_code="0",
                raw_payload=record.raw,
                created_at=self.clock(),
                settled_at=self.clock(),
            ))
            await self.session.commit()
        logger.info("Recorded account top-up %s of %s", record.receipt_number, amount)
        return ReconciliationOutcome(TOP_UP, transaction.id)

    # Account balances

    async def _balances(self, record: AccountBalanceResult, notification_config: NotificationConfig) -> ReconciliationOutcome:
        if not record.succeeded:
            logger.warning("Account balance query failed: %s", record.result_description)
            return ReconciliationOutcome(BALANCES)
        for entry in record.balances:
            await self.payments.set_balance(entry.account, entry.balance, entry.currency)
        await self.session.commit()
        logger.info("Updated %s account balance(s)", len(record.balances))
        for entry in record.balances:
            if entry.account == UTILITY_ACCOUNT:
                self._check_threshold(entry.account, entry.balance, notification_config)
        return ReconciliationOutcome(BALANCES)

    def _check_threshold(self, account: str, balance: Decimal, notification_config: NotificationConfig) -> None:
        threshold = notification_config.balance_threshold
        if threshold is None or balance >= threshold:
            return
        logger.warning("%s account balance %s is below threshold %s", account, balance, threshold)
        subject, message = templates.balance_low(account, balance, threshold)
        self.notifier.alert_admins(notification_config, BALANCE_ALERT, subject, message)

    async def _unrecognized(self, record: UnrecognizedPayload, notification_config: NotificationConfig) -> ReconciliationOutcome:
        logger.warning("Unrecognized payment callback persisted for review: %s", record.reason)
        transaction = self.payments.add(PaymentTransaction(
            direction=PaymentDirection.INBOUND.value,
            kind=PaymentKind.UNKNOWN.value,
            amount=Decimal(0),
            status=PaymentStatus.FAILED.value,
            result_description=record.reason[:255],
            raw_payload=record.raw,
            needs_review=True,
            review_reason=record.reason[:255],
            created_at=self.clock(),
        ))
        await self.session.commit()
        subject, message = templates.unattributed_payment(transaction)
        self.notifier.alert_admins(notification_config, RECONCILIATION_ALERT, subject, message)
        return ReconciliationOutcome(UNRECOGNIZED, transaction.id)

    # Administration

    async def get(self, transaction_id: int) -> PaymentTransaction:
        transaction = await self.payments.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Payment transaction #{transaction_id} not found")
        return transaction

    async def stale_pending(self, older_than: Optional[datetime] = None) -> List[PaymentTransaction]:
        """Pending transactions the network has not answered for too long."""
        if older_than is None:
            older_than = self.clock() - timedelta(minutes=settings.STALE_PENDING_MINUTES)
        return await self.payments.stale_pending(older_than)

    async def alert_stale(self, notification_config: NotificationConfig) -> List[PaymentTransaction]:
        stale = await self.stale_pending()
        if stale:
            logger.warning("%s payment(s) pending for more than %s minutes: %s",
                           len(stale), settings.STALE_PENDING_MINUTES, [item.id for item in stale])
            subject, message = templates.stale_payments(len(stale), settings.STALE_PENDING_MINUTES)
            self.notifier.alert_admins(notification_config, RECONCILIATION_ALERT, subject, message)
        return stale

    async def force_resolve(
        self,
        transaction_id: int,
        actor_id: int,
        status: PaymentStatus,
        notification_config: NotificationConfig,
        receipt_number: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> PaymentTransaction:
        """Settle a pending transaction by hand through the callback settlement path."""
        if status == PaymentStatus.PENDING:
            raise ValidationError("A transaction can only be resolved as completed or failed")
        transaction = await self.get(transaction_id)
        lock_reference = transaction.network_request_id or transaction.merchant_request_id or f"id:{transaction.id}"

        settlement = _Settlement()
        async with self.locks.hold(
            employee_key(transaction.employee_id) if transaction.employee_id else None,
            transaction_key(lock_reference),
        ):
            transaction = await self.payments.get_by_id(transaction_id, for_update=True)
            if transaction.is_terminal:
                raise ValidationError(f"Transaction #{transaction_id} is already {transaction.status}")
            reason = comments or "Resolved manually"
            transaction.result_description = reason[:255]
            transaction.resolved_by = actor_id
            if status == PaymentStatus.COMPLETED:
                if not await self._complete(transaction, None, receipt_number, settlement):
                    await self.session.rollback()
                    raise ValidationError(f"Receipt {receipt_number} is already recorded on another transaction")
            else:
                await self._fail(transaction, reason, settlement)
            await self.session.commit()

        logger.info("Transaction #%s resolved as %s by #%s", transaction.id, status.value, actor_id)
        await self._after_commit(transaction, settlement, notification_config)
        return transaction

    async def assign(
        self,
        transaction_id: int,
        employee_id: int,
        actor_id: int,
        apply_as_repayment: bool = True,
    ) -> PaymentTransaction:
        """Attribute a transaction from the review queue to an employee."""
        transaction = await self.get(transaction_id)
        if not transaction.needs_review:
            raise ValidationError(f"Transaction #{transaction_id} is not awaiting review")
        employee = await self.employees.get(employee_id)

        settlement = _Settlement()
        async with self.locks.hold(employee_key(employee_id), transaction_key(f"id:{transaction_id}")):
            transaction = await self.payments.get_by_id(transaction_id, for_update=True)
            if not transaction.needs_review:
                raise ValidationError(f"Transaction #{transaction_id} is not awaiting review")
            if transaction.employee_id is not None and transaction.employee_id != employee_id:
                raise ValidationError(f"Transaction #{transaction_id} belongs to employee #{transaction.employee_id}")
            transaction.employee_id = employee_id
            transaction.needs_review = False
            transaction.review_reason = None
            transaction.resolved_by = actor_id
            if apply_as_repayment:
                if (transaction.direction != PaymentDirection.INBOUND.value
                        or transaction.status != PaymentStatus.COMPLETED.value):
                    await self.session.rollback()
                    raise ValidationError("Only completed inbound payments can be applied as repayments")
                if transaction.repayment_applied:
                    await self.session.rollback()
                    raise ValidationError("Repayment has already been applied for this transaction")
                transaction.kind = PaymentKind.ADVANCE_REPAYMENT.value
                await self._apply_repayment(transaction, transaction.confirmed_amount or transaction.amount, settlement)
            await self.session.commit()

        logger.info("Transaction #%s assigned to employee #%s by #%s", transaction.id, employee.id, actor_id)
        if settlement.repayment is not None:
            self.allocator.notify_received(employee, settlement.repayment.applied + settlement.repayment.surplus)
            await self.allocator.notify_settled(settlement.repayment, employee)
        return transaction

    async def list(self, status: Optional[PaymentStatus] = None, employee_id: Optional[int] = None,
                   page: int = 1, limit: int = 20):
        return await self.payments.list(status, employee_id, skip=(page - 1) * limit, limit=limit)

    async def allocations(self, transaction_id: int):
        await self.get(transaction_id)
        return await self.payments.allocations(transaction_id)

    async def unattributed(self) -> List[PaymentTransaction]:
        return await self.payments.needing_review()

    async def balances(self):
        return await self.payments.list_balances()
