"""Advance lifecycle: requests, eligibility, status transitions, audit trail.

This is the only module that writes ``Advance.status``. The disbursement
coordinator and repayment allocator move money on advances and then call
``sync_after_withdrawal`` / ``sync_after_repayment`` so the status follows
the amounts through the same transition table.
"""

import calendar
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, List, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from components.accrual import calculator
from components.accrual.schemas import EligibilitySummary, MonthlyAccrualSummary
from components.advance.models import (
    ALLOWED_TRANSITIONS,
    OUTSTANDING_STATUSES,
    Advance,
    AdvanceStatus,
)
from components.advance.repository import AdvanceRepository
from components.advance import schemas
from components.core.database import utcnow
from components.core.exceptions import (
    EligibilityError,
    InvalidStatusTransition,
    NotFoundError,
    ValidationError,
)
from components.core.locks import KeyedLock, employee_key
from components.core.logging import get_logger
from components.employee.models import Employee
from components.employee.repository import EmployeeRepository
from components.notification import templates
from components.notification.service import ADVANCE_ALERT, Notifier
from components.payment.models import AllocationKind, PaymentAllocation
from components.system_config.schemas import AdvanceConfig, NotificationConfig

logger = get_logger(__name__)

CENTS = Decimal("0.01")


class AdvancePricing(NamedTuple):
    total_interest: Decimal
    total_repayment: Decimal
    installment_amount: Decimal


def price_advance(amount: Decimal, interest_rate: Decimal, repayment_period: int) -> AdvancePricing:
    """Simple interest at a monthly-equivalent rate: amount x rate x months / 1200."""
    interest = (amount * interest_rate * repayment_period / Decimal(1200)).quantize(CENTS, rounding=ROUND_HALF_UP)
    total = amount + interest
    installment = (total / repayment_period).quantize(CENTS, rounding=ROUND_HALF_UP)
    return AdvancePricing(interest, total, installment)


def validate_transition(current: str, requested: AdvanceStatus) -> None:
    """Raise InvalidStatusTransition unless the table allows current -> requested."""
    allowed = ALLOWED_TRANSITIONS.get(AdvanceStatus(current), frozenset())
    if requested not in allowed:
        raise InvalidStatusTransition(current, requested.value)


def month_window(moment: datetime):
    """First and last instant of the calendar month containing ``moment``."""
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return (
        datetime.combine(date(moment.year, moment.month, 1), time.min),
        datetime.combine(date(moment.year, moment.month, last_day), time.max),
    )


class AdvanceService:
    """Advance Lifecycle Manager."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        locks: KeyedLock,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.notifier = notifier
        self.locks = locks
        self.clock = clock
        self.advances = AdvanceRepository(session)
        self.employees = EmployeeRepository(session)

    async def get(self, advance_id: int) -> Advance:
        advance = await self.advances.get_by_id(advance_id)
        if advance is None:
            raise NotFoundError(f"Advance #{advance_id} not found")
        return advance

    async def list(self, filters: schemas.AdvanceFilter, page: int = 1, limit: int = 10):
        return await self.advances.list(filters, skip=(page - 1) * limit, limit=limit)

    async def events(self, advance_id: int):
        await self.get(advance_id)
        return await self.advances.get_events(advance_id)

    async def list_for_employee(self, employee_id: int) -> List[Advance]:
        await self.employees.get(employee_id)
        return await self.advances.list_for_employee(employee_id)

    async def repayment_balance(self, employee_id: int) -> Decimal:
        """Total still owed across the employee's disbursed and repaying advances."""
        outstanding = await self.advances.outstanding(employee_id)
        return sum((advance.outstanding for advance in outstanding), Decimal(0))

    async def create(
        self,
        employee_id: int,
        request: schemas.AdvanceCreate,
        config: AdvanceConfig,
        notification_config: Optional[NotificationConfig] = None,
        as_of: Optional[datetime] = None,
    ) -> Advance:
        """Validate eligibility and record a pending advance request."""
        now = as_of or self.clock()
        amount = Decimal(request.amount)
        self._validate_request(amount, request.repayment_period, config)

        async with self.locks.hold(employee_key(employee_id)):
            employee = await self.employees.get_with_salary(employee_id)
            self._check_employment_window(employee, now.date())

            month_start, month_end = month_window(now)
            this_month = await self.advances.requested_between(employee_id, month_start, month_end)
            if any(advance.status == AdvanceStatus.PENDING.value for advance in this_month):
                raise EligibilityError("You have a pending advance request that needs to be approved first")
            if len(this_month) >= config.max_active_advances:
                raise EligibilityError("Maximum number of active advances reached")
            cap = calculator.max_advance(calculator.require_salary(employee), config)
            requested_this_month = sum((advance.amount for advance in this_month), Decimal(0))
            if requested_this_month + amount > cap:
                raise EligibilityError(f"Total advances in current month cannot exceed {cap:.2f}")

            suspension = config.active_suspension(now)
            if suspension is not None:
                raise EligibilityError(
                    f"Advance applications are currently suspended until {suspension.end_date:%Y-%m-%d}"
                )

            accrued = calculator.available_advance(employee, now.date(), config)
            balance = await self.repayment_balance(employee_id)
            available = max(Decimal(0), accrued - balance)
            if amount > available:
                raise EligibilityError(f"Requested amount exceeds available advance amount of {available:.2f}")

            pricing = price_advance(amount, Decimal(config.default_interest_rate), request.repayment_period)
            advance = self.advances.add(Advance(
                employee_id=employee_id,
                amount=amount,
                interest_rate=config.default_interest_rate,
                total_interest=pricing.total_interest,
                total_repayment=pricing.total_repayment,
                installment_amount=pricing.installment_amount,
                amount_repaid=Decimal(0),
                amount_withdrawn=Decimal(0),
                repayment_period=request.repayment_period,
                status=AdvanceStatus.PENDING.value,
                purpose=request.purpose,
                comments=request.comments,
                preferred_payment_method=request.preferred_payment_method.value,
                requested_date=now,
            ))
            self.advances.record_event(advance, None, AdvanceStatus.PENDING, actor_id=employee_id)
            await self.session.commit()
            await self.session.refresh(advance)

        logger.info("Advance #%s of %s requested by employee #%s", advance.id, amount, employee_id)
        sms, subject, body = templates.advance_requested(advance)
        self.notifier.sms(employee.phone_number, sms)
        self.notifier.email(employee.email, subject, body)
        if notification_config is not None:
            alert_subject, alert = templates.advance_request_alert(advance, employee)
            self.notifier.alert_admins(notification_config, ADVANCE_ALERT, alert_subject, alert)
        return advance

    @staticmethod
    def _validate_request(amount: Decimal, repayment_period: int, config: AdvanceConfig) -> None:
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if amount < config.min_amount:
            raise ValidationError(f"Minimum advance amount is {config.min_amount:.2f}")
        if amount > config.max_amount:
            raise ValidationError(f"Maximum advance amount is {config.max_amount:.2f}")
        if repayment_period < 1 or repayment_period > config.max_repayment_period:
            raise ValidationError(
                f"Repayment period must be between 1 and {config.max_repayment_period} months"
            )

    @staticmethod
    def _check_employment_window(employee: Employee, today: date) -> None:
        end = employee.employment_end_date
        if end is not None and (today.year, today.month) == (end.year, end.month):
            raise EligibilityError("Cannot apply for advance in the last month of employment")

    async def update_status(
        self,
        advance_id: int,
        actor_id: int,
        new_status: AdvanceStatus,
        comments: Optional[str] = None,
    ) -> Advance:
        """The administrator path for changing an advance's status."""
        advance = await self.get(advance_id)
        async with self.locks.hold(employee_key(advance.employee_id)):
            advance = await self.advances.get_by_id(advance_id, for_update=True)
            self.transition(advance, new_status, actor_id=actor_id, comments=comments)
            if comments is not None:
                advance.comments = comments
            await self.session.commit()

        logger.info("Advance #%s moved to %s by #%s", advance.id, advance.status, actor_id)
        employee = await self.employees.get(advance.employee_id)
        self.notify_status(advance, employee, comments)
        return advance

    def transition(
        self,
        advance: Advance,
        new_status: AdvanceStatus,
        actor_id: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> None:
        """Apply one table transition, stamp the lifecycle field and audit it.

        The caller holds the employee's lock and commits.
        """
        validate_transition(advance.status, new_status)
        now = self.clock()
        previous = advance.status
        advance.status = new_status.value
        if new_status == AdvanceStatus.APPROVED:
            advance.approved_by = actor_id
            advance.approved_date = now
        elif new_status == AdvanceStatus.DISBURSED:
            advance.disbursed_by = actor_id
            advance.disbursed_date = now
        elif new_status == AdvanceStatus.REPAID:
            advance.repaid_date = now
        self.advances.record_event(advance, previous, new_status, actor_id=actor_id, comments=comments)

    def sync_after_withdrawal(self, advance: Advance) -> bool:
        """Move a fully withdrawn disbursed advance into repayment."""
        if advance.status == AdvanceStatus.DISBURSED.value and advance.amount_withdrawn >= advance.amount:
            self.transition(advance, AdvanceStatus.REPAYING, comments="Fully withdrawn")
            return True
        return False

    def sync_after_repayment(self, advance: Advance) -> bool:
        """Recompute status after a repayment: repaying, or repaid once settled."""
        changed = False
        if advance.status == AdvanceStatus.DISBURSED.value:
            self.transition(advance, AdvanceStatus.REPAYING, comments="Repayment received")
            changed = True
        if advance.status == AdvanceStatus.REPAYING.value and advance.amount_repaid >= advance.total_repayment:
            self.transition(advance, AdvanceStatus.REPAID, comments="Fully repaid")
            changed = True
        return changed

    def notify_status(self, advance: Advance, employee: Employee, comments: Optional[str] = None) -> None:
        message = templates.status_changed(advance, comments)
        if message is None:
            return
        sms, subject, body = message
        self.notifier.sms(employee.phone_number, sms)
        self.notifier.email(employee.email, subject, body)

    async def settle_by_payroll(self, advance_ids: List[int], actor_id: int) -> schemas.PayrollSettlementResult:
        """Mark repaying advances as fully repaid through salary deduction."""
        updated, failed = [], []
        for advance_id in advance_ids:
            advance = await self.advances.get_by_id(advance_id)
            if advance is None:
                failed.append(schemas.PayrollSettlementFailure(advance_id=advance_id, reason="Advance not found"))
                continue
            async with self.locks.hold(employee_key(advance.employee_id)):
                advance = await self.advances.get_by_id(advance_id, for_update=True)
                if advance.status != AdvanceStatus.REPAYING.value:
                    failed.append(schemas.PayrollSettlementFailure(
                        advance_id=advance_id,
                        reason=f"Invalid status: {advance.status}. Only advances in 'repaying' status can be settled",
                    ))
                    continue
                deducted = advance.outstanding
                advance.amount_repaid = advance.total_repayment
                advance.last_repayment_date = self.clock()
                self.session.add(PaymentAllocation(
                    advance=advance,
                    kind=AllocationKind.REPAYMENT.value,
                    amount=deducted,
                ))
                self.transition(advance, AdvanceStatus.REPAID, actor_id=actor_id, comments="Settled by payroll deduction")
                await self.session.commit()
            updated.append(advance_id)
            employee = await self.employees.get(advance.employee_id)
            self.notify_status(advance, employee)
        return schemas.PayrollSettlementResult(updated=updated, failed=failed)

    async def eligibility_summary(
        self, employee_id: int, config: AdvanceConfig, as_of: Optional[date] = None
    ) -> EligibilitySummary:
        """What the employee can draw today and where their advances stand."""
        today = as_of or self.clock().date()
        employee = await self.employees.get_with_salary(employee_id)
        salary = calculator.require_salary(employee)
        accrued = calculator.available_advance(employee, today, config)

        history = await self.advances.list_for_employee(employee_id)
        drawn_statuses = OUTSTANDING_STATUSES + (AdvanceStatus.REPAID.value,)
        previous = sum((a.amount for a in history if a.status in drawn_statuses), Decimal(0))
        repaid = sum((a.amount_repaid for a in history), Decimal(0))
        balance = sum((a.outstanding for a in history if a.status in OUTSTANDING_STATUSES), Decimal(0))

        return EligibilitySummary(
            available_advance=max(Decimal(0), accrued - balance),
            accrued_advance=accrued,
            max_advance=calculator.max_advance(salary, config),
            basic_salary=salary,
            advance_percentage=(accrued / salary * 100).quantize(CENTS, rounding=ROUND_HALF_UP),
            previous_advances=previous,
            total_amount_repaid=repaid,
            repayment_balance=balance,
            next_payday=calculator.next_payday(today),
        )

    async def monthly_summary(self, employee_id: int, year: int, month: int, config: AdvanceConfig) -> MonthlyAccrualSummary:
        employee = await self.employees.get_with_salary(employee_id)
        return calculator.monthly_breakdown(employee, year, month, config, as_of=self.clock().date())
