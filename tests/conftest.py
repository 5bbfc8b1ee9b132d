"""Shared fixtures: a throwaway SQLite database, fakes for the network and SMS/email."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from components.advance.models import Advance, AdvanceStatus
from components.advance.service import AdvanceService
from components.core.database import DatabaseManager
from components.core.locks import KeyedLock
from components.disbursement.service import DisbursementService
from components.employee.models import Employee
from components.notification.service import Notifier
from components.payment.network import CorrelationIds
from components.reconciliation.service import ReconciliationService
from components.repayment.service import RepaymentAllocator
from components.system_config.models import (
    AdvanceConfigRecord,
    NotificationAdmin,
    NotificationSettings,
)
from components.system_config.schemas import AdvanceConfig, NotificationConfig
import components.core.init_db  # noqa: F401  registers every model

# Wednesday; 18 working days of March 2025 have passed
NOW = datetime(2025, 3, 26, 10, 0, 0)


class RecordingSender:
    """NotificationSender that keeps every message in memory."""

    def __init__(self):
        self.sms = []
        self.emails = []

    async def send_sms(self, phone_number, message):
        self.sms.append((phone_number, message))
        return True

    async def send_email(self, to, subject, html_body):
        self.emails.append((to, subject, html_body))
        return True

    async def aclose(self):
        pass

    def sms_to(self, phone_number):
        return [message for phone, message in self.sms if phone == phone_number]


class FakeNetwork:
    """PaymentNetwork that accepts everything and hands out sequential ids."""

    def __init__(self):
        self.outbound = []
        self.inbound = []
        self.balance_queries = 0
        self.error: Optional[Exception] = None
        self._sequence = 0

    def _ids(self, prefix):
        self._sequence += 1
        return CorrelationIds(f"{prefix}-MRQ-{self._sequence}", f"{prefix}-NRQ-{self._sequence}")

    async def initiate_outbound_payment(self, phone_number, amount, remarks, occasion):
        if self.error is not None:
            raise self.error
        self.outbound.append((phone_number, amount))
        return self._ids("B2C")

    async def initiate_inbound_payment_request(self, phone_number, amount, account_reference):
        if self.error is not None:
            raise self.error
        self.inbound.append((phone_number, amount, account_reference))
        return self._ids("STK")

    async def query_account_balance(self):
        if self.error is not None:
            raise self.error
        self.balance_queries += 1

    async def aclose(self):
        pass


def advance_config(**overrides) -> AdvanceConfig:
    values = dict(
        min_amount=Decimal("500"),
        max_amount=Decimal("100000"),
        max_repayment_period=3,
        max_advance_percentage=Decimal("50"),
        max_active_advances=2,
        default_interest_rate=Decimal("5"),
    )
    values.update(overrides)
    return AdvanceConfig(**values)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'advances.db'}")
    await DatabaseManager(engine).create_all()
    yield engine
    await engine.dispose()


@pytest.fixture
def db_manager(engine):
    return DatabaseManager(engine)


@pytest_asyncio.fixture
async def session(db_manager):
    async with db_manager.get_db() as session:
        yield session


@pytest.fixture
def locks():
    return KeyedLock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest_asyncio.fixture
async def notifier(sender):
    notifier = Notifier(sender)
    yield notifier
    await notifier.drain()


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def config():
    return advance_config()


@pytest.fixture
def notification_config():
    return NotificationConfig()


def clock():
    return NOW


@pytest.fixture
def build_services(notifier, locks, network):
    """Wire the services over a given session the way the providers do."""

    def build(session):
        lifecycle = AdvanceService(session, notifier, locks, clock=clock)
        allocator = RepaymentAllocator(session, lifecycle, locks, notifier, network)
        disbursement = DisbursementService(session, lifecycle, network, locks, notifier)
        reconciliation = ReconciliationService(session, allocator, locks, notifier)
        return lifecycle, allocator, disbursement, reconciliation

    return build


@pytest.fixture
def lifecycle(build_services, session):
    return build_services(session)[0]


@pytest.fixture
def allocator(build_services, session):
    return build_services(session)[1]


@pytest.fixture
def disbursement(build_services, session):
    return build_services(session)[2]


@pytest.fixture
def reconciliation(build_services, session):
    return build_services(session)[3]


@pytest.fixture
def make_employee(session):
    counter = {"value": 0}

    async def make(**overrides) -> Employee:
        counter["value"] += 1
        number = counter["value"]
        values = dict(
            employee_number=f"EMP-{number:04d}",
            first_name="Test",
            last_name=f"Employee{number}",
            base_salary=Decimal("50000"),
            phone_number=f"2547110000{number:02d}",
            email=f"employee{number}@example.com",
            is_admin=False,
        )
        values.update(overrides)
        employee = Employee(**values)
        session.add(employee)
        await session.commit()
        await session.refresh(employee)
        return employee

    return make


@pytest.fixture
def make_advance(session):
    """Insert an advance in any status, bypassing the request checks."""

    async def make(employee, amount="10000", status=AdvanceStatus.DISBURSED, total_repayment=None,
                   amount_withdrawn=None, amount_repaid="0", approved_date=None) -> Advance:
        amount = Decimal(amount)
        total = Decimal(total_repayment) if total_repayment is not None else amount
        if amount_withdrawn is None:
            amount_withdrawn = Decimal(0)
        advance = Advance(
            employee_id=employee.id,
            amount=amount,
            interest_rate=Decimal("0"),
            total_interest=total - amount,
            total_repayment=total,
            installment_amount=total,
            amount_repaid=Decimal(amount_repaid),
            amount_withdrawn=Decimal(amount_withdrawn),
            repayment_period=1,
            status=status.value,
            preferred_payment_method="mpesa",
            requested_date=datetime(2025, 3, 1, 9, 0, 0),
            approved_date=approved_date or datetime(2025, 3, 2, 9, 0, 0),
            disbursed_date=datetime(2025, 3, 3, 9, 0, 0),
        )
        session.add(advance)
        await session.commit()
        await session.refresh(advance)
        return advance

    return make


@pytest_asyncio.fixture
async def seeded_config(session):
    """Persisted configuration matching the ``config`` fixture, with one alerting admin."""
    session.add(AdvanceConfigRecord(
        min_amount=Decimal("500"),
        max_amount=Decimal("100000"),
        max_repayment_period=3,
        max_advance_percentage=Decimal("50"),
        max_active_advances=2,
        default_interest_rate=Decimal("5"),
        accrual_model="working_days",
        is_active=True,
    ))
    session.add(NotificationSettings(balance_threshold=Decimal("10000")))
    session.add(NotificationAdmin(
        name="Ops Admin",
        phone="254799000000",
        email="ops@example.com",
        notification_types=["balance_alert", "advance_alert", "reconciliation_alert"],
    ))
    await session.commit()


@pytest.fixture
def alerting_config():
    from components.system_config.schemas import AdminContact

    return NotificationConfig(
        admins=(AdminContact(
            name="Ops Admin",
            phone="254799000000",
            email="ops@example.com",
            notification_types=("balance_alert", "advance_alert", "reconciliation_alert"),
        ),),
        balance_threshold=Decimal("10000"),
    )


def march(day: int) -> date:
    return date(2025, 3, day)
