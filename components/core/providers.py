"""Process-wide collaborators and per-request service factories.

The lock registry, notifier and payment network client are shared by all
requests of a process. Every getter is a FastAPI dependency, so tests swap
any of them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from components.advance.service import AdvanceService
from components.core.init_db import get_db
from components.core.locks import KeyedLock
from components.disbursement.service import DisbursementService
from components.notification.sender import HttpNotificationSender
from components.notification.service import Notifier
from components.payment.network import DarajaClient, PaymentNetwork
from components.reconciliation.service import ReconciliationService
from components.repayment.service import RepaymentAllocator
from components.system_config.repository import SystemConfigRepository
from components.system_config.schemas import AdvanceConfig, NotificationConfig


@lru_cache()
def get_locks() -> KeyedLock:
    return KeyedLock()


@lru_cache()
def get_notifier() -> Notifier:
    return Notifier(HttpNotificationSender())


@lru_cache()
def get_payment_network() -> PaymentNetwork:
    return DarajaClient()


async def get_advance_config(db: AsyncSession = Depends(get_db)) -> AdvanceConfig:
    return await SystemConfigRepository(db).get_advance_config()


async def get_notification_config(db: AsyncSession = Depends(get_db)) -> NotificationConfig:
    return await SystemConfigRepository(db).get_notification_config()


def build_advance_service(session: AsyncSession, notifier: Notifier, locks: KeyedLock) -> AdvanceService:
    return AdvanceService(session, notifier, locks)


def build_allocator(
    session: AsyncSession, network: PaymentNetwork, locks: KeyedLock, notifier: Notifier
) -> RepaymentAllocator:
    return RepaymentAllocator(session, build_advance_service(session, notifier, locks), locks, notifier, network)


def build_reconciliation(
    session: AsyncSession, network: PaymentNetwork, locks: KeyedLock, notifier: Notifier
) -> ReconciliationService:
    return ReconciliationService(session, build_allocator(session, network, locks, notifier), locks, notifier)


def get_advance_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    locks: KeyedLock = Depends(get_locks),
) -> AdvanceService:
    return build_advance_service(db, notifier, locks)


def get_disbursement_service(
    db: AsyncSession = Depends(get_db),
    network: PaymentNetwork = Depends(get_payment_network),
    notifier: Notifier = Depends(get_notifier),
    locks: KeyedLock = Depends(get_locks),
) -> DisbursementService:
    return DisbursementService(db, build_advance_service(db, notifier, locks), network, locks, notifier)


def get_repayment_allocator(
    db: AsyncSession = Depends(get_db),
    network: PaymentNetwork = Depends(get_payment_network),
    notifier: Notifier = Depends(get_notifier),
    locks: KeyedLock = Depends(get_locks),
) -> RepaymentAllocator:
    return build_allocator(db, network, locks, notifier)


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    network: PaymentNetwork = Depends(get_payment_network),
    notifier: Notifier = Depends(get_notifier),
    locks: KeyedLock = Depends(get_locks),
) -> ReconciliationService:
    return build_reconciliation(db, network, locks, notifier)
