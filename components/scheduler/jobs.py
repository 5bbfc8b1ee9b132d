"""Periodic background jobs: account balance polling and stale payment sweeps."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from components.core import config
from components.core.database import DatabaseManager
from components.core.exceptions import PaymentInitiationError
from components.core.locks import KeyedLock
from components.core.logging import get_logger
from components.core.providers import build_reconciliation
from components.notification.service import Notifier
from components.payment.network import PaymentNetwork
from components.system_config.repository import SystemConfigRepository

settings = config.get_settings()
logger = get_logger(__name__)

BALANCE_POLL_JOB = "account_balance_poll"
STALE_SWEEP_JOB = "stale_payment_sweep"


async def poll_account_balance(network: PaymentNetwork) -> None:
    """Ask the network for fresh balances; they arrive through the callback."""
    try:
        await network.query_account_balance()
    except PaymentInitiationError as exc:
        logger.error("Account balance poll failed: %s", exc)


async def sweep_stale_payments(
    db_manager: DatabaseManager,
    network: PaymentNetwork,
    locks: KeyedLock,
    notifier: Notifier,
) -> int:
    """Log and alert about pending transactions the network never answered."""
    async with db_manager.get_db() as session:
        notification_config = await SystemConfigRepository(session).get_notification_config()
        stale = await build_reconciliation(session, network, locks, notifier).alert_stale(notification_config)
    return len(stale)


def create_scheduler(
    db_manager: DatabaseManager,
    network: PaymentNetwork,
    locks: KeyedLock,
    notifier: Notifier,
) -> AsyncIOScheduler:
    """Scheduler with both jobs registered; the caller starts and stops it."""
    scheduler = AsyncIOScheduler(timezone="Africa/Nairobi")
    scheduler.add_job(
        poll_account_balance,
        trigger="interval",
        minutes=settings.BALANCE_POLL_MINUTES,
        id=BALANCE_POLL_JOB,
        replace_existing=True,
        args=[network],
    )
    scheduler.add_job(
        sweep_stale_payments,
        trigger="interval",
        minutes=settings.STALE_SWEEP_MINUTES,
        id=STALE_SWEEP_JOB,
        replace_existing=True,
        args=[db_manager, network, locks, notifier],
    )
    return scheduler
