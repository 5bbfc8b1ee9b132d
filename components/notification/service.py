"""Best-effort, fire-and-forget notification dispatch."""

import asyncio
from typing import Awaitable, Optional, Set

from components.core.logging import get_logger
from components.notification.sender import NotificationSender
from components.system_config.schemas import NotificationConfig

logger = get_logger(__name__)

BALANCE_ALERT = "balance_alert"
ADVANCE_ALERT = "advance_alert"
RECONCILIATION_ALERT = "reconciliation_alert"


class Notifier:
    """Schedules deliveries as background tasks.

    Delivery failures are logged and never reach the caller, so a broken SMS
    gateway cannot fail an advance request or a reconciliation.
    """

    def __init__(self, sender: NotificationSender) -> None:
        self.sender = sender
        self._tasks: Set[asyncio.Task] = set()

    def sms(self, phone_number: Optional[str], message: str) -> None:
        if not phone_number:
            return
        self._dispatch(self.sender.send_sms(phone_number, message), f"SMS to {phone_number}")

    def email(self, to: Optional[str], subject: str, html_body: str) -> None:
        if not to:
            return
        self._dispatch(self.sender.send_email(to, subject, html_body), f"email '{subject}' to {to}")

    def alert_admins(self, config: NotificationConfig, notification_type: str, subject: str, message: str) -> None:
        """Alert every admin subscribed to the notification type."""
        recipients = config.admins_for(notification_type)
        if not recipients:
            logger.warning("No admins subscribed to %s; alert not delivered: %s", notification_type, message)
            return
        for admin in recipients:
            if config.enable_sms_notifications:
                self.sms(admin.phone, message)
            if config.enable_email_notifications:
                self.email(admin.email, subject, f"<p>{message}</p>")

    def _dispatch(self, delivery: Awaitable[bool], label: str) -> None:
        task = asyncio.ensure_future(self._guard(delivery, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(delivery: Awaitable[bool], label: str) -> None:
        try:
            delivered = await delivery
        except Exception:
            logger.exception("Notification failed: %s", label)
            return
        if delivered is False:
            logger.warning("Notification not delivered: %s", label)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
