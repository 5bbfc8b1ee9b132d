"""Repository for reading configuration snapshots."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from components.core.exceptions import ConfigurationError
from components.system_config.models import (
    AdvanceConfigRecord,
    Holiday,
    NotificationAdmin,
    NotificationSettings,
    SuspensionPeriod,
)
from components.system_config import schemas


class SystemConfigRepository:
    """Repository for configuration lookups."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_advance_config(self) -> schemas.AdvanceConfig:
        """Load the active advance configuration with suspensions and holidays."""
        result = await self.session.execute(
            select(AdvanceConfigRecord)
            .where(AdvanceConfigRecord.is_active.is_(True))
            .order_by(AdvanceConfigRecord.id.desc())
        )
        record = result.scalars().first()
        if record is None:
            raise ConfigurationError("Advance configuration not found")

        result = await self.session.execute(
            select(SuspensionPeriod).order_by(SuspensionPeriod.start_date)
        )
        suspensions = tuple(
            schemas.SuspensionWindow.model_validate(period)
            for period in result.scalars().all()
        )

        result = await self.session.execute(select(Holiday.date))
        holidays = frozenset(result.scalars().all())

        return schemas.AdvanceConfig(
            min_amount=record.min_amount,
            max_amount=record.max_amount,
            max_repayment_period=record.max_repayment_period,
            max_advance_percentage=record.max_advance_percentage,
            max_active_advances=record.max_active_advances,
            default_interest_rate=record.default_interest_rate,
            accrual_model=record.accrual_model,
            suspension_periods=suspensions,
            holidays=holidays,
        )

    async def get_notification_config(self) -> schemas.NotificationConfig:
        """Load alert recipients and switches; defaults apply when unset."""
        result = await self.session.execute(select(NotificationAdmin))
        admins = tuple(
            schemas.AdminContact(
                name=admin.name,
                phone=admin.phone,
                email=admin.email,
                notification_types=tuple(admin.notification_types or ()),
            )
            for admin in result.scalars().all()
        )

        result = await self.session.execute(
            select(NotificationSettings).order_by(NotificationSettings.id.desc())
        )
        record = result.scalars().first()
        if record is None:
            return schemas.NotificationConfig(admins=admins)

        return schemas.NotificationConfig(
            admins=admins,
            balance_threshold=record.balance_threshold,
            enable_sms_notifications=record.enable_sms_notifications,
            enable_email_notifications=record.enable_email_notifications,
        )
