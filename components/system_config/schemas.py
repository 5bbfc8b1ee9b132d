"""Read-only configuration snapshots passed into core operations."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import FrozenSet, List, Optional, Tuple
from pydantic import BaseModel


class AccrualModel(str, enum.Enum):
    """How the advance allowance grows through the month."""
    WORKING_DAYS = "working_days"
    CALENDAR_DAYS = "calendar_days"


class SuspensionWindow(BaseModel):
    """Schema for a suspension period."""
    start_date: datetime
    end_date: datetime
    reason: Optional[str] = None
    is_active: bool = True

    class Config:
        frozen = True
        from_attributes = True

    def covers(self, moment: datetime) -> bool:
        return self.is_active and self.start_date <= moment <= self.end_date


class AdvanceConfig(BaseModel):
    """Snapshot of the advance configuration."""
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal
    max_repayment_period: int = 1
    max_advance_percentage: Decimal = Decimal("50")
    max_active_advances: int = 1
    default_interest_rate: Decimal = Decimal("0")
    accrual_model: AccrualModel = AccrualModel.WORKING_DAYS
    suspension_periods: Tuple[SuspensionWindow, ...] = ()
    holidays: FrozenSet[date] = frozenset()

    class Config:
        frozen = True

    def active_suspension(self, moment: datetime) -> Optional[SuspensionWindow]:
        """Return the suspension period covering the moment, if any."""
        for period in self.suspension_periods:
            if period.covers(moment):
                return period
        return None


class AdminContact(BaseModel):
    """Schema for an alert recipient."""
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    notification_types: Tuple[str, ...] = ()

    class Config:
        frozen = True
        from_attributes = True


class NotificationConfig(BaseModel):
    """Snapshot of the alerting configuration."""
    admins: Tuple[AdminContact, ...] = ()
    balance_threshold: Optional[Decimal] = None
    enable_sms_notifications: bool = True
    enable_email_notifications: bool = True

    class Config:
        frozen = True

    def admins_for(self, notification_type: str) -> List[AdminContact]:
        return [admin for admin in self.admins if notification_type in admin.notification_types]
