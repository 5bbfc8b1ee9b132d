"""System configuration models for the database."""

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, JSON, Numeric, String

from components.core.database import Base


class AdvanceConfigRecord(Base):
    """Advance eligibility and pricing configuration."""
    __tablename__ = "advance_config"

    id = Column(Integer, primary_key=True, index=True)
    min_amount = Column(Numeric(12, 2), nullable=False, default=0)
    max_amount = Column(Numeric(12, 2), nullable=False)
    max_repayment_period = Column(Integer, nullable=False, default=1)
    max_advance_percentage = Column(Numeric(5, 2), nullable=False, default=50)
    max_active_advances = Column(Integer, nullable=False, default=1)
    default_interest_rate = Column(Numeric(5, 2), nullable=False, default=0)
    accrual_model = Column(String(20), nullable=False, default="working_days")
    is_active = Column(Boolean, nullable=False, default=True)


class SuspensionPeriod(Base):
    """Date range during which new advance requests are blocked."""
    __tablename__ = "suspension_periods"

    id = Column(Integer, primary_key=True, index=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    reason = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Holiday(Base):
    """Public holiday excluded from working-day accrual."""
    __tablename__ = "holidays"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, nullable=False)
    name = Column(String(100), nullable=True)


class NotificationAdmin(Base):
    """Administrator subscribed to operational alerts."""
    __tablename__ = "notification_admins"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    notification_types = Column(JSON, nullable=False, default=list)  # balance_alert, advance_alert, reconciliation_alert


class NotificationSettings(Base):
    """Alerting switches and the disbursement account balance threshold."""
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, index=True)
    balance_threshold = Column(Numeric(14, 2), nullable=True)
    enable_sms_notifications = Column(Boolean, nullable=False, default=True)
    enable_email_notifications = Column(Boolean, nullable=False, default=True)
