"""Script to seed a working configuration and sample employees into the database."""

from datetime import date
from decimal import Decimal
import asyncio
from sqlalchemy import delete
from components.core.init_db import db_manager
from components.core.security import create_employee_token
from components.advance.models import Advance, AdvanceEvent
from components.employee.models import Employee
from components.payment.models import AccountBalance, PaymentAllocation, PaymentTransaction
from components.system_config.models import (
    AdvanceConfigRecord,
    Holiday,
    NotificationAdmin,
    NotificationSettings,
    SuspensionPeriod,
)


async def seed_data():
    """Create the tables and seed test data."""
    await db_manager.create_all()
    async with db_manager.get_db() as db:
        # Clear existing data
        for model in (
            PaymentAllocation, PaymentTransaction, AccountBalance, AdvanceEvent, Advance,
            NotificationAdmin, NotificationSettings, SuspensionPeriod, Holiday, AdvanceConfigRecord, Employee,
        ):
            await db.execute(delete(model))
        await db.commit()

        # Advance configuration
        db.add(AdvanceConfigRecord(
            min_amount=Decimal("500"),
            max_amount=Decimal("100000"),
            max_repayment_period=3,
            max_advance_percentage=Decimal("50"),
            max_active_advances=2,
            default_interest_rate=Decimal("5"),
            accrual_model="working_days",
            is_active=True,
        ))
        db.add(NotificationSettings(balance_threshold=Decimal("50000")))
        for day, name in (
            (date(2025, 1, 1), "New Year's Day"),
            (date(2025, 5, 1), "Labour Day"),
            (date(2025, 6, 1), "Madaraka Day"),
            (date(2025, 10, 20), "Mashujaa Day"),
            (date(2025, 12, 12), "Jamhuri Day"),
            (date(2025, 12, 25), "Christmas Day"),
        ):
            db.add(Holiday(date=day, name=name))

        # Employees
        admin = Employee(
            employee_number="EMP-0001",
            first_name="Grace",
            last_name="Wanjiru",
            base_salary=Decimal("120000"),
            phone_number="254711000001",
            email="grace.wanjiru@example.com",
            is_admin=True,
        )
        employees = [
            admin,
            Employee(
                employee_number="EMP-0002",
                first_name="Brian",
                last_name="Otieno",
                base_salary=Decimal("50000"),
                phone_number="254711000002",
                email="brian.otieno@example.com",
            ),
            Employee(
                employee_number="EMP-0003",
                first_name="Amina",
                last_name="Hassan",
                base_salary=Decimal("65000"),
                phone_number="254711000003",
                email="amina.hassan@example.com",
            ),
        ]
        for employee in employees:
            db.add(employee)
        await db.commit()

        db.add(NotificationAdmin(
            name=admin.full_name,
            phone=admin.phone_number,
            email=admin.email,
            notification_types=["balance_alert", "advance_alert", "reconciliation_alert"],
        ))
        await db.commit()

        for employee in employees:
            print(f"{employee.full_name} (#{employee.id}): {create_employee_token(employee.id)}")

    await db_manager.dispose()

if __name__ == "__main__":
    asyncio.run(seed_data())
