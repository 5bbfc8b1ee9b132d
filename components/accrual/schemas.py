"""Pydantic schemas for accrual results."""

from datetime import date
from decimal import Decimal
from typing import List
from pydantic import BaseModel


class DailyAccrual(BaseModel):
    """Schema for one day of the monthly breakdown."""
    date: date
    available_amount: Decimal
    percentage_of_salary: Decimal
    is_weekend: bool
    is_holiday: bool


class MonthlyAccrualSummary(BaseModel):
    """Schema for a month's accrual breakdown."""
    month: str
    year: int
    basic_salary: Decimal
    max_advance_percentage: Decimal
    max_advance_amount: Decimal
    accrual_model: str
    daily_accruals: List[DailyAccrual]
    total_available_today: Decimal


class EligibilitySummary(BaseModel):
    """Schema for an employee's current advance eligibility."""
    available_advance: Decimal
    accrued_advance: Decimal
    max_advance: Decimal
    basic_salary: Decimal
    advance_percentage: Decimal
    previous_advances: Decimal
    total_amount_repaid: Decimal
    repayment_balance: Decimal
    next_payday: date
