"""Advance accrual calculations.

Everything here is a pure function of its arguments: the employee's salary,
the date asked about and a configuration snapshot. Nothing reads the clock
or the database, so the same inputs always give the same amount and an
eligibility decision can be replayed later for an audit.

Two accrual models are supported:

* ``working_days``: the monthly cap is earned in 22 equal steps, one per
  working day. Weekends and configured holidays carry the previous working
  day's amount forward.
* ``calendar_days``: the cap grows linearly over every day of the month.

Amounts are floored to a multiple of 100 and never exceed the cap.
"""

import calendar
from datetime import date
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import FrozenSet, Iterator, Optional

import numpy as np
import pandas as pd

from components.accrual.schemas import DailyAccrual, MonthlyAccrualSummary
from components.core.exceptions import ConfigurationError
from components.system_config.schemas import AccrualModel, AdvanceConfig

WORKING_DAYS_PER_MONTH = 22
ROUNDING_STEP = Decimal(100)
PAYDAY = 25


def require_salary(employee) -> Decimal:
    """Return the employee's base salary or raise ConfigurationError."""
    salary = getattr(employee, "base_salary", None)
    if salary is None:
        raise ConfigurationError("Employee base salary not set")
    salary = Decimal(str(salary))
    if salary <= 0:
        raise ConfigurationError("Employee base salary must be positive")
    return salary


def max_advance(base_salary: Decimal, config: AdvanceConfig) -> Decimal:
    """The monthly cap: the configured percentage of the base salary."""
    return base_salary * Decimal(config.max_advance_percentage) / Decimal(100)


def floor_to_step(amount: Decimal) -> Decimal:
    return (amount / ROUNDING_STEP).to_integral_value(rounding=ROUND_FLOOR) * ROUNDING_STEP


def _month_bounds(year: int, month: int):
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def _working_days(start: date, end: date, holidays: FrozenSet[date]) -> pd.DatetimeIndex:
    """Weekdays in [start, end] that are not holidays."""
    if end < start:
        return pd.DatetimeIndex([])
    return pd.bdate_range(start, end, freq="C", holidays=sorted(holidays))


def _accrued(cap: Decimal, model: AccrualModel, working_days_so_far: int, day: int, days_in_month: int) -> Decimal:
    if model == AccrualModel.CALENDAR_DAYS:
        running_total = cap * day / days_in_month
    else:
        running_total = cap * working_days_so_far / WORKING_DAYS_PER_MONTH
    return floor_to_step(min(running_total, cap))


def available_advance(employee, as_of: date, config: AdvanceConfig) -> Decimal:
    """Amount of advance the employee has accrued by ``as_of``.

    This is the gross accrual; callers subtract any outstanding repayment
    balance themselves.
    """
    salary = require_salary(employee)
    cap = max_advance(salary, config)
    month_start, month_end = _month_bounds(as_of.year, as_of.month)
    worked = len(_working_days(month_start, as_of, config.holidays))
    return _accrued(cap, config.accrual_model, worked, as_of.day, month_end.day)


def daily_accruals(employee, year: int, month: int, config: AdvanceConfig) -> Iterator[DailyAccrual]:
    """Yield one DailyAccrual per day of the month, in date order."""
    salary = require_salary(employee)
    cap = max_advance(salary, config)
    month_start, month_end = _month_bounds(year, month)

    days = pd.date_range(month_start, month_end, freq="D")
    is_working = days.isin(_working_days(month_start, month_end, config.holidays))
    worked_so_far = np.cumsum(is_working)

    for index, moment in enumerate(days):
        day = moment.date()
        amount = _accrued(cap, config.accrual_model, int(worked_so_far[index]), day.day, month_end.day)
        yield DailyAccrual(
            date=day,
            available_amount=amount,
            percentage_of_salary=(amount / salary * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            is_weekend=day.weekday() >= 5,
            is_holiday=day in config.holidays,
        )


def monthly_breakdown(
    employee,
    year: int,
    month: int,
    config: AdvanceConfig,
    as_of: Optional[date] = None,
) -> MonthlyAccrualSummary:
    """Full month breakdown for display, with the amount available on ``as_of``."""
    salary = require_salary(employee)
    days = list(daily_accruals(employee, year, month, config))

    available_today = Decimal(0)
    if as_of is not None:
        for entry in days:
            if entry.date <= as_of:
                available_today = entry.available_amount

    return MonthlyAccrualSummary(
        month=calendar.month_name[month],
        year=year,
        basic_salary=salary,
        max_advance_percentage=Decimal(config.max_advance_percentage),
        max_advance_amount=max_advance(salary, config),
        accrual_model=AccrualModel(config.accrual_model).value,
        daily_accruals=days,
        total_available_today=available_today,
    )


def next_payday(as_of: date) -> date:
    """The 25th of this month, or of next month once it has passed."""
    if as_of.day <= PAYDAY:
        return date(as_of.year, as_of.month, PAYDAY)
    if as_of.month == 12:
        return date(as_of.year + 1, 1, PAYDAY)
    return date(as_of.year, as_of.month + 1, PAYDAY)
