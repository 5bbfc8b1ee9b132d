from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from components.accrual import calculator
from components.advance.service import price_advance
from components.core.exceptions import ConfigurationError
from components.system_config.schemas import AccrualModel
from conftest import advance_config, march

employee = SimpleNamespace(base_salary=Decimal("50000"))


def test_working_days_accrual_grows_per_working_day():
    # 18 working days of 22 on a 25,000 cap, floored to the nearest 100
    assert calculator.available_advance(employee, march(26), advance_config()) == Decimal("20400")


def test_weekend_carries_friday_amount():
    config = advance_config()
    friday = calculator.available_advance(employee, march(21), config)
    assert friday == Decimal("17000")
    assert calculator.available_advance(employee, march(22), config) == friday
    assert calculator.available_advance(employee, march(23), config) == friday


def test_holiday_does_not_accrue():
    config = advance_config(holidays=frozenset({march(21)}))
    thursday = calculator.available_advance(employee, march(20), config)
    assert thursday == Decimal("15900")
    assert calculator.available_advance(employee, march(21), config) == thursday


def test_accrual_never_exceeds_cap():
    # July 2025 has 23 working days
    assert calculator.available_advance(employee, date(2025, 7, 31), advance_config()) == Decimal("25000")


def test_calendar_days_model():
    config = advance_config(accrual_model=AccrualModel.CALENDAR_DAYS)
    assert calculator.available_advance(employee, march(26), config) == Decimal("20900")


def test_first_day_before_any_working_day_is_zero():
    # 1 March 2025 is a Saturday
    assert calculator.available_advance(employee, march(1), advance_config()) == Decimal("0")


def test_missing_salary_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        calculator.available_advance(SimpleNamespace(base_salary=None), march(26), advance_config())
    with pytest.raises(ConfigurationError):
        calculator.require_salary(SimpleNamespace(base_salary=Decimal("0")))


def test_daily_accruals_cover_the_month_and_are_repeatable():
    config = advance_config()
    first = list(calculator.daily_accruals(employee, 2025, 3, config))
    second = list(calculator.daily_accruals(employee, 2025, 3, config))
    assert len(first) == 31
    assert first == second
    assert first[0].is_weekend
    amounts = [entry.available_amount for entry in first]
    assert amounts == sorted(amounts)
    assert first[25].date == march(26)
    assert first[25].available_amount == Decimal("20400")


def test_monthly_breakdown_matches_daily_amount():
    config = advance_config()
    summary = calculator.monthly_breakdown(employee, 2025, 3, config, as_of=march(26))
    assert summary.month == "March"
    assert summary.max_advance_amount == Decimal("25000")
    assert summary.accrual_model == "working_days"
    assert summary.total_available_today == calculator.available_advance(employee, march(26), config)


def test_monthly_breakdown_without_as_of():
    summary = calculator.monthly_breakdown(employee, 2025, 3, advance_config())
    assert summary.total_available_today == Decimal("0")


@pytest.mark.parametrize("as_of, expected", [
    (date(2025, 3, 10), date(2025, 3, 25)),
    (date(2025, 3, 25), date(2025, 3, 25)),
    (date(2025, 3, 26), date(2025, 4, 25)),
    (date(2025, 12, 30), date(2026, 1, 25)),
])
def test_next_payday(as_of, expected):
    assert calculator.next_payday(as_of) == expected


def test_floor_to_step():
    assert calculator.floor_to_step(Decimal("15909.09")) == Decimal("15900")
    assert calculator.floor_to_step(Decimal("99.99")) == Decimal("0")


def test_price_advance():
    pricing = price_advance(Decimal("20000"), Decimal("5"), 3)
    assert pricing.total_interest == Decimal("250.00")
    assert pricing.total_repayment == Decimal("20250.00")
    assert pricing.installment_amount == Decimal("6750.00")


def test_price_advance_rounds_installment():
    pricing = price_advance(Decimal("1000"), Decimal("0"), 3)
    assert pricing.total_interest == Decimal("0.00")
    assert pricing.installment_amount == Decimal("333.33")
