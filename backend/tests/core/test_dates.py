# tests/core/test_dates.py
from datetime import datetime

from disparador.core.dates import add_months, clamp_billing_day, end_of_day, next_period_end, start_of_utc_day

def test_add_months_rolls_over_year():
    """Dezembro + 1 mês cai em janeiro do ano seguinte, mantendo a hora."""
    result = add_months(datetime(2024, 12, 15, 10, 30), 1)
    assert result == datetime(2025, 1, 15, 10, 30)

def test_add_months_caps_day_at_28():
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 28)
    assert add_months(datetime(2024, 1, 31), 1, day=5) == datetime(2024, 2, 5)

def test_clamp_billing_day():
    assert clamp_billing_day(0) == 1
    assert clamp_billing_day(15) == 15
    assert clamp_billing_day(31) == 28

def test_next_period_end_uses_billing_day():
    assert next_period_end(datetime(2024, 3, 10, 8), 31) == datetime(2024, 4, 28, 8)

def test_day_bounds():
    moment = datetime(2024, 5, 20, 13, 45, 12, 500)
    assert start_of_utc_day(moment) == datetime(2024, 5, 20)
    assert end_of_day(moment) == datetime(2024, 5, 20, 23, 59, 59, 999000)
