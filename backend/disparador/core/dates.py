# disparador/core/dates.py
# Datas sempre em UTC "naive", que é como o pymongo devolve os datetimes.

from datetime import datetime, timedelta, timezone

def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)

def start_of_utc_day(moment: datetime | None = None) -> datetime:
    moment = moment or utcnow()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)

def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999000)

def clamp_billing_day(day: int) -> int:
    return min(28, max(1, day))

def add_months(moment: datetime, months: int, day: int | None = None) -> datetime:
    """Soma meses mantendo a hora; `day` (<= 28) fixa o dia do mês de destino."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    target_day = day if day is not None else min(moment.day, 28)
    return moment.replace(year=year, month=month, day=target_day)

def next_period_end(period_start: datetime, billing_day: int) -> datetime:
    return add_months(period_start, 1, clamp_billing_day(billing_day))

def days_from_now(days: int, moment: datetime | None = None) -> datetime:
    return (moment or utcnow()) + timedelta(days=days)
