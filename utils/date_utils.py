from datetime import date, timedelta


def daterange(start: date, end: date, step_days=1):
    cur = start
    while cur <= end:
        yield cur
        cur += timedelta(days=step_days)


def horizon_dates(horizon_days: int, start: date | None = None) -> list[date]:
    """Forecast dates: the `horizon_days` days following `start` (today by default)."""
    start = start or date.today()
    first = start + timedelta(days=1)
    return list(daterange(first, first + timedelta(days=horizon_days - 1)))


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
