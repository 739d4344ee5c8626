from datetime import date, datetime, time, timedelta, timezone


def _AsDate(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def NextWeekdayOnOrAfter(value: date | datetime, weekday: int) -> date:
    start = _AsDate(value)
    delta = (weekday - start.weekday()) % 7
    return start + timedelta(days=delta)


def StartOfWeek(value: date | datetime) -> datetime:
    start = _AsDate(value)
    monday = start - timedelta(days=start.weekday())
    return datetime.combine(monday, time.min)


def StartOfMonth(value: date | datetime) -> datetime:
    start = _AsDate(value)
    return datetime(start.year, start.month, 1)


def PeriodStart(period: str, as_of: date | datetime) -> datetime:
    if period == "Weekly":
        return StartOfWeek(as_of)
    if period == "Monthly":
        return StartOfMonth(as_of)
    raise ValueError(f"Unknown budget period: {period}")


def PeriodEnd(period: str, as_of: date | datetime) -> datetime:
    start = PeriodStart(period, as_of)
    if period == "Weekly":
        return start + timedelta(days=7)
    if start.month == 12:
        return datetime(start.year + 1, 1, 1)
    return datetime(start.year, start.month + 1, 1)


def ToNaiveUtc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
