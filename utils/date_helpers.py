from datetime import date, datetime, time, timedelta
from utils.constants import DATETIME_FORMAT, DATE_FORMAT


def now() -> datetime:
    return datetime.now().replace(microsecond=0)


def today() -> date:
    return date.today()


def parse_datetime(value: str | None) -> datetime | None:
    """Parse a stored timestamp, returning None on failure.

    Accepts 'YYYY-MM-DD HH:MM:SS', ISO 'T'-separated values and bare dates.
    """
    if not value:
        return None
    for fmt in (DATETIME_FORMAT, "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M", DATE_FORMAT):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def format_datetime(d: datetime) -> str:
    return d.strftime(DATETIME_FORMAT)


def format_display(d: datetime) -> str:
    return d.strftime("%b %d, %Y %H:%M")


def start_of_day(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.min)


def end_of_day(d: datetime) -> datetime:
    return datetime.combine(d.date(), time(23, 59, 59))


def add_months(d: datetime, n: int) -> datetime:
    """Add n calendar months without clamping the day.

    Days past the end of the target month roll into the following month,
    so Jan 31 + 1 month is Mar 3 (Mar 2 in a leap year).
    """
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    first = d.replace(year=year, month=month, day=1)
    return first + timedelta(days=d.day - 1)


def add_years(d: datetime, n: int) -> datetime:
    """Add n calendar years; Feb 29 rolls over to Mar 1 in common years."""
    first = d.replace(year=d.year + n, day=1)
    return first + timedelta(days=d.day - 1)


def advance_by_frequency(d: datetime, frequency: str) -> datetime:
    """Return the next due date one frequency unit after d."""
    if frequency == "daily":
        return d + timedelta(days=1)
    if frequency == "weekly":
        return d + timedelta(days=7)
    if frequency == "monthly":
        return add_months(d, 1)
    if frequency == "yearly":
        return add_years(d, 1)
    raise ValueError(f"Unsupported frequency: {frequency}")
