"""Time and money helpers shared by every calculation in InvestLedger."""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from investledger.config import DATE_FORMAT_STORAGE, DATETIME_FORMAT_STORAGE

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def safe_number(value, default=0) -> Decimal:
    """Coerce ``value`` to a finite Decimal, falling back to ``default``.

    Stored records may carry None, empty strings or garbage; callers never
    have to guard against those themselves.
    """
    if value is None or isinstance(value, bool):
        return Decimal(str(default))
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return Decimal(str(default))
    if not number.is_finite():
        return Decimal(str(default))
    return number


def money(value) -> Decimal:
    """Always return 2-decimal Decimal with HALF_UP rounding."""
    return safe_number(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_date(value):
    """Return a datetime for a date, datetime or stored string, else None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None
    for fmt in (DATETIME_FORMAT_STORAGE, DATE_FORMAT_STORAGE, "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(text[:19], fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def full_months_elapsed(start_date, now) -> int:
    """Count complete calendar months between ``start_date`` and ``now``.

    A month only counts once the day-of-month of ``start_date`` has been
    reached again: start 2026-01-02, now 2026-02-01 -> 0; now 2026-02-02 -> 1.
    """
    start = parse_date(start_date)
    current = parse_date(now)
    if start is None or current is None:
        return 0

    months = (current.year - start.year) * 12 + (current.month - start.month)
    if current.day < start.day:
        months -= 1
    return max(months, 0)


def monthly_interest(principal, rate_percent) -> Decimal:
    """Flat monthly interest: principal * rate% / 100, never negative."""
    value = safe_number(principal) * safe_number(rate_percent) / HUNDRED
    return max(value, ZERO)
