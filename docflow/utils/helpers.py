"""Shared coercion helpers for request payloads and stored form data.

parse_date:     returns None on empty input, raises ValueError on bad input
parse_amount:   money → Decimal (2 dp), raises ValueError on bad/negative input
parse_flag:     lenient boolean for checkbox-style form fields
is_placeholder: "none" / "n/a" style answers to optional text questions
"""
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENTS = Decimal("0.01")

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}
_PLACEHOLDER_ANSWERS = {"", "none", "n/a", "na", "-", "null"}


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY / MM/DD/YYYY) to a date object.

    Returns None for empty input; raises ValueError for unparseable input so
    callers can attach a field-level validation error.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in ("%d.%m.%Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value!r}")


def parse_amount(value) -> Decimal:
    """Parse a non-negative money amount, quantised to cents."""
    if value in (None, ""):
        return Decimal("0.00")
    try:
        amount = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Amount must be a non-negative number: {value!r}")
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def parse_flag(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in _TRUE_STRINGS


def is_placeholder(value) -> bool:
    """True for blank answers and literal "none"/"n/a"."""
    if value is None:
        return True
    return str(value).strip().lower() in _PLACEHOLDER_ANSWERS


def iso_or_none(value):
    return value.isoformat() if value else None


def as_utc(value):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
