"""
Small helpers shared across the order pipeline: clock, dates and money.
"""

import secrets
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

Clock = Callable[[], datetime]

CENT = Decimal("0.01")


def utc_now() -> datetime:
    """Default clock"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Naive datetimes coming back from the store are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def date_to_ms(value) -> int:
    """Epoch milliseconds of a datetime or of an epoch-ms number"""
    if isinstance(value, datetime):
        return int(as_utc(value).timestamp() * 1000)
    return int(value)


def ms_to_date(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def date_to_text(value) -> str:
    """Short UTC label like 'Mon, 20 Oct'"""
    if not isinstance(value, datetime):
        value = ms_to_date(value)
    return as_utc(value).strftime("%a, %d %b")


def get_future_date(now: datetime, day_to_add: int) -> datetime:
    """Midnight UTC of (this week's Sunday + day_to_add)"""
    today = start_of_day(now)
    # Python weekday(): Monday == 0 ... Sunday == 6
    sunday = today - timedelta(days=(today.weekday() + 1) % 7)
    return sunday + timedelta(days=day_to_add)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def round_money(value) -> Decimal:
    """Currency rounding, 2 places, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value) -> int:
    return int((round_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def generate_random_string() -> str:
    return secrets.token_hex(16)


def sort_labels(labels):
    """Case-insensitive sort, as shown on order lines"""
    return sorted(labels, key=lambda label: label.lower())
