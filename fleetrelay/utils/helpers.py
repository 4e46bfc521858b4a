"""
Helper utilities
"""
import re
from datetime import datetime, date, timezone
from zoneinfo import ZoneInfo
from decimal import Decimal, ROUND_HALF_UP

METERS_TO_MILES = 0.000621371


def format_currency(amount, currency='USD'):
    """
    Format amount as currency

    Args:
        amount: Numeric amount
        currency (str): Currency code

    Returns:
        str: Formatted currency string
    """
    if isinstance(amount, (Decimal, float, int)):
        amount = float(amount)

        if currency == 'USD':
            return f'${amount:,.2f}'
        else:
            return f'{amount:,.2f} {currency}'

    return str(amount)


def round_money(amount):
    """Round a dollar amount half-up to cents."""
    return float(Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def to_cents(amount):
    return int(Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP) * 100)


def meters_to_miles(meters):
    if meters is None:
        return None
    return meters * METERS_TO_MILES


def seconds_to_hours(seconds):
    if seconds is None:
        return None
    return seconds / 3600.0


def day_of_week(value):
    """
    Lowercase English weekday name for a date

    Args:
        value (date): Date or datetime

    Returns:
        str: e.g. 'monday'
    """
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime('%A').lower()


def format_offer_date(value):
    """Short date used in driver offer texts, e.g. 'Tue 3/4'."""
    if value is None:
        return "TBD"
    if not isinstance(value, (datetime, date)):
        return str(value)
    return '{} {}/{}'.format(value.strftime('%a'), value.month, value.day)


def safe_float(value, default=0.0):
    """
    Safely convert value to float

    Args:
        value: Value to convert
        default (float): Default value if conversion fails

    Returns:
        float: Converted value or default
    """
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def safe_int(value, default=0):
    """
    Safely convert value to int

    Args:
        value: Value to convert
        default (int): Default value if conversion fails

    Returns:
        int: Converted value or default
    """
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def format_phone(phone):
    """Ensure a US phone number has the +1 international prefix.

    Handles common input formats:
        "3055551234"       -> "+13055551234"
        "13055551234"      -> "+13055551234"
        "+13055551234"     -> "+13055551234"
        "(305) 555-1234"   -> "+13055551234"
        ""                 -> ""
        None               -> ""

    Non-US numbers that already start with '+' are returned as-is.
    """
    if not phone:
        return ""

    # Strip everything except digits and leading '+'
    stripped = re.sub(r"[^\d+]", "", phone.strip())

    if not stripped:
        return ""

    if stripped.startswith("+"):
        return stripped

    digits = re.sub(r"\D", "", stripped)

    if len(digits) == 10:
        return "+1{}".format(digits)
    return "+{}".format(digits)


def get_timezone(name):
    """ZoneInfo for an IANA zone name; UTC when unset."""
    return ZoneInfo(name or 'UTC')


def to_local(value, tz):
    """Convert an aware (or naive UTC) datetime to ``tz``."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz)
