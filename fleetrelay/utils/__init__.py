"""Utilities package"""
from .validators import validate_time_of_day, validate_uuid
from .helpers import (
    format_currency,
    format_phone,
    round_money,
    meters_to_miles,
    seconds_to_hours,
    day_of_week,
)

__all__ = [
    'validate_time_of_day',
    'validate_uuid',
    'format_currency',
    'format_phone',
    'round_money',
    'meters_to_miles',
    'seconds_to_hours',
    'day_of_week',
]
