"""
Validation utilities
"""
import re
import uuid

_TIME_OF_DAY = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def validate_time_of_day(value):
    """
    Validate an HH:MM 24-hour time string

    Args:
        value (str): Time to validate

    Returns:
        bool: True if valid, False otherwise
    """
    if not isinstance(value, str):
        return False
    return bool(_TIME_OF_DAY.match(value))


def validate_uuid(uuid_string):
    """
    Validate UUID format

    Args:
        uuid_string (str): UUID string to validate

    Returns:
        bool: True if valid UUID, False otherwise
    """
    try:
        uuid.UUID(uuid_string)
        return True
    except (ValueError, AttributeError, TypeError):
        return False
