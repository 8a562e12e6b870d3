"""
Data validation utilities.
"""
import math
from typing import Any, Optional


def coerce_number(value: Any) -> Optional[float]:
    """
    Convert a loosely typed value to a finite float.

    Args:
        value: Number, numeric string, or anything else

    Returns:
        Float value, or None if the value is missing, non-numeric or not finite
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def validate_item_id(item_id: Any) -> bool:
    """
    Validate an OSRS item id.

    Args:
        item_id: Item id to validate

    Returns:
        True if valid, False otherwise
    """
    return isinstance(item_id, int) and not isinstance(item_id, bool) and item_id > 0
