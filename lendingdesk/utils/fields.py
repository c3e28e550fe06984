"""Cleaning and lenient coercion of submitted fields."""
import math
import re
from typing import Any, Optional


def clean_text(value: Any) -> str:
    """Normalize a single-line text field.

    Removes control characters, collapses runs of whitespace and strips the
    ends. None becomes "".

    Examples:
        >>> clean_text("  Dune\\t\\x00 Messiah ")
        'Dune Messiah'
        >>> clean_text(None)
        ''
    """
    if value is None:
        return ""

    text = str(value)
    text = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F-\x9F]', '', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def coerce_non_negative_float(value: Any) -> float:
    """Coerce to a float >= 0, using 0 for missing, invalid or negative input.

    Examples:
        >>> coerce_non_negative_float("12.50")
        12.5
        >>> coerce_non_negative_float("abc")
        0.0
    """
    number = _to_number(value)
    if number is None or number < 0:
        return 0.0
    return number


def coerce_non_negative_int(value: Any) -> int:
    """Like ``coerce_non_negative_float`` but truncated to an int."""
    return int(coerce_non_negative_float(value))
