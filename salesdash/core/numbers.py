"""
Numeric helpers shared by the aggregation layer and the report builders.

Report values use half-up rounding on the scaled value and ``None`` for
anything that is not a finite number.
"""

import math
import re
from typing import Any, Optional

_INVISIBLE = re.compile("[\\u200b-\\u200d\\ufeff]")
_WHITESPACE = re.compile("[\\u00a0\\s]")
_CURRENCY = re.compile("[$,%£€]")


def is_finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def round_half_up(value: Any, digits: int = 2) -> Optional[float]:
    """
    Round ``value`` to ``digits`` places, halves rounding toward +infinity.

    Returns None when value is missing or not finite.
    """
    if not is_finite(value):
        return None
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def to_number(value: Any) -> Optional[float]:
    """Strict numeric coercion: None, empty strings and non-finite values become None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clean_number(value: Any) -> Optional[float]:
    """
    Parse spreadsheet-style numbers.

    Strips zero-width characters, whitespace, currency and percent signs and
    thousands separators before converting. ``"£1,234.50"`` -> 1234.5.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    cleaned = _INVISIBLE.sub("", str(value))
    cleaned = _WHITESPACE.sub("", cleaned)
    cleaned = _CURRENCY.sub("", cleaned)
    if not cleaned:
        return None
    return to_number(cleaned)


def num(value: Any) -> float:
    """Numeric value or 0.0; used when summing store columns."""
    number = to_number(value)
    return number if number is not None else 0.0


def pct_change(current: Any, previous: Any, digits: int = 2) -> Optional[float]:
    """Percentage change relative to ``|previous|``; None when previous is 0 or missing."""
    if not is_finite(current) or not is_finite(previous) or previous == 0:
        return None
    return round_half_up((current - previous) / abs(previous) * 100, digits)


def safe_ratio(numerator: Any, denominator: Any) -> Optional[float]:
    if not is_finite(numerator) or not is_finite(denominator) or denominator <= 0:
        return None
    return numerator / denominator


def share_pct(part: Any, whole: Any, digits: int = 2) -> Optional[float]:
    ratio = safe_ratio(part, whole)
    return round_half_up(ratio * 100, digits) if ratio is not None else None


def format_amount(value: float) -> str:
    """Render an amount without trailing zeros: 2000.0 -> "2000", 12.5 -> "12.5"."""
    rounded = round_half_up(value, 2)
    if rounded is None:
        return ""
    text = f"{rounded:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text
