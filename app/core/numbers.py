import math
import re
from typing import Any

_NON_NUMERIC_CHARS = re.compile(r"[^0-9+\-.eE]")
_LEADING_FLOAT = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _finite_or_zero(number: float) -> float:
    return number if math.isfinite(number) else 0


def to_number(value: Any) -> float:
    """Best-effort numeric coercion for AI-supplied values like "300mg" or "20 g".

    Never raises and never returns NaN or infinity; anything unusable becomes 0.
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, float):
        return _finite_or_zero(value)
    if isinstance(value, int):
        try:
            return _finite_or_zero(float(value))
        except OverflowError:
            return 0
    try:
        cleaned = _NON_NUMERIC_CHARS.sub("", str(value))
    except ValueError:
        # str() refuses ints past the interpreter's digit limit.
        return 0
    match = _LEADING_FLOAT.match(cleaned)
    if not match:
        return 0
    try:
        number = float(match.group(0))
    except (ValueError, OverflowError):
        return 0
    return _finite_or_zero(number)
