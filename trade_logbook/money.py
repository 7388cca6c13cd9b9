from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        # str() keeps the shortest repr, so 10.005 stays 10.005 instead of 10.00499...
        return Decimal(str(value))
    if isinstance(value, int):
        return Decimal(value)
    s = str(value).strip().replace(",", "")
    if not s:
        return None
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def float_or_none(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        if isinstance(v, (int, float)):
            out = float(v)
        else:
            s = str(v).strip()
            if not s:
                return None
            out = float(s.replace(",", ""))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(out):
        return None
    return out


def format_money(value: Any, digits: int = 0, dash: str = "—") -> str:
    """
    Currency formatter for table output.

    - `None` -> dash
    - numeric -> "$1,235" (digits=0) or "$1,234.56" (digits=2)
    """
    d = to_decimal(value)
    if d is None:
        return dash
    digits = max(0, int(digits))
    q = Decimal(1) if digits == 0 else Decimal("1").scaleb(-digits)
    d = d.quantize(q, rounding=ROUND_HALF_UP)
    sign = "-" if d < 0 else ""
    d_abs = -d if d < 0 else d
    return f"{sign}${d_abs:,.{digits}f}"


def format_number(value: Any, digits: int = 2, dash: str = "—") -> str:
    d = to_decimal(value)
    if d is None:
        return dash
    digits = max(0, int(digits))
    q = Decimal(1) if digits == 0 else Decimal("1").scaleb(-digits)
    return f"{d.quantize(q, rounding=ROUND_HALF_UP):,}"
