from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import pandas as pd

from ..models.cell import Absent, Boolean, DateValue, FormulaResult, Number, RichText, Text, to_cell
from ..models.config_models import DEFAULT_SERIAL_EPOCH

"""Cell coercion library.

Every coercer accepts a raw reader value (or an already classified ``Cell``)
and returns a typed value or ``None``. Coercers never raise: unparseable or
unrecognised input is ``None``, never an exception.

- to_str: trimmed text, empty -> None
- to_num / to_int / to_decimal: numeric parsing (decimal rounded to 2 places)
- to_bool: native bool, non-zero numbers, FR/EN yes/no tokens; else None
- to_date: native dates, spreadsheet serial numbers, parseable strings
"""

__all__ = [
    "to_str",
    "to_num",
    "to_int",
    "to_decimal",
    "to_bool",
    "to_date",
    "excel_serial_to_datetime",
    "or_default",
    "TRUE_TOKENS",
    "FALSE_TOKENS",
]

TRUE_TOKENS = frozenset({"true", "1", "yes", "vrai", "oui", "o"})
FALSE_TOKENS = frozenset({"false", "0", "no", "faux", "non", "n"})

_CENTS = Decimal("0.01")


def _format_number(n: float | int) -> str:
    if isinstance(n, int):
        return str(n)
    if math.isfinite(n) and n == int(n):
        return str(int(n))
    return repr(n)


def _parse_number(text: str) -> float | int | None:
    s = text.strip()
    # float() は "1_000" を受け付けてしまうので除外
    if not s or "_" in s:
        return None
    try:
        n = float(s)
    except ValueError:
        return None
    if not math.isfinite(n):
        return None
    if n == int(n) and "." not in s and "e" not in s.lower():
        return int(n)
    return n


def to_str(value: Any) -> str | None:
    match to_cell(value):
        case Text(value=s) | RichText(text=s):
            s = s.strip()
            return s or None
        case Boolean(value=b):
            return "true" if b else "false"
        case Number(value=n):
            return _format_number(n)
        case DateValue(value=d):
            return d.isoformat()
        case FormulaResult(result=inner):
            return to_str(inner)
        case _:
            return None


def to_num(value: Any) -> float | int | None:
    match to_cell(value):
        case Number(value=n):
            if isinstance(n, float) and not math.isfinite(n):
                return None
            return n
        case Text(value=s) | RichText(text=s):
            return _parse_number(s)
        case FormulaResult(result=inner):
            return to_num(inner)
        case _:
            # bool / date / absent は数値扱いしない
            return None


def to_int(value: Any) -> int | None:
    n = to_num(value)
    if n is None:
        return None
    return math.floor(n)


def to_decimal(value: Any) -> Decimal | None:
    """Numeric coercion rounded half-up to 2 decimal places (prices)."""
    n = to_num(value)
    if n is None:
        return None
    try:
        return Decimal(str(n)).quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def to_bool(value: Any) -> bool | None:
    match to_cell(value):
        case Boolean(value=b):
            return b
        case Number(value=n):
            if isinstance(n, float) and math.isnan(n):
                return None
            return n != 0
        case Text(value=s) | RichText(text=s):
            token = s.strip().lower()
            if token in TRUE_TOKENS:
                return True
            if token in FALSE_TOKENS:
                return False
            return None
        case FormulaResult(result=inner):
            return to_bool(inner)
        case _:
            return None


def excel_serial_to_datetime(serial: float, epoch: date = DEFAULT_SERIAL_EPOCH) -> datetime | None:
    """Convert a spreadsheet serial day number to ``datetime``.

    The default epoch (1899-12-30) absorbs the 1900 leap-year bug of the
    common spreadsheet producers; the fractional part is the time of day.
    """
    try:
        return datetime.combine(epoch, time.min) + timedelta(days=float(serial))
    except (OverflowError, ValueError):
        return None


def _parse_date_text(text: str) -> datetime | None:
    s = text.strip()
    if not s:
        return None
    try:
        ts = pd.to_datetime(s, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or ts is pd.NaT or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def to_date(value: Any, epoch: date = DEFAULT_SERIAL_EPOCH) -> datetime | None:
    match to_cell(value):
        case DateValue(value=d):
            return d
        case Number(value=n):
            if isinstance(n, float) and not math.isfinite(n):
                return None
            return excel_serial_to_datetime(n, epoch)
        case Text(value=s) | RichText(text=s):
            return _parse_date_text(s)
        case FormulaResult(result=inner):
            return to_date(inner, epoch)
        case Boolean() | Absent():
            return None
        case _:
            return None


def or_default(value: Any, default: Any) -> Any:
    """Return ``default`` when a coerced value is ``None``."""
    return default if value is None else value
