from __future__ import annotations

import math
import numbers
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Union

import numpy as np
import pandas as pd
from openpyxl.cell.rich_text import CellRichText

"""Spreadsheet cell value model.

A raw value handed over by the workbook reader can be anything the parsing
library produced: python scalars, numpy scalars, pandas timestamps, or the
dict-like shapes some spreadsheet libraries use for formula and rich-text
cells. ``to_cell`` classifies such a value into one of the variants below so
that coercion can resolve it by pattern matching instead of probing types.
"""

__all__ = [
    "Absent",
    "Text",
    "Number",
    "Boolean",
    "DateValue",
    "FormulaResult",
    "RichText",
    "Cell",
    "ABSENT",
    "to_cell",
]


@dataclass(frozen=True)
class Absent:
    """Empty cell or a value whose shape is not recognised."""


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Number:
    value: float | int


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class DateValue:
    value: datetime


@dataclass(frozen=True)
class FormulaResult:
    """Formula cell; only the cached result is meaningful for import."""
    result: Cell


@dataclass(frozen=True)
class RichText:
    """Rich text / hyperlink cell reduced to its display text."""
    text: str


Cell = Union[Absent, Text, Number, Boolean, DateValue, FormulaResult, RichText]

ABSENT = Absent()


def _from_mapping(raw: Mapping[str, Any]) -> Cell:
    if "richText" in raw:
        runs = raw.get("richText") or []
        parts = [str(r.get("text", "")) for r in runs if isinstance(r, Mapping)]
        return RichText("".join(parts))
    if "result" in raw:
        inner = to_cell(raw.get("result"))
        if isinstance(inner, Absent):
            return ABSENT
        return FormulaResult(inner)
    if "formula" in raw or "sharedFormula" in raw:
        # 結果キャッシュなしの数式セル
        return ABSENT
    if "text" in raw and isinstance(raw.get("text"), str):
        return RichText(raw["text"])
    return ABSENT


def to_cell(raw: Any) -> Cell:
    """Classify a raw reader value into a ``Cell`` variant.

    Never raises. Unknown shapes become ``Absent``.
    """
    if isinstance(raw, (Absent, Text, Number, Boolean, DateValue, FormulaResult, RichText)):
        return raw
    if raw is None or raw is pd.NaT:
        return ABSENT
    # bool must be checked before numbers (bool is an Integral)
    if isinstance(raw, (bool, np.bool_)):
        return Boolean(bool(raw))
    if isinstance(raw, numbers.Integral):
        return Number(int(raw))
    if isinstance(raw, numbers.Real):
        f = float(raw)
        if math.isnan(f):
            return ABSENT
        return Number(f)
    if isinstance(raw, pd.Timestamp):
        return DateValue(raw.to_pydatetime())
    if isinstance(raw, datetime):
        return DateValue(raw)
    if isinstance(raw, date):
        return DateValue(datetime.combine(raw, time.min))
    if isinstance(raw, str):
        return Text(raw)
    if isinstance(raw, Mapping):
        try:
            return _from_mapping(raw)
        except (TypeError, AttributeError):
            return ABSENT
    # str / TextBlock runs
    if isinstance(raw, CellRichText):
        return RichText(str(raw))
    return ABSENT
