from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

"""Workbook / Worksheet containers.

The reader hands the core an already parsed workbook: a mapping of sheet
name to a grid of raw values. Row 1 is the header row, data starts at row 2.
"""

__all__ = [
    "Worksheet",
    "Workbook",
]


def _is_blank(value: Any) -> bool:
    if value is None or value is pd.NaT:
        return True
    if isinstance(value, float) and value != value:  # NaN
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


@dataclass(frozen=True)
class Worksheet:
    name: str
    rows: tuple[tuple[Any, ...], ...] = ()  # 1行目 = ヘッダ

    @classmethod
    def from_rows(cls, name: str, rows: Sequence[Sequence[Any]]) -> Worksheet:
        return cls(name=name, rows=tuple(tuple(r) for r in rows))

    @property
    def header(self) -> tuple[Any, ...]:
        return self.rows[0] if self.rows else ()

    def data_rows(self) -> Iterator[tuple[int, tuple[Any, ...]]]:
        """Yield ``(row_number, cells)`` for every non-blank data row.

        ``row_number`` is 1-based as shown by spreadsheet applications, so
        the first data row is 2. A row keeps the width it was given (the
        reader trims trailing empty cells); rows made only of blank cells
        are not yielded.
        """
        for idx, row in enumerate(self.rows[1:], start=2):
            if all(_is_blank(v) for v in row):
                continue
            yield idx, row


@dataclass(frozen=True)
class Workbook:
    sheets: Mapping[str, Worksheet] = field(default_factory=dict)
    source: str = ""  # ファイル名 (ログ用)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Sequence[Sequence[Any]]], source: str = "") -> Workbook:
        return cls(
            sheets={name: Worksheet.from_rows(name, rows) for name, rows in data.items()},
            source=source,
        )

    @property
    def sheet_names(self) -> list[str]:
        return list(self.sheets.keys())

    def get_sheet(self, name: str) -> Worksheet | None:
        return self.sheets.get(name)
