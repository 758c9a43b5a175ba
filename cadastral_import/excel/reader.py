from __future__ import annotations

import io
import zipfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ..models.workbook import Workbook, Worksheet

"""Workbook reader (pandas + openpyxl).

Sheets are read without a header (row 1 stays in the grid, the processor
skips it) and with pandas' NA string detection disabled: a literal "NA" or
"null" in a cell is text, only truly empty cells become ``None``. Values
are converted to plain python objects so the core never sees numpy or
pandas scalars.
"""

__all__ = [
    "WorkbookReadError",
    "read_excel_file",
    "read_workbook",
    "frame_to_rows",
]


class WorkbookReadError(Exception):
    """Raised when the payload is not a readable workbook."""


def _to_python(value: Any) -> Any:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        item = value.item()
        if isinstance(item, float) and np.isnan(item):
            return None
        return item
    return value


def frame_to_rows(df: pd.DataFrame) -> list[list[Any]]:
    """Convert a header-less DataFrame into a list of python rows.

    pandas pads every row to the widest row of the sheet; trailing empty
    cells are dropped again so a row ends at its last non-empty cell.
    """
    rows: list[list[Any]] = []
    for raw in df.itertuples(index=False, name=None):
        row = [_to_python(v) for v in raw]
        while row and row[-1] is None:
            row.pop()
        rows.append(row)
    return rows


def read_excel_file(
    source: Path | str | bytes,
    target_sheets: Iterable[str] | None = None,
) -> dict[str, pd.DataFrame]:
    """Read a workbook returning raw DataFrames keyed by sheet name.

    Parameters
    ----------
    source: ファイルパス、またはアップロードされたバイト列
    target_sheets: 対象シート制限 (None なら全シート)
    """
    payload: Any = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    try:
        xls = pd.ExcelFile(payload, engine="openpyxl")
    except (ValueError, OSError, zipfile.BadZipFile, KeyError) as e:
        raise WorkbookReadError(f"unreadable workbook: {e}") from e

    wanted = set(target_sheets) if target_sheets is not None else None
    dfs: dict[str, pd.DataFrame] = {}
    with xls:
        for name in xls.sheet_names:
            if wanted is not None and str(name) not in wanted:
                continue
            dfs[str(name)] = xls.parse(name, header=None, keep_default_na=False, na_values=[""])
    return dfs


def read_workbook(source: Path | str | bytes, source_name: str | None = None) -> Workbook:
    """Parse a workbook into the ``Workbook`` structure used by the importer."""
    if source_name is None:
        source_name = Path(source).name if isinstance(source, (str, Path)) else "<upload>"
    dfs = read_excel_file(source)
    sheets = {name: Worksheet.from_rows(name, frame_to_rows(df)) for name, df in dfs.items()}
    return Workbook(sheets=sheets, source=source_name)
