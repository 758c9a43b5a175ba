from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..logging.error_log import ErrorLogBuffer
from ..models.descriptor import RowContext, SheetDescriptor
from ..models.diagnostics import SheetDiagnostics
from ..models.error_record import ROW_TOO_SHORT, TRANSFORM_ERROR
from ..models.workbook import Worksheet

"""Sheet processor: worksheet rows -> entity records.

For one descriptor, walks the data rows of the matching worksheet, applies
the column coercers positionally and then the row transform. Problems are
collected in the sheet's bounded diagnostics; nothing raises past
``process_sheet``.

Row outcomes:
- short row (fewer cells than the descriptor's column count): error, skipped
- coercer raising: warning, the field becomes None, row continues
- transform returning None: soft skip (transform usually adds a warning)
- transform raising: error, skipped
"""

__all__ = [
    "ProcessedSheet",
    "process_sheet",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessedSheet:
    sheet_name: str
    records: tuple[dict[str, Any], ...]
    total_rows: int  # ヘッダ・空行を除くデータ行数
    skipped: int

    @property
    def valid_rows(self) -> int:
        return len(self.records)


def process_sheet(
    sheet: Worksheet,
    descriptor: SheetDescriptor,
    *,
    diagnostics: SheetDiagnostics | None = None,
    error_log: ErrorLogBuffer | None = None,
    source: str = "",
) -> ProcessedSheet:
    """Turn the data rows of ``sheet`` into records for ``descriptor.entity``.

    Args:
        sheet: worksheet whose first row is the header
        descriptor: import descriptor for this sheet
        diagnostics: bounded warnings/errors accumulator (created if omitted);
            the orchestrator passes the same instance to the batch loader
        error_log: optional JSON Lines buffer receiving every row error
        source: workbook name for the error log

    Returns:
        ProcessedSheet with the valid records and row counters
    """
    diag = diagnostics if diagnostics is not None else SheetDiagnostics()
    name = descriptor.sheet_name
    expected = descriptor.column_count

    records: list[dict[str, Any]] = []
    total_rows = 0
    skipped = 0

    def row_error(row_number: int, error_type: str, message: str) -> None:
        diag.error(message)
        if error_log is not None:
            error_log.record(source, name, row_number, error_type, message)

    for row_number, cells in sheet.data_rows():
        total_rows += 1

        if len(cells) < expected:
            row_error(
                row_number,
                ROW_TOO_SHORT,
                f'Row {row_number} in "{name}" has fewer columns than expected '
                f"({len(cells)} < {expected})",
            )
            skipped += 1
            continue

        values: list[Any] = []
        for idx, coerce in enumerate(descriptor.coercers):
            try:
                values.append(coerce(cells[idx]))
            except Exception as e:
                diag.warn(f"Row {row_number}: column {idx + 1} could not be converted ({e})")
                values.append(None)

        ctx = RowContext(sheet_name=name, row_number=row_number, warn=diag.warn)
        try:
            record = descriptor.transform(values, ctx)
        except Exception as e:
            logger.debug(f"{name} row {row_number}: transform raised", exc_info=True)
            row_error(row_number, TRANSFORM_ERROR, f'Row {row_number} in "{name}": {type(e).__name__}: {e}')
            skipped += 1
            continue

        if record is None:
            skipped += 1
            continue
        records.append(record)

    logger.debug(
        f"{name}: rows={total_rows} valid={len(records)} skipped={skipped} "
        f"warnings={diag.warnings.total} errors={diag.errors.total}"
    )
    return ProcessedSheet(
        sheet_name=name,
        records=tuple(records),
        total_rows=total_rows,
        skipped=skipped,
    )
