from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per structural / row / load / sheet-level problem. ``row`` is
the 1-based spreadsheet row, or -1 when the problem concerns a whole sheet
or batch and no single row can be named.
"""

__all__ = [
    "ErrorRecord",
    "ROW_TOO_SHORT",
    "TRANSFORM_ERROR",
    "UNIQUE_VIOLATION",
    "FOREIGN_KEY_VIOLATION",
    "LOAD_ERROR",
    "SHEET_NOT_FOUND",
    "MODEL_NOT_FOUND",
    "UNEXPECTED_ERROR",
    "READ_ERROR",
]

ROW_TOO_SHORT = "ROW_TOO_SHORT"
TRANSFORM_ERROR = "TRANSFORM_ERROR"
UNIQUE_VIOLATION = "UNIQUE_VIOLATION"
FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
LOAD_ERROR = "LOAD_ERROR"
SHEET_NOT_FOUND = "SHEET_NOT_FOUND"
MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
READ_ERROR = "READ_ERROR"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: workbook name being imported
        sheet: sheet name within the workbook
        row: 1-based row number, -1 for sheet/batch level errors
        error_type: classification in UPPER_SNAKE_CASE
        message: human readable message (same text as in the import report)
    """
    timestamp: str  # ISO8601 UTC
    file: str
    sheet: str
    row: int  # 不明な場合 -1
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
