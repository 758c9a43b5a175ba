from __future__ import annotations

import json
import statistics
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

"""Import result models.

``SheetResult`` is the outcome of one descriptor, ``ImportReport`` the
aggregate for one workbook. Both are frozen once built by the orchestrator;
``ImportReport.to_dict`` is the JSON contract consumed by callers.
"""

__all__ = [
    "SheetStatus",
    "SheetResult",
    "ImportSummary",
    "ImportReport",
    "BatchStatsAccumulator",
]


class SheetStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SheetResult:
    sheet_name: str
    entity: str
    status: SheetStatus
    total_rows: int = 0
    imported: int = 0
    duplicates: int = 0
    skipped: int = 0  # ソフトスキップ + エラースキップ + ロード失敗
    errors: tuple[str, ...] = ()  # 上限 + sentinel
    warnings: tuple[str, ...] = ()
    error_count: int = 0  # 上限で切られる前の実数
    warning_count: int = 0
    # バッチ統計 (DEBUG ログ用, JSON には出さない)
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def reconciled(self) -> bool:
        return self.total_rows == self.imported + self.duplicates + self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "sheetName": self.sheet_name,
            "status": self.status.value,
            "totalRows": self.total_rows,
            "imported": self.imported,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class ImportSummary:
    total_imported: int = 0
    total_duplicates: int = 0
    total_skipped: int = 0
    total_errors: int = 0

    @classmethod
    def from_results(cls, results: tuple[SheetResult, ...] | list[SheetResult]) -> ImportSummary:
        return cls(
            total_imported=sum(r.imported for r in results),
            total_duplicates=sum(r.duplicates for r in results),
            total_skipped=sum(r.skipped for r in results),
            total_errors=sum(r.error_count for r in results),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "totalImported": self.total_imported,
            "totalDuplicates": self.total_duplicates,
            "totalSkipped": self.total_skipped,
            "totalErrors": self.total_errors,
        }


@dataclass(frozen=True)
class ImportReport:
    """Aggregated outcome of one workbook import.

    ``processed_sheets`` counts sheets that were present in the workbook and
    went through the processor, whatever their final status.
    """
    success: bool
    total_sheets: int
    processed_sheets: int
    results: tuple[SheetResult, ...]
    errors: tuple[str, ...]
    summary: ImportSummary
    source: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    elapsed_seconds: float = 0.0

    def result_for(self, sheet_name: str) -> SheetResult | None:
        for r in self.results:
            if r.sheet_name == sheet_name:
                return r
        return None

    def sheets_with_status(self, status: SheetStatus) -> list[SheetResult]:
        return [r for r in self.results if r.status == status]

    @property
    def fully_succeeded(self) -> bool:
        """``success`` and no sheet lost data (no partial sheet)."""
        return self.success and not self.sheets_with_status(SheetStatus.PARTIAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalSheets": self.total_sheets,
            "processedSheets": self.processed_sheets,
            "results": [r.to_dict() for r in self.results],
            "errors": list(self.errors),
            "summary": self.summary.to_dict(),
        }

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


class BatchStatsAccumulator:
    """Accumulates batch timings for one sheet load.

    Returns (total_batches, avg_batch_seconds, p95_batch_seconds).
    """

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 20 分位の 19 番目 = p95
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
