from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..models.import_report import ImportReport, SheetStatus

"""SUMMARY line rendering.

One line per CLI run, aggregated over every workbook:

SUMMARY files={n}/{n} success={s} partial={p} failed={f} rows={imported}
duplicates={d} skipped_rows={k} skipped_sheets={ks} elapsed_sec={e} throughput_rps={t}
"""

__all__ = [
    "RunSummary",
    "render_summary_line",
    "format_number",
]


@dataclass(frozen=True)
class RunSummary:
    total_files: int
    success_files: int  # report.success (partial シートを含むものも含む)
    partial_files: int  # success だが partial シートあり
    failed_files: int  # report 失敗 + 読み込み不能
    imported_rows: int
    duplicate_rows: int
    skipped_rows: int
    skipped_sheets: int
    elapsed_seconds: float

    @property
    def throughput_rows_per_sec(self) -> float:
        if self.elapsed_seconds > 0:
            return self.imported_rows / self.elapsed_seconds
        return 0.0

    @classmethod
    def from_reports(
        cls, reports: Iterable[ImportReport], *, elapsed_seconds: float, unreadable_files: int = 0
    ) -> RunSummary:
        reports = list(reports)
        ok = [r for r in reports if r.success]
        return cls(
            total_files=len(reports) + unreadable_files,
            success_files=len(ok),
            partial_files=sum(1 for r in ok if not r.fully_succeeded),
            failed_files=len(reports) - len(ok) + unreadable_files,
            imported_rows=sum(r.summary.total_imported for r in reports),
            duplicate_rows=sum(r.summary.total_duplicates for r in reports),
            skipped_rows=sum(r.summary.total_skipped for r in reports),
            skipped_sheets=sum(len(r.sheets_with_status(SheetStatus.SKIPPED)) for r in reports),
            elapsed_seconds=elapsed_seconds,
        )


def format_number(value: float) -> str:
    """Integers without decimals, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return str(round(value, 3))


def render_summary_line(summary: RunSummary) -> str:
    """Render the SUMMARY line.

    Examples:
        >>> s = RunSummary(
        ...     total_files=1, success_files=1, partial_files=0, failed_files=0,
        ...     imported_rows=1000, duplicate_rows=0, skipped_rows=2,
        ...     skipped_sheets=20, elapsed_seconds=2.0,
        ... )
        >>> render_summary_line(s)  # doctest: +ELLIPSIS
        'SUMMARY files=1/1 success=1 partial=0 failed=0 rows=1000 duplicates=0 ...'
    """
    return (
        f"SUMMARY files={summary.total_files}/{summary.total_files} "
        f"success={summary.success_files} "
        f"partial={summary.partial_files} "
        f"failed={summary.failed_files} "
        f"rows={summary.imported_rows} "
        f"duplicates={summary.duplicate_rows} "
        f"skipped_rows={summary.skipped_rows} "
        f"skipped_sheets={summary.skipped_sheets} "
        f"elapsed_sec={format_number(summary.elapsed_seconds)} "
        f"throughput_rps={format_number(summary.throughput_rows_per_sec)}"
    )
