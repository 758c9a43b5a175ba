from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from ..config.descriptors import DEFAULT_DESCRIPTORS
from ..db.entity_store import EntityStore
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportOptions
from ..models.descriptor import SheetDescriptor
from ..models.diagnostics import SheetDiagnostics
from ..models.error_record import MODEL_NOT_FOUND, SHEET_NOT_FOUND, UNEXPECTED_ERROR
from ..models.import_report import (
    BatchStatsAccumulator,
    ImportReport,
    ImportSummary,
    SheetResult,
    SheetStatus,
)
from ..models.workbook import Workbook
from .batch_loader import load_records
from .sheet_processor import process_sheet

"""Import orchestrator.

Drives one workbook through the descriptor list in declared order and
folds every sheet's outcome into an ``ImportReport``:

    sheet absent, required          -> failed (+ global error)
    sheet absent, optional          -> skipped
    no data rows                    -> skipped
    rows but no valid record        -> failed
    entity missing in the store     -> failed (+ global error)
    loaded, no loader error         -> success
    loader errors, some imported    -> partial
    loader errors, nothing imported -> failed

Overall success: no failed sheet and no global error. Nothing raises out of
``run_import``; transactions belong to the caller.
"""

__all__ = [
    "WorkbookValidation",
    "validate_workbook_structure",
    "run_import",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkbookValidation:
    valid: bool  # 必須シートがすべて揃っている
    found: tuple[str, ...]
    missing_required: tuple[str, ...]
    missing_optional: tuple[str, ...]
    unknown: tuple[str, ...]  # 取り込み対象外のシート


def validate_workbook_structure(
    workbook: Workbook, descriptors: Sequence[SheetDescriptor] = DEFAULT_DESCRIPTORS
) -> WorkbookValidation:
    """Pre-flight check of which descriptor sheets the workbook contains."""
    names = set(workbook.sheet_names)
    found = tuple(d.sheet_name for d in descriptors if d.sheet_name in names)
    missing_required = tuple(d.sheet_name for d in descriptors if d.required and d.sheet_name not in names)
    missing_optional = tuple(
        d.sheet_name for d in descriptors if not d.required and d.sheet_name not in names
    )
    known = {d.sheet_name for d in descriptors}
    unknown = tuple(n for n in workbook.sheet_names if n not in known)
    return WorkbookValidation(
        valid=not missing_required,
        found=found,
        missing_required=missing_required,
        missing_optional=missing_optional,
        unknown=unknown,
    )


def _import_sheet(
    workbook: Workbook,
    descriptor: SheetDescriptor,
    store: EntityStore,
    options: ImportOptions,
    error_log: ErrorLogBuffer | None,
    global_errors: list[str],
) -> tuple[SheetResult, bool]:
    """Import one sheet; returns (result, sheet_was_present)."""
    name = descriptor.sheet_name
    source = workbook.source

    def sheet_level_error(error_type: str, message: str) -> None:
        global_errors.append(message)
        if error_log is not None:
            error_log.record(source, name, -1, error_type, message)

    sheet = workbook.get_sheet(name)
    if sheet is None:
        if not descriptor.required:
            logger.debug(f"{name}: optional sheet not present, skipped")
            return SheetResult(sheet_name=name, entity=descriptor.entity, status=SheetStatus.SKIPPED), False
        message = f'Required sheet "{name}" not found in workbook'
        logger.error(message)
        sheet_level_error(SHEET_NOT_FOUND, message)
        return SheetResult(
            sheet_name=name,
            entity=descriptor.entity,
            status=SheetStatus.FAILED,
            errors=(message,),
            error_count=1,
        ), False

    diag = SheetDiagnostics(options.max_warnings, options.max_errors)
    processed = process_sheet(sheet, descriptor, diagnostics=diag, error_log=error_log, source=source)

    def result(status: SheetStatus, imported: int = 0, duplicates: int = 0, skipped: int = 0,
               stats: tuple[int, float, float] = (0, 0.0, 0.0)) -> SheetResult:
        return SheetResult(
            sheet_name=name,
            entity=descriptor.entity,
            status=status,
            total_rows=processed.total_rows,
            imported=imported,
            duplicates=duplicates,
            skipped=skipped,
            errors=diag.errors.snapshot(),
            warnings=diag.warnings.snapshot(),
            error_count=diag.errors.total,
            warning_count=diag.warnings.total,
            total_batches=stats[0],
            avg_batch_seconds=stats[1],
            p95_batch_seconds=stats[2],
        )

    if processed.total_rows == 0:
        return result(SheetStatus.SKIPPED), True

    if not processed.records:
        diag.error(f'"{name}": no valid data found ({processed.total_rows} rows processed)')
        return result(SheetStatus.FAILED, skipped=processed.skipped), True

    if not store.has_entity(descriptor.entity):
        message = f'Model "{descriptor.entity}" not found for sheet "{name}"'
        logger.error(message)
        diag.error(message)
        sheet_level_error(MODEL_NOT_FOUND, message)
        # 未ロードのレコードはスキップ扱い (件数の整合性維持)
        return result(SheetStatus.FAILED, skipped=processed.skipped + len(processed.records)), True

    acc = BatchStatsAccumulator()
    load = load_records(
        store,
        descriptor.entity,
        processed.records,
        batch_size=options.batch_size,
        sheet_name=name,
        diagnostics=diag,
        error_log=error_log,
        source=source,
        metrics_callback=lambda m: acc.add_batch_time(m.elapsed_seconds),
    )
    stats = acc.get_stats()
    logger.debug(
        f"{name}: batches={stats[0]} avg_batch_sec={stats[1]:.4f} p95_batch_sec={stats[2]:.4f}"
    )

    if not load.errors:
        status = SheetStatus.SUCCESS
    elif load.imported > 0:
        status = SheetStatus.PARTIAL
    else:
        status = SheetStatus.FAILED

    return result(
        status,
        imported=load.imported,
        duplicates=load.duplicates,
        skipped=processed.skipped + load.failed,
        stats=stats,
    ), True


def run_import(
    workbook: Workbook,
    store: EntityStore,
    descriptors: Sequence[SheetDescriptor] = DEFAULT_DESCRIPTORS,
    *,
    options: ImportOptions | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ImportReport:
    """Import every descriptor's sheet of ``workbook`` into ``store``.

    Args:
        workbook: parsed workbook
        store: entity store; the caller owns its transaction
        descriptors: ordered descriptor set
        options: batch size and diagnostics caps
        error_log: optional JSON Lines buffer (sheet, row and batch errors)

    Returns:
        The aggregated, immutable ``ImportReport``.
    """
    opts = options if options is not None else ImportOptions()
    started_at = datetime.now(UTC)
    global_errors: list[str] = []
    results: list[SheetResult] = []
    processed_sheets = 0

    validation = validate_workbook_structure(workbook, descriptors)
    if validation.unknown:
        logger.info(f"{workbook.source or 'workbook'}: ignoring sheets {list(validation.unknown)}")

    for descriptor in descriptors:
        try:
            sheet_result, present = _import_sheet(
                workbook, descriptor, store, opts, error_log, global_errors
            )
        except Exception as e:
            logger.exception(f"{descriptor.sheet_name}: unexpected error")
            message = f'Unexpected error while importing "{descriptor.sheet_name}": {e}'
            global_errors.append(message)
            if error_log is not None:
                error_log.record(workbook.source, descriptor.sheet_name, -1, UNEXPECTED_ERROR, message)
            sheet_result = SheetResult(
                sheet_name=descriptor.sheet_name,
                entity=descriptor.entity,
                status=SheetStatus.FAILED,
                errors=(message,),
                error_count=1,
            )
            present = workbook.get_sheet(descriptor.sheet_name) is not None

        if present:
            processed_sheets += 1
        if sheet_result.status != SheetStatus.SKIPPED:
            logger.info(
                f"{sheet_result.sheet_name}: status={sheet_result.status.value} "
                f"rows={sheet_result.total_rows} imported={sheet_result.imported} "
                f"duplicates={sheet_result.duplicates} skipped={sheet_result.skipped} "
                f"errors={sheet_result.error_count} warnings={sheet_result.warning_count}"
            )
        results.append(sheet_result)

    finished_at = datetime.now(UTC)
    success = not global_errors and all(r.status != SheetStatus.FAILED for r in results)
    report = ImportReport(
        success=success,
        total_sheets=len(descriptors),
        processed_sheets=processed_sheets,
        results=tuple(results),
        errors=tuple(global_errors),
        summary=ImportSummary.from_results(results),
        source=workbook.source,
        started_at=started_at,
        finished_at=finished_at,
        elapsed_seconds=(finished_at - started_at).total_seconds(),
    )
    return report
