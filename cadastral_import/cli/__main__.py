from __future__ import annotations

import argparse
import os
import sys
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from ..config.descriptors import import_plan
from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, descriptors_from_config, load_config
from ..db.entity_store import EntityStore, InMemoryEntityStore, PostgresEntityStore
from ..excel.reader import WorkbookReadError, read_workbook
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.config_models import ImportConfig
from ..models.descriptor import SheetDescriptor
from ..models.error_record import READ_ERROR
from ..models.import_report import ImportReport
from ..services.orchestrator import run_import, validate_workbook_structure
from ..services.summary import RunSummary, render_summary_line

"""CLI entrypoint: ``python -m cadastral_import.cli``.

Flow:
- load ``.env`` and ``config/import.yml``
- collect workbooks (arguments, or every .xlsx of ``source_directory``)
- import each workbook in its own transaction (COMMIT on success,
  ROLLBACK otherwise unless ``--commit-partial``)
- print one SUMMARY line, flush the JSON Lines error log

Exit codes: 0 every workbook fully imported, 2 partial / failed imports,
1 fatal (config, missing directory, database connection).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


class ProcessingError(Exception):
    """Fatal condition preventing any import (e.g. missing directory)."""


def _resolve_dsn(cfg: ImportConfig) -> str:
    """Connection string; environment first, then config/import.yml.

    1. DATABASE_URL / PGDSN / database.dsn
    2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE with config fallback
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_store(cfg: ImportConfig) -> Iterator[PostgresEntityStore]:  # pragma: no cover (needs a server)
    conn = psycopg2.connect(_resolve_dsn(cfg))
    # BEGIN/COMMIT/ROLLBACK は store が明示的に発行する
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            yield PostgresEntityStore(cur)
    finally:
        conn.close()


@contextmanager
def _memory_store(descriptors: Sequence[SheetDescriptor]) -> Iterator[InMemoryEntityStore]:
    yield InMemoryEntityStore.from_descriptors(descriptors)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env via python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def scan_excel_files(directory: Path) -> list[Path]:
    """Non-recursive scan for .xlsx files, sorted by name.

    Raises:
        ProcessingError: directory missing or unreadable
    """
    if not directory.exists():
        raise ProcessingError(f"directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"path is not a directory: {directory}")
    try:
        return sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix == ".xlsx" and not p.name.startswith("~$")
        )
    except OSError as e:
        raise ProcessingError(f"error reading directory {directory}: {e}") from e


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cadastral_import",
        description="Cadastral workbook -> PostgreSQL bulk importer",
    )
    p.add_argument("workbooks", nargs="*", type=Path, help="Workbooks to import (default: scan source_directory)")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config file (default: config/import.yml)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Import into an in-memory store, no database")
    p.add_argument("--plan", action="store_true", help="Print the sheet import order then exit")
    p.add_argument("--inspect", action="store_true", help="Print workbook structure & first rows then exit")
    p.add_argument("--report-dir", type=Path, default=None, help="Write one JSON import report per workbook")
    p.add_argument("--commit-partial", action="store_true", help="Commit workbooks even when the import failed")
    return p.parse_args(argv)


def _print_plan(descriptors: Sequence[SheetDescriptor]) -> int:
    for step in import_plan(descriptors):
        flag = "required" if step["required"] else "optional"
        deps = ",".join(step["depends_on"]) or "-"
        print(f"{step['position']:>2} {step['sheet']:<20} -> {step['entity']:<20} {flag:<8} cols={step['columns']} deps={deps}")
    return EXIT_SUCCESS_ALL


def _inspect(files: Sequence[Path], descriptors: Sequence[SheetDescriptor]) -> int:
    for f in files:
        print(f"FILE: {f.name}")
        try:
            wb = read_workbook(f)
        except WorkbookReadError as e:
            print(f"  read_error: {e}")
            continue
        v = validate_workbook_structure(wb, descriptors)
        print(f"  valid={v.valid} found={len(v.found)} missing_required={list(v.missing_required)}")
        if v.unknown:
            print(f"  ignored_sheets={list(v.unknown)}")
        by_name = {d.sheet_name: d for d in descriptors}
        for name in v.found:
            sheet = wb.get_sheet(name)
            rows = list(sheet.data_rows())
            print(f"  SHEET: {name} rows={len(rows)} width={len(sheet.header)} expected={by_name[name].column_count}")
            for row_number, cells in rows[:3]:
                safe = [c.isoformat() if hasattr(c, "isoformat") else c for c in cells]
                print(f"    row {row_number}: {safe}")
    return EXIT_SUCCESS_ALL


def _write_report(report_dir: Path, workbook: Path, report: ImportReport) -> Path:
    report_dir.mkdir(parents=True, exist_ok=True)
    out = report_dir / f"{workbook.stem}.report.json"
    out.write_text(report.to_json(indent=2), encoding="utf-8")
    return out


def _import_files(
    files: Sequence[Path],
    store: EntityStore,
    descriptors: Sequence[SheetDescriptor],
    cfg: ImportConfig,
    args: argparse.Namespace,
    error_log: ErrorLogBuffer,
    logger,
) -> tuple[list[ImportReport], int]:
    reports: list[ImportReport] = []
    unreadable = 0
    for path in files:
        try:
            workbook = read_workbook(path)
        except WorkbookReadError as e:
            logger.error(f"{path.name}: {e}")
            error_log.record(path.name, "<FILE_LEVEL>", -1, READ_ERROR, str(e))
            unreadable += 1
            continue

        store.begin()
        report = run_import(workbook, store, descriptors, options=cfg.options, error_log=error_log)
        if report.success or args.commit_partial:
            store.commit()
            outcome = "committed"
        else:
            store.rollback()
            outcome = "rolled back"

        s = report.summary
        log = logger.info if report.success else logger.warning
        log(
            f"{path.name}: success={report.success} {outcome} sheets={report.processed_sheets}/{report.total_sheets} "
            f"imported={s.total_imported} duplicates={s.total_duplicates} "
            f"skipped={s.total_skipped} errors={s.total_errors}"
        )
        for message in report.errors:
            logger.error(f"{path.name}: {message}")
        if args.report_dir is not None:
            out = _write_report(args.report_dir, path, report)
            logger.debug(f"report written: {out}")
        reports.append(report)
    return reports, unreadable


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] を渡されたときに sys.argv を読まないよう None のみ判定
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug()

    try:
        cfg = load_config(args.config)
        descriptors = descriptors_from_config(cfg)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.plan:
        return _print_plan(descriptors)

    try:
        if args.workbooks:
            missing = [p for p in args.workbooks if not p.is_file()]
            if missing:
                raise ProcessingError(f"workbook not found: {', '.join(map(str, missing))}")
            files = list(args.workbooks)
        else:
            directory = Path(cfg.source_directory)
            logger.info(f"Processing files from: {directory}")
            files = scan_excel_files(directory)
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL

    if args.inspect:
        return _inspect(files, descriptors)

    dry_run = args.dry_run or os.getenv("DISABLE_DB_CONNECT") == "1"
    error_log = ErrorLogBuffer()
    started = time.time()
    try:
        store_cm = _memory_store(descriptors) if dry_run else _db_store(cfg)
        with store_cm as store:
            logger.info(f"mode={'dry-run' if dry_run else 'live'} files={len(files)}")
            reports, unreadable = _import_files(files, store, descriptors, cfg, args, error_log, logger)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    elapsed = time.time() - started

    try:
        path = error_log.flush()
        if path is not None:
            logger.info(f"error log: {path}")
    except OSError as e:
        logger.warning(f"error log flush failed: {e}")

    summary = RunSummary.from_reports(reports, elapsed_seconds=elapsed, unreadable_files=unreadable)
    # log_summary が "SUMMARY " を付けるので除去
    log_summary(render_summary_line(summary)[len("SUMMARY "):])

    if summary.failed_files > 0 or summary.partial_files > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
