from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..db.batch_insert import BatchMetrics, LoadErrorKind, classify_load_error
from ..db.entity_store import EntityStore
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import DEFAULT_BATCH_SIZE
from ..models.diagnostics import SheetDiagnostics

"""Batch loader.

Persists the records of one entity in fixed-size batches. Each batch is
inserted with duplicate skipping (``duplicates = batch size - inserted``);
a failing batch is recorded with a classified message and the loader moves
on to the next one.
"""

__all__ = [
    "LoadResult",
    "load_records",
    "iter_batches",
]

logger = logging.getLogger(__name__)

_KIND_LABELS = {
    LoadErrorKind.UNIQUE_VIOLATION: "Unique constraint violation",
    LoadErrorKind.FOREIGN_KEY_VIOLATION: "Foreign key constraint violation",
    LoadErrorKind.UNKNOWN: "Database error",
}


@dataclass(frozen=True)
class LoadResult:
    imported: int = 0
    duplicates: int = 0
    failed: int = 0  # 失敗バッチに含まれていた件数
    errors: tuple[str, ...] = ()  # 全件 (上限なし)
    batches: int = 0
    failed_batches: int = 0
    error_kinds: tuple[LoadErrorKind, ...] = ()


def iter_batches(records: Sequence[Any], size: int) -> Iterator[tuple[int, Sequence[Any]]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for index, start in enumerate(range(0, len(records), size), start=1):
        yield index, records[start:start + size]


def load_records(
    store: EntityStore,
    entity: str,
    records: Sequence[Mapping[str, Any]],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    sheet_name: str = "",
    diagnostics: SheetDiagnostics | None = None,
    error_log: ErrorLogBuffer | None = None,
    source: str = "",
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> LoadResult:
    """Insert ``records`` into ``entity`` batch by batch.

    Parameters
    ----------
    store: entity store (``insert_many`` returns the inserted count)
    entity: target entity / table
    records: validated records (not mutated)
    batch_size: records per ``insert_many`` call
    sheet_name: used in error messages
    diagnostics: sheet diagnostics receiving batch errors (bounded)
    error_log: JSON Lines buffer receiving batch errors (row=-1)
    metrics_callback: receives one ``BatchMetrics`` per batch
    """
    label = sheet_name or entity
    imported = duplicates = failed = batches = failed_batches = 0
    errors: list[str] = []
    kinds: list[LoadErrorKind] = []

    for index, batch in iter_batches(records, batch_size):
        batches += 1
        start = time.time()
        try:
            inserted = store.insert_many(entity, batch)
        except Exception as e:
            kind = classify_load_error(e)
            message = f'Failed to import "{label}" batch {index} ({len(batch)} rows): {_KIND_LABELS[kind]}: {e}'
            logger.debug(message, exc_info=True)
            errors.append(message)
            kinds.append(kind)
            failed += len(batch)
            failed_batches += 1
            if diagnostics is not None:
                diagnostics.error(message)
            if error_log is not None:
                error_log.record(source, label, -1, kind.value, message)
            continue
        finally:
            end = time.time()
            if metrics_callback is not None:
                metrics_callback(BatchMetrics(
                    batch_size=len(batch),
                    elapsed_seconds=end - start,
                    start_time=start,
                    end_time=end,
                ))

        inserted = max(0, min(inserted, len(batch)))
        imported += inserted
        duplicates += len(batch) - inserted

    return LoadResult(
        imported=imported,
        duplicates=duplicates,
        failed=failed,
        errors=tuple(errors),
        batches=batches,
        failed_batches=failed_batches,
        error_kinds=tuple(kinds),
    )
