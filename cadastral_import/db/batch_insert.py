from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import execute_values

"""DB batch insert (psycopg2.extras.execute_values).

Duplicate skipping is done by the database: ``ON CONFLICT DO NOTHING`` plus
``RETURNING 1`` lets the caller count how many rows were really inserted,
the difference to the batch size being the duplicates.

Driver errors are wrapped; the original psycopg2 exception stays available
as ``__cause__`` (with its SQLSTATE ``pgcode``) for classification.
"""

__all__ = [
    "BatchInsertError",
    "UniqueViolationError",
    "ForeignKeyViolationError",
    "EntityNotFoundError",
    "BatchMetrics",
    "InsertResult",
    "LoadErrorKind",
    "batch_insert",
    "classify_load_error",
    "quote_ident",
]

UNIQUE_VIOLATION_CODE = "23505"
FOREIGN_KEY_VIOLATION_CODE = "23503"


class BatchInsertError(Exception):
    pgcode: str | None = None


class UniqueViolationError(BatchInsertError):
    pgcode = UNIQUE_VIOLATION_CODE


class ForeignKeyViolationError(BatchInsertError):
    pgcode = FOREIGN_KEY_VIOLATION_CODE


class EntityNotFoundError(BatchInsertError):
    """Target table / model does not exist in the store."""


class LoadErrorKind(str, Enum):
    UNIQUE_VIOLATION = "UNIQUE_VIOLATION"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    UNKNOWN = "LOAD_ERROR"


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single batch insert."""
    batch_size: int  # バッチ行数
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int  # 実際に挿入された行 (重複スキップ分を除く)
    attempted_rows: int = 0

    @property
    def skipped_rows(self) -> int:
        return self.attempted_rows - self.inserted_rows


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _pgcode_of(exc: BaseException) -> str | None:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        code = getattr(cur, "pgcode", None)
        if code:
            return code
        cur = cur.__cause__ or cur.__context__
    return None


def classify_load_error(exc: BaseException) -> LoadErrorKind:
    """Classify a batch failure as duplicate-key, foreign-key or unknown.

    SQLSTATE first (on the exception or anywhere in its cause chain), then
    psycopg2 error classes, then the message text.
    """
    code = _pgcode_of(exc)
    if code == UNIQUE_VIOLATION_CODE:
        return LoadErrorKind.UNIQUE_VIOLATION
    if code == FOREIGN_KEY_VIOLATION_CODE:
        return LoadErrorKind.FOREIGN_KEY_VIOLATION

    cause = exc.__cause__
    if isinstance(exc, pg_errors.UniqueViolation) or isinstance(cause, pg_errors.UniqueViolation):
        return LoadErrorKind.UNIQUE_VIOLATION
    if isinstance(exc, pg_errors.ForeignKeyViolation) or isinstance(cause, pg_errors.ForeignKeyViolation):
        return LoadErrorKind.FOREIGN_KEY_VIOLATION

    msg = str(exc).lower()
    if "foreign key" in msg:
        return LoadErrorKind.FOREIGN_KEY_VIOLATION
    if "unique constraint" in msg or "duplicate key" in msg:
        return LoadErrorKind.UNIQUE_VIOLATION
    return LoadErrorKind.UNKNOWN


def _wrap_driver_error(e: Exception) -> BatchInsertError:
    code = getattr(e, "pgcode", None)
    message = (getattr(e, "pgerror", None) or str(e)).strip()
    if code == UNIQUE_VIOLATION_CODE:
        return UniqueViolationError(message)
    if code == FOREIGN_KEY_VIOLATION_CODE:
        return ForeignKeyViolationError(message)
    return BatchInsertError(message)


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    *,
    skip_duplicates: bool = True,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert ``rows`` into ``table`` with one ``execute_values`` call.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (quote_ident で引用)
    columns: 挿入列 (rows の並びと一致)
    rows: 行シーケンス
    skip_duplicates: True なら ON CONFLICT DO NOTHING
    page_size: execute_values の page_size
    metrics_callback: receives ``BatchMetrics`` once the statement ran
        (not invoked for an empty ``rows``)

    Raises
    ------
    BatchInsertError (or UniqueViolationError / ForeignKeyViolationError)
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, attempted_rows=0)

    cols_sql = ",".join(quote_ident(c) for c in columns)
    sql = f"INSERT INTO {quote_ident(table)} ({cols_sql}) VALUES %s"
    if skip_duplicates:
        sql += " ON CONFLICT DO NOTHING"
    sql += " RETURNING 1"

    start_time = time.time()
    try:
        returned = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=True)
    except psycopg2.Error as e:
        raise _wrap_driver_error(e) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(
                batch_size=len(rows_list),
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))

    inserted = len(returned) if returned is not None else 0
    return InsertResult(inserted_rows=inserted, attempted_rows=len(rows_list))
