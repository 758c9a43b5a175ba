from __future__ import annotations

import pytest

from cadastral_import.db.batch_insert import (
    BatchInsertError,
    ForeignKeyViolationError,
    LoadErrorKind,
    UniqueViolationError,
)
from cadastral_import.logging.error_log import ErrorLogBuffer
from cadastral_import.models.diagnostics import SheetDiagnostics
from cadastral_import.services.batch_loader import iter_batches, load_records


class ScriptedStore:
    """insert_many の戻り値 / 例外をバッチ毎に指定"""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.batches = []

    def has_entity(self, entity):
        return True

    def insert_many(self, entity, records):
        self.batches.append(list(records))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def begin(self):
        pass

    def commit(self):
        pass

    def rollback(self):
        pass


def _records(n):
    return [{"Id_Reg": i} for i in range(1, n + 1)]


def test_iter_batches():
    """Test records are split into fixed size batches."""
    assert [(i, list(b)) for i, b in iter_batches([1, 2, 3, 4, 5], 2)] == [
        (1, [1, 2]), (2, [3, 4]), (3, [5]),
    ]
    with pytest.raises(ValueError):
        list(iter_batches([1], 0))


def test_all_batches_succeed_with_duplicates():
    """Test successful batches count duplicates."""
    store = ScriptedStore([2, 1, 1])
    res = load_records(store, "region", _records(5), batch_size=2)
    assert res.imported == 4
    assert res.duplicates == 1
    assert res.failed == 0
    assert res.batches == 3
    assert res.errors == ()
    assert [len(b) for b in store.batches] == [2, 2, 1]


def test_failed_batch_is_recorded_and_loading_continues(temp_workdir):
    """Test a failed batch is recorded and later batches still load."""
    store = ScriptedStore([2, ForeignKeyViolationError("Key (Id_Reg)=(99) is not present"), 1])
    diag = SheetDiagnostics()
    log = ErrorLogBuffer(logs_dir=temp_workdir / "logs")
    res = load_records(
        store, "departement", _records(5), batch_size=2,
        sheet_name="Departement", diagnostics=diag, error_log=log, source="x.xlsx",
    )
    assert res.imported == 3
    assert res.failed == 2
    assert res.failed_batches == 1
    assert res.error_kinds == (LoadErrorKind.FOREIGN_KEY_VIOLATION,)
    assert res.errors == (
        'Failed to import "Departement" batch 2 (2 rows): Foreign key constraint violation: '
        "Key (Id_Reg)=(99) is not present",
    )
    assert diag.errors.snapshot() == res.errors
    entry = log.pending[0]
    assert entry.row == -1
    assert entry.error_type == "FOREIGN_KEY_VIOLATION"
    assert entry.sheet == "Departement"


@pytest.mark.parametrize("exc,label", [
    (UniqueViolationError("dup"), "Unique constraint violation"),
    (BatchInsertError("timeout"), "Database error"),
])
def test_error_labels(exc, label):
    """Test error messages carry the classified label."""
    res = load_records(ScriptedStore([exc]), "region", _records(1), sheet_name="Region")
    assert label in res.errors[0]
    assert res.imported == 0


def test_inserted_count_is_clamped():
    res = load_records(ScriptedStore([7, -1]), "region", _records(4), batch_size=2)
    assert res.imported == 2
    assert res.duplicates == 2


def test_metrics_callback_runs_for_every_batch():
    """Test metrics are reported for every batch."""
    seen = []
    load_records(
        ScriptedStore([1, BatchInsertError("x")]), "region", _records(2),
        batch_size=1, metrics_callback=seen.append,
    )
    assert [m.batch_size for m in seen] == [1, 1]


def test_records_not_mutated(memory_store):
    records = _records(3)
    snapshot = [dict(r) for r in records]
    load_records(memory_store, "region", records, batch_size=2)
    assert records == snapshot
    assert memory_store.count("region") == 3
