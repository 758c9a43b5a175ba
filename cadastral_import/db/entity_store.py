from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..models.descriptor import ForeignKey, SheetDescriptor
from .batch_insert import (
    BatchInsertError,
    EntityNotFoundError,
    ForeignKeyViolationError,
    UniqueViolationError,
    batch_insert,
)

"""Entity store abstraction.

The orchestrator only needs: does an entity (table/model) exist, bulk
insert a list of records skipping duplicates and return how many were
inserted, and transaction hooks for the caller. Two implementations:

- PostgresEntityStore: psycopg2 cursor, one savepoint per batch
- InMemoryEntityStore: dict-backed, enforces unique and foreign keys
  (tests and ``--dry-run``)
"""

__all__ = [
    "EntityStore",
    "EntitySchema",
    "PostgresEntityStore",
    "InMemoryEntityStore",
]

logger = logging.getLogger(__name__)


@runtime_checkable
class EntityStore(Protocol):
    def has_entity(self, entity: str) -> bool: ...

    def insert_many(self, entity: str, records: Sequence[Mapping[str, Any]]) -> int: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class PostgresEntityStore:
    """psycopg2 backed store.

    Expects a connection in autocommit mode: transaction boundaries are
    issued explicitly with ``begin``/``commit``/``rollback`` (BEGIN/COMMIT/
    ROLLBACK). Inside a transaction every ``insert_many`` runs under a
    savepoint so that a failing batch does not abort the whole transaction;
    outside one each call is its own transaction.
    """

    SAVEPOINT = "cadastral_batch"

    def __init__(self, cursor: Any, *, skip_duplicates: bool = True, page_size: int = 1000) -> None:
        self.cursor = cursor
        self.skip_duplicates = skip_duplicates
        self.page_size = page_size
        self._known: dict[str, bool] = {}
        self._in_transaction = False

    def has_entity(self, entity: str) -> bool:
        if entity not in self._known:
            self.cursor.execute(
                "SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = current_schema() AND table_name = %s",
                (entity,),
            )
            self._known[entity] = self.cursor.fetchone() is not None
        return self._known[entity]

    def insert_many(self, entity: str, records: Sequence[Mapping[str, Any]]) -> int:
        if not records:
            return 0
        if not self.has_entity(entity):
            raise EntityNotFoundError(f'Model "{entity}" not found in database')

        # 列集合ごとにまとめて execute_values (Media は id 有無で列が揃わない)
        groups: dict[tuple[str, ...], list[tuple[Any, ...]]] = {}
        for rec in records:
            cols = tuple(rec.keys())
            groups.setdefault(cols, []).append(tuple(rec[c] for c in cols))

        # 明示トランザクション外ではバッチ単体のトランザクションで囲む
        nested = self._in_transaction
        self.cursor.execute(f"SAVEPOINT {self.SAVEPOINT}" if nested else "BEGIN")
        try:
            inserted = 0
            for cols, rows in groups.items():
                res = batch_insert(
                    self.cursor, entity, cols, rows,
                    skip_duplicates=self.skip_duplicates,
                    page_size=self.page_size,
                )
                inserted += res.inserted_rows
        except BatchInsertError:
            self.cursor.execute(f"ROLLBACK TO SAVEPOINT {self.SAVEPOINT}" if nested else "ROLLBACK")
            raise
        self.cursor.execute(f"RELEASE SAVEPOINT {self.SAVEPOINT}" if nested else "COMMIT")
        return inserted

    def begin(self) -> None:
        self.cursor.execute("BEGIN")
        self._in_transaction = True

    def commit(self) -> None:
        self.cursor.execute("COMMIT")
        self._in_transaction = False

    def rollback(self) -> None:
        self.cursor.execute("ROLLBACK")
        self._in_transaction = False


@dataclass(frozen=True)
class EntitySchema:
    unique_key: tuple[str, ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()


class InMemoryEntityStore:
    """Dict-backed store with database-like constraint checks.

    - unique key: duplicates (also within one batch) are skipped, or raise
      ``UniqueViolationError`` when ``skip_duplicates`` is False
    - foreign keys: a non-null reference must exist in the referenced
      entity, otherwise ``ForeignKeyViolationError``
    - a batch is atomic: nothing from a failing batch is stored
    """

    def __init__(self, schemas: Mapping[str, EntitySchema], *, skip_duplicates: bool = True) -> None:
        self.schemas = dict(schemas)
        self.skip_duplicates = skip_duplicates
        self._tables: dict[str, list[dict[str, Any]]] = {name: [] for name in self.schemas}
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None

    @classmethod
    def from_descriptors(
        cls,
        descriptors: Iterable[SheetDescriptor],
        *,
        exclude: Iterable[str] = (),
        skip_duplicates: bool = True,
    ) -> InMemoryEntityStore:
        skip = set(exclude)
        schemas = {
            d.entity: EntitySchema(unique_key=d.unique_key, foreign_keys=d.foreign_keys)
            for d in descriptors
            if d.entity not in skip
        }
        return cls(schemas, skip_duplicates=skip_duplicates)

    def has_entity(self, entity: str) -> bool:
        return entity in self.schemas

    def _key(self, schema: EntitySchema, record: Mapping[str, Any]) -> tuple[Any, ...] | None:
        if not schema.unique_key:
            return None
        return tuple(record.get(f) for f in schema.unique_key)

    def _check_references(self, entity: str, schema: EntitySchema, batch: Sequence[Mapping[str, Any]]) -> None:
        for fk in schema.foreign_keys:
            existing = {r.get(fk.referenced_field) for r in self._tables.get(fk.entity, ())}
            for rec in batch:
                value = rec.get(fk.field)
                if value is None:
                    continue
                if value not in existing:
                    raise ForeignKeyViolationError(
                        f'insert or update on table "{entity}" violates foreign key constraint '
                        f'"{entity}_{fk.field}_fkey": Key ({fk.field})=({value}) is not present '
                        f'in table "{fk.entity}"'
                    )

    def insert_many(self, entity: str, records: Sequence[Mapping[str, Any]]) -> int:
        if not self.has_entity(entity):
            raise EntityNotFoundError(f'Model "{entity}" not found in store')
        if not records:
            return 0
        schema = self.schemas[entity]
        table = self._tables[entity]

        self._check_references(entity, schema, records)

        taken = {self._key(schema, r) for r in table} if schema.unique_key else set()
        accepted: list[dict[str, Any]] = []
        for rec in records:
            key = self._key(schema, rec)
            if key is not None and key in taken:
                if not self.skip_duplicates:
                    raise UniqueViolationError(
                        f'duplicate key value violates unique constraint "{entity}_pkey": '
                        f'Key ({", ".join(schema.unique_key)})=({", ".join(map(str, key))}) already exists.'
                    )
                continue
            if key is not None:
                taken.add(key)
            accepted.append(dict(rec))

        table.extend(accepted)
        return len(accepted)

    def begin(self) -> None:
        self._snapshot = {name: list(rows) for name, rows in self._tables.items()}

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._tables = self._snapshot
            self._snapshot = None

    def records(self, entity: str) -> list[dict[str, Any]]:
        return list(self._tables.get(entity, []))

    def count(self, entity: str) -> int:
        return len(self._tables.get(entity, []))
