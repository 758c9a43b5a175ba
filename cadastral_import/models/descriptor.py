from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

"""Sheet import descriptor model.

A descriptor is a declarative record describing how one worksheet becomes
rows of one entity: the coercer applied to every column (positional), the
row transform that assembles the entity record, and the keys the store
uses for duplicate detection and referential checks.
"""

__all__ = [
    "ForeignKey",
    "RowContext",
    "SheetDescriptor",
    "Coercer",
    "RowTransform",
]

Coercer = Callable[[Any], Any]


@dataclass
class RowContext:
    """Per-row context handed to a transform.

    ``warn`` is bound by the sheet processor to the sheet's bounded
    warnings accumulator.
    """
    sheet_name: str
    row_number: int
    warn: Callable[[str], None] = field(default=lambda message: None, repr=False)


RowTransform = Callable[[Sequence[Any], RowContext], "dict[str, Any] | None"]


@dataclass(frozen=True)
class ForeignKey:
    field: str  # 子レコード側の列
    entity: str  # 参照先エンティティ
    referenced_field: str  # 参照先の列
    required: bool = False


@dataclass(frozen=True)
class SheetDescriptor:
    sheet_name: str
    entity: str
    column_count: int
    coercers: tuple[Coercer, ...]
    transform: RowTransform
    required: bool = False
    unique_key: tuple[str, ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()
    position: int = 0

    def __post_init__(self) -> None:
        if len(self.coercers) != self.column_count:
            raise ValueError(
                f"descriptor {self.sheet_name}: {len(self.coercers)} coercers "
                f"for {self.column_count} columns"
            )

    @property
    def dependencies(self) -> tuple[str, ...]:
        """Entities referenced through foreign keys, in declaration order."""
        seen: list[str] = []
        for fk in self.foreign_keys:
            if fk.entity != self.entity and fk.entity not in seen:
                seen.append(fk.entity)
        return tuple(seen)
