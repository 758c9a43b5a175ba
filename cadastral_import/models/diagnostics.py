from __future__ import annotations

from .config_models import DEFAULT_MAX_ERRORS, DEFAULT_MAX_WARNINGS

"""Bounded diagnostic message accumulator (per sheet)."""

__all__ = [
    "BoundedMessages",
    "SheetDiagnostics",
    "MORE_SENTINEL",
]

MORE_SENTINEL = "...and more"


class BoundedMessages:
    """Collects up to ``limit`` messages, then a single sentinel.

    ``total`` keeps counting every message offered, so callers can still
    report how many problems there really were.
    """

    def __init__(self, limit: int) -> None:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        self.limit = limit
        self.total = 0
        self._items: list[str] = []
        self._truncated = False

    def add(self, message: str) -> None:
        self.total += 1
        if len(self._items) < self.limit:
            self._items.append(message)
        elif not self._truncated:
            self._items.append(MORE_SENTINEL)
            self._truncated = True

    def extend(self, messages) -> None:
        for m in messages:
            self.add(m)

    @property
    def truncated(self) -> bool:
        return self._truncated

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)


class SheetDiagnostics:
    """Warnings and errors of one sheet, shared by processor and loader."""

    def __init__(
        self, max_warnings: int = DEFAULT_MAX_WARNINGS, max_errors: int = DEFAULT_MAX_ERRORS
    ) -> None:
        self.warnings = BoundedMessages(max_warnings)
        self.errors = BoundedMessages(max_errors)

    def warn(self, message: str) -> None:
        self.warnings.add(message)

    def error(self, message: str) -> None:
        self.errors.add(message)
