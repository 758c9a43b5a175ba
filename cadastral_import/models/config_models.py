from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

"""Config dataclasses for the cadastral importer.

``ImportConfig`` mirrors ``config/import.yml``; ``ImportOptions`` is the
subset the orchestrator needs for one run and can be built without a file
(tests, dry runs).
"""

__all__ = [
    "DatabaseConfig",
    "ImportConfig",
    "ImportOptions",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_MAX_WARNINGS",
    "DEFAULT_MAX_ERRORS",
    "DEFAULT_SERIAL_EPOCH",
    "DEFAULT_CURRENCY",
    "DEFAULT_REQUIRED_SHEETS",
    "PROPERTY_TYPES",
]

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_WARNINGS = 20
DEFAULT_MAX_ERRORS = 50
# 1900 年うるう年バグ込みの起点 (serial 1 = 1900-01-01, serial 60 = 1900-02-29)
DEFAULT_SERIAL_EPOCH = date(1899, 12, 30)
DEFAULT_CURRENCY = "XAF"
DEFAULT_REQUIRED_SHEETS: tuple[str, ...] = ("Region",)

PROPERTY_TYPES: tuple[str, ...] = (
    "APARTMENT",
    "HOUSE",
    "VILLA",
    "STUDIO",
    "DUPLEX",
    "TRIPLEX",
    "PENTHOUSE",
    "CHAMBRE_MODERNE",
    "CHAMBRE",
    "OFFICE",
    "SHOP",
    "RESTAURANT",
    "HOTEL",
    "WAREHOUSE",
    "COMMERCIAL_SPACE",
    "INDUSTRIAL",
    "FACTORY",
    "BUILDING",
    "MIXED_USE",
)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback.

    Environment variables (DATABASE_URL / PGDSN / PG*) take precedence.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_warnings: int = DEFAULT_MAX_WARNINGS  # シート毎の警告上限
    max_errors: int = DEFAULT_MAX_ERRORS  # シート毎のエラー上限

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")


@dataclass(frozen=True)
class ImportConfig:
    source_directory: str  # .xlsx を探すディレクトリ
    batch_size: int = DEFAULT_BATCH_SIZE
    max_warnings: int = DEFAULT_MAX_WARNINGS
    max_errors: int = DEFAULT_MAX_ERRORS
    serial_date_epoch: date = DEFAULT_SERIAL_EPOCH
    required_sheets: tuple[str, ...] = DEFAULT_REQUIRED_SHEETS
    property_types: tuple[str, ...] = PROPERTY_TYPES
    default_currency: str = DEFAULT_CURRENCY
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @property
    def options(self) -> ImportOptions:
        return ImportOptions(
            batch_size=self.batch_size,
            max_warnings=self.max_warnings,
            max_errors=self.max_errors,
        )
