"""Domain models for the cadastral workbook importer."""

from .cell import ABSENT, Absent, Boolean, Cell, DateValue, FormulaResult, Number, RichText, Text, to_cell
from .config_models import DatabaseConfig, ImportConfig, ImportOptions
from .descriptor import ForeignKey, RowContext, SheetDescriptor
from .diagnostics import MORE_SENTINEL, BoundedMessages, SheetDiagnostics
from .error_record import ErrorRecord
from .import_report import BatchStatsAccumulator, ImportReport, ImportSummary, SheetResult, SheetStatus
from .workbook import Workbook, Worksheet

__all__ = [
    # Cell values
    "ABSENT",
    "Absent",
    "Boolean",
    "Cell",
    "DateValue",
    "FormulaResult",
    "Number",
    "RichText",
    "Text",
    "to_cell",
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportOptions",
    # Descriptors
    "ForeignKey",
    "RowContext",
    "SheetDescriptor",
    # Diagnostics / reporting
    "MORE_SENTINEL",
    "BoundedMessages",
    "SheetDiagnostics",
    "ErrorRecord",
    "BatchStatsAccumulator",
    "ImportReport",
    "ImportSummary",
    "SheetResult",
    "SheetStatus",
    # Workbook
    "Workbook",
    "Worksheet",
]
