from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CURRENCY,
    DEFAULT_MAX_ERRORS,
    DEFAULT_MAX_WARNINGS,
    DEFAULT_REQUIRED_SHEETS,
    DEFAULT_SERIAL_EPOCH,
    PROPERTY_TYPES,
    DatabaseConfig,
    ImportConfig,
)
from ..models.descriptor import SheetDescriptor
from .descriptors import DescriptorOrderError, build_descriptors

"""Config loader.

Responsibilities:
- Load YAML ``config/import.yml`` (PyYAML safe_load)
- Validate against the packaged JSON schema (jsonschema)
- Apply defaults and build ``ImportConfig``
- Build the descriptor set the config asks for
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
    "descriptors_from_config",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).parent / "import_schema.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or invalid, or ``data`` violating it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _parse_epoch(raw: Any) -> date:
    if raw is None:
        return DEFAULT_SERIAL_EPOCH
    if isinstance(raw, date):  # YAML が日付として読む場合
        return raw
    try:
        return date.fromisoformat(str(raw))
    except ValueError as e:
        raise ConfigError(f"invalid serial_date_epoch: {raw}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    # YAML は 1899-12-30 を date として読むので検証前に文字列化
    if isinstance(data.get("serial_date_epoch"), date):
        data["serial_date_epoch"] = data["serial_date_epoch"].isoformat()

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        source_directory=data["source_directory"],
        batch_size=data.get("batch_size", DEFAULT_BATCH_SIZE),
        max_warnings=data.get("max_warnings", DEFAULT_MAX_WARNINGS),
        max_errors=data.get("max_errors", DEFAULT_MAX_ERRORS),
        serial_date_epoch=_parse_epoch(data.get("serial_date_epoch")),
        required_sheets=tuple(data.get("required_sheets", DEFAULT_REQUIRED_SHEETS)),
        property_types=tuple(data.get("property_types", PROPERTY_TYPES)),
        default_currency=data.get("default_currency", DEFAULT_CURRENCY),
        database=db,
    )


def descriptors_from_config(cfg: ImportConfig) -> tuple[SheetDescriptor, ...]:
    try:
        return build_descriptors(
            required_sheets=cfg.required_sheets,
            property_types=cfg.property_types,
            default_currency=cfg.default_currency,
            serial_date_epoch=cfg.serial_date_epoch,
        )
    except (DescriptorOrderError, ValueError) as e:
        raise ConfigError(f"descriptor setup failed: {e}") from e
