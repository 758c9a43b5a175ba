# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from cadastral_import.config.descriptors import DEFAULT_DESCRIPTORS
from cadastral_import.db.entity_store import InMemoryEntityStore
from cadastral_import.logging.init import reset_logging
from cadastral_import.models.workbook import Workbook


class CadastreRows:
    """Header / row builders for the hierarchy sheets used across tests."""

    REGION_HEADER = ["Id_Reg", "Nom_Reg", "Sup_Reg", "Chef_lieu_Reg", "WKT_Geometry"]
    DEPARTEMENT_HEADER = ["Id_Dept", "Nom_Dept", "Sup_Dept", "Chef_lieu_Dept", "Id_Reg", "WKT_Geometry"]

    @staticmethod
    def region(id_reg: Any, name: str = "Centre") -> list[Any]:
        return [id_reg, name, 68953.0, "Yaounde", "POLYGON((0 0,1 0,1 1,0 0))"]

    @staticmethod
    def departement(id_dept: Any, id_reg: Any, name: str = "Mfoundi") -> list[Any]:
        return [id_dept, name, 297.0, "Yaounde", id_reg, "POINT(11.5 3.8)"]


@pytest.fixture()
def rows() -> type[CadastreRows]:
    return CadastreRows


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
batch_size: 100
max_warnings: 20
max_errors: 50
serial_date_epoch: "1899-12-30"
required_sheets: [Region]
default_currency: XAF
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: cadastre
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def memory_store() -> InMemoryEntityStore:
    return InMemoryEntityStore.from_descriptors(DEFAULT_DESCRIPTORS)


@pytest.fixture()
def clean_workbook() -> Workbook:
    """One region and one departement referencing it; everything else absent."""
    return Workbook.from_mapping(
        {
            "Region": [CadastreRows.REGION_HEADER, CadastreRows.region(1)],
            "Departement": [CadastreRows.DEPARTEMENT_HEADER, CadastreRows.departement(10, 1)],
        },
        source="clean.xlsx",
    )


@pytest.fixture()
def write_xlsx() -> Callable[[Path, dict[str, list[list[Any]]]], Path]:
    """Write a real .xlsx (pandas + openpyxl); each sheet is header + rows."""

    def _write(path: Path, sheets: dict[str, list[list[Any]]]) -> Path:
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
        return path

    return _write
