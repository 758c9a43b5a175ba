from __future__ import annotations

from pathlib import Path

from cadastral_import.config.descriptors import DEFAULT_DESCRIPTORS, get_descriptor
from cadastral_import.db.entity_store import InMemoryEntityStore
from cadastral_import.excel.reader import read_workbook
from cadastral_import.logging.error_log import ErrorLogBuffer
from cadastral_import.models.config_models import ImportOptions
from cadastral_import.models.import_report import SheetStatus
from cadastral_import.models.workbook import Workbook
from cadastral_import.services.orchestrator import run_import


def _blank_row(sheet: str, **values):
    d = get_descriptor(sheet)
    fields = d.transform.keywords["fields"]
    return [values.get(f) for f in fields]


def _header(sheet: str):
    return list(get_descriptor(sheet).transform.keywords["fields"])


def _full_hierarchy(rows):
    return {
        "Region": [rows.REGION_HEADER, rows.region(1)],
        "Departement": [rows.DEPARTEMENT_HEADER, rows.departement(10, 1)],
        "Arrondissement": [
            _header("Arrondissement"),
            _blank_row("Arrondissement", Id_Arrond=100, Nom_Arrond="Yaounde I", Id_Dept=10),
        ],
        "Lotissement": [
            _header("Lotissement"),
            _blank_row("Lotissement", Id_Lotis=1000, Id_Arrond=100, Date_approb=45000, price="1500000.456"),
        ],
        "Parcelle": [
            _header("Parcelle"),
            _blank_row("Parcelle", Id_Parcel=5000, Id_Lotis=1000, Mise_Val="oui", Cloture="non"),
            _blank_row("Parcelle", Id_Parcel=5001, Id_Lotis=1000),
        ],
        "Batiment": [
            _header("Batiment"),
            _blank_row("Batiment", Id_Bat=70, Id_Parcel=5000, propertyType="VILLA", bedrooms=4),
        ],
        "Property": [
            _header("Property"),
            _blank_row("Property", Id_Prop=1, Id_Parcel=5001, propertyType="house", price=25000),
        ],
        "Media": [
            _header("Media"),
            _blank_row("Media", entityType="batiment", url="https://cdn/70.jpg", entityId=70, isPrimary="yes"),
        ],
        "Borne": [_header("Borne"), _blank_row("Borne", Id_Borne=3, coord_x=1.5, coord_y="2.5")],
        "Contenir": [_header("Contenir"), _blank_row("Contenir", Id_Parcel=5000, Id_Borne=3)],
    }


def test_full_hierarchy_import(rows, memory_store):
    """Test importing every level from region down to media."""
    wb = Workbook.from_mapping(_full_hierarchy(rows), source="full.xlsx")
    report = run_import(wb, memory_store)

    assert report.success is True
    assert report.fully_succeeded is True
    assert report.errors == ()
    assert report.summary.total_imported == 11
    for r in report.results:
        assert r.reconciled, r.sheet_name

    lot = memory_store.records("lotissement")[0]
    assert lot["Date_approb"].year == 2023
    assert str(lot["price"]) == "1500000.46"
    assert lot["category"] == "LAND"

    parcel = memory_store.records("parcelle")[0]
    assert parcel["Mise_Val"] is True
    assert parcel["Cloture"] is False

    prop = memory_store.records("property")[0]
    assert prop["propertyType"] == "HOUSE"
    assert prop["currency"] == "XAF"

    media = memory_store.records("media")[0]
    assert media["batimentId"] == 70
    assert media["isPrimary"] is True


def test_dangling_reference_does_not_abort_import(rows, memory_store):
    """Test a dangling reference fails only its batch."""
    data = _full_hierarchy(rows)
    data["Departement"].append(rows.departement(11, 99))
    wb = Workbook.from_mapping(data)
    report = run_import(wb, memory_store, options=ImportOptions(batch_size=1))
    dept = report.result_for("Departement")
    assert dept.status is SheetStatus.PARTIAL
    assert any("Foreign key constraint violation" in e for e in dept.errors)
    # 後続シートは継続して取り込まれる
    assert report.result_for("Contenir").status is SheetStatus.SUCCESS


def test_dangling_reference_with_single_batch_fails_sheet(rows, memory_store):
    """Test a dangling reference in the only batch fails the sheet."""
    data = _full_hierarchy(rows)
    data["Departement"].append(rows.departement(11, 99))
    report = run_import(Workbook.from_mapping(data), memory_store)
    dept = report.result_for("Departement")
    assert dept.status is SheetStatus.FAILED
    assert dept.imported == 0
    # 親が無いので子シートも FK エラー
    assert report.result_for("Arrondissement").status is SheetStatus.FAILED
    assert report.success is False


def test_missing_region_workbook(rows, memory_store, temp_workdir):
    """Test a workbook without the Region sheet fails."""
    data = _full_hierarchy(rows)
    del data["Region"]
    log = ErrorLogBuffer(logs_dir=temp_workdir / "logs")
    report = run_import(Workbook.from_mapping(data, source="noreg.xlsx"), memory_store, error_log=log)
    assert report.success is False
    assert report.result_for("Region").status is SheetStatus.FAILED
    assert 'Required sheet "Region" not found in workbook' in report.errors
    assert log.pending[0].error_type == "SHEET_NOT_FOUND"


def test_malformed_rows(rows, memory_store):
    """Test short and invalid rows are skipped and counted."""
    wb = Workbook.from_mapping({
        "Region": [rows.REGION_HEADER, rows.region(1), [2, "Ouest"], rows.region("x")],
    })
    report = run_import(wb, memory_store)
    region = report.result_for("Region")
    assert region.status is SheetStatus.SUCCESS
    assert (region.total_rows, region.imported, region.skipped) == (3, 1, 2)
    assert region.error_count == 1
    assert region.warning_count == 1
    assert report.summary.total_errors == 1


def test_reimport_is_idempotent(rows):
    """Test importing the same workbook twice only adds media links."""
    store = InMemoryEntityStore.from_descriptors(DEFAULT_DESCRIPTORS)
    wb = Workbook.from_mapping(_full_hierarchy(rows))
    first = run_import(wb, store)
    second = run_import(wb, store)
    assert first.summary.total_imported == 11
    # Media has no unique key: re-import adds the link again
    assert second.summary.total_duplicates == 10
    assert second.summary.total_imported == 1
    assert second.success is True
    assert store.count("parcelle") == 2


def test_rollback_discards_failed_workbook(rows):
    """Test rolling back removes rows of a failed workbook."""
    store = InMemoryEntityStore.from_descriptors(DEFAULT_DESCRIPTORS)
    data = _full_hierarchy(rows)
    del data["Region"]
    store.begin()
    report = run_import(Workbook.from_mapping(data), store)
    assert report.success is False
    store.rollback()
    assert store.count("departement") == 0


def test_real_xlsx_file(rows, write_xlsx, temp_workdir: Path):
    """Test a workbook written to disk imports through the reader."""
    path = write_xlsx(temp_workdir / "data" / "cadastre.xlsx", {
        "Region": [rows.REGION_HEADER, rows.region(1)],
        "Departement": [rows.DEPARTEMENT_HEADER, rows.departement(10, 1), rows.departement(11, 1)],
    })
    wb = read_workbook(path)
    store = InMemoryEntityStore.from_descriptors(DEFAULT_DESCRIPTORS)
    report = run_import(wb, store)
    assert report.success is True
    assert report.summary.total_imported == 3
    assert store.records("departement")[1]["Id_Dept"] == 11


def test_real_xlsx_short_row_is_rejected(rows, write_xlsx, temp_workdir: Path):
    """Test a physically short row in a real workbook is an error, not an import."""
    path = write_xlsx(temp_workdir / "data" / "short.xlsx", {
        "Region": [rows.REGION_HEADER, rows.region(1), [2, "Ouest"]],
    })
    wb = read_workbook(path)
    assert [len(cells) for _, cells in wb.get_sheet("Region").data_rows()] == [5, 2]

    log = ErrorLogBuffer(logs_dir=temp_workdir / "logs")
    report = run_import(wb, InMemoryEntityStore.from_descriptors(DEFAULT_DESCRIPTORS), error_log=log)
    region = report.result_for("Region")
    assert (region.imported, region.skipped, region.error_count) == (1, 1, 1)
    assert log.pending[0].error_type == "ROW_TOO_SHORT"
    assert log.pending[0].row == 3
