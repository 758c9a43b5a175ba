from __future__ import annotations

from cadastral_import.models.workbook import Workbook, Worksheet


def test_data_rows_numbering_starts_at_two():
    """Test data rows are numbered from 2."""
    ws = Worksheet.from_rows("Region", [["Id_Reg", "Nom_Reg"], [1, "Centre"], [2, "Littoral"]])
    assert ws.header == ("Id_Reg", "Nom_Reg")
    assert list(ws.data_rows()) == [(2, (1, "Centre")), (3, (2, "Littoral"))]


def test_blank_rows_are_skipped_but_numbering_kept():
    """Test blank rows are skipped without renumbering."""
    ws = Worksheet.from_rows(
        "Region",
        [["Id_Reg", "Nom_Reg"], [None, "  "], [1, "Centre"], [float("nan"), None], [2, "Ouest"]],
    )
    assert [n for n, _ in ws.data_rows()] == [3, 5]


def test_rows_keep_grid_width():
    ws = Worksheet.from_rows("Region", [["a", "b", "c"], [1, None, None]])
    assert list(ws.data_rows()) == [(2, (1, None, None))]


def test_empty_sheet():
    """Test a sheet with no rows."""
    ws = Worksheet.from_rows("Region", [])
    assert ws.header == ()
    assert list(ws.data_rows()) == []


def test_workbook_lookup():
    """Test sheet lookup by name."""
    wb = Workbook.from_mapping({"Region": [["Id_Reg"]], "Notes": []}, source="a.xlsx")
    assert wb.sheet_names == ["Region", "Notes"]
    assert wb.get_sheet("Region").name == "Region"
    assert wb.get_sheet("Parcelle") is None
    assert wb.source == "a.xlsx"
