from __future__ import annotations

from pathlib import Path

import pytest

from cadastral_import.cli import main as cli_main

"""Exit code contract: 0 all imported, 2 partial/failed workbooks, 1 fatal."""


@pytest.fixture(autouse=True)
def _dry_run_env(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    """Test a startup failure exits with the fatal code."""
    # config/import.yml 無し → exit 1
    code = cli_main([])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_missing_source_directory(temp_workdir: Path, capsys):
    """Test a missing source directory is fatal."""
    (temp_workdir / "config" / "import.yml").write_text("source_directory: ./nowhere\n", encoding="utf-8")
    assert cli_main([]) == 1
    assert "ERROR processing: directory not found" in capsys.readouterr().out


def test_exit_code_empty_directory(write_config, capsys):
    """Test an empty source directory exits successfully."""
    assert cli_main([]) == 0
    assert "SUMMARY files=0/0" in capsys.readouterr().out


def test_exit_code_all_success(write_config, write_xlsx, rows, temp_workdir: Path, capsys):
    """Test all workbooks succeeding exits with zero."""
    for name in ("a.xlsx", "b.xlsx"):
        write_xlsx(temp_workdir / "data" / name, {"Region": [rows.REGION_HEADER, rows.region(1)]})
    assert cli_main([]) == 0
    out = capsys.readouterr().out
    assert "SUMMARY files=2/2 success=2 partial=0 failed=0" in out


def test_exit_code_partial(write_config, write_xlsx, rows, temp_workdir: Path, capsys):
    """Test one failed workbook yields the partial failure code."""
    write_xlsx(temp_workdir / "data" / "ok.xlsx", {"Region": [rows.REGION_HEADER, rows.region(1)]})
    write_xlsx(temp_workdir / "data" / "bad.xlsx", {"Departement": [rows.DEPARTEMENT_HEADER]})
    assert cli_main([]) == 2
    out = capsys.readouterr().out
    assert "success=1" in out
    assert "failed=1" in out


def test_exit_code_partial_sheet(write_config, write_xlsx, rows, temp_workdir: Path, capsys):
    """Test a partially loaded sheet yields the partial failure code."""
    # batch_size=1 → 1 行目成功, 2 行目 FK 違反 → partial
    (temp_workdir / "config" / "import.yml").write_text(
        "source_directory: ./data\nbatch_size: 1\n", encoding="utf-8"
    )
    write_xlsx(temp_workdir / "data" / "p.xlsx", {
        "Region": [rows.REGION_HEADER, rows.region(1)],
        "Departement": [rows.DEPARTEMENT_HEADER, rows.departement(10, 1), rows.departement(11, 99)],
    })
    assert cli_main([]) == 2
    assert "partial=1" in capsys.readouterr().out
