from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import numpy as np
import pandas as pd
import pytest

from cadastral_import.excel.coercion import (
    excel_serial_to_datetime,
    or_default,
    to_bool,
    to_date,
    to_decimal,
    to_int,
    to_num,
    to_str,
)
from cadastral_import.models.cell import FormulaResult, Number, RichText, Text

ALL_COERCERS = [to_str, to_num, to_int, to_decimal, to_bool, to_date]

# null / empty / garbage / unrecognised shapes
ODD_INPUTS = [
    None,
    "",
    "   ",
    "garbage!!",
    float("nan"),
    float("inf"),
    object(),
    {"unexpected": "shape"},
    {"formula": "A1+B1"},
    [1, 2, 3],
    pd.NaT,
]


@pytest.mark.parametrize("coerce", ALL_COERCERS)
@pytest.mark.parametrize("value", ODD_INPUTS)
def test_coercers_never_raise(coerce, value):
    """Test every coercer returns None on odd input instead of raising."""
    coerce(value)


@pytest.mark.parametrize("coerce", ALL_COERCERS)
def test_unrecognised_shapes_become_none(coerce):
    assert coerce(object()) is None
    assert coerce({"unexpected": "shape"}) is None
    assert coerce(None) is None
    assert coerce("") is None


def test_to_str_trims_and_empties():
    """Test to_str trims and maps blanks to None."""
    assert to_str("  Yaounde ") == "Yaounde"
    assert to_str("   ") is None


def test_to_str_scalars():
    """Test to_str on numbers, booleans and dates."""
    assert to_str(12) == "12"
    assert to_str(12.0) == "12"
    assert to_str(12.5) == "12.5"
    assert to_str(True) == "true"
    assert to_str(datetime(2024, 3, 1, 10, 30)) == "2024-03-01T10:30:00"


def test_to_str_rich_text_and_formula():
    assert to_str({"richText": [{"text": "Mfou"}, {"text": "ndi "}]}) == "Mfoundi"
    assert to_str({"text": " https://example.org ", "hyperlink": "https://example.org"}) == "https://example.org"
    assert to_str({"formula": "A1", "result": " R1 "}) == "R1"
    assert to_str(FormulaResult(Text("x"))) == "x"


def test_to_num():
    """Test numeric coercion from numbers and strings."""
    assert to_num(3) == 3
    assert to_num(2.5) == 2.5
    assert to_num(" 42 ") == 42
    assert to_num("1e3") == 1000.0
    assert to_num("-7.25") == -7.25
    assert to_num("12,5") is None
    assert to_num("abc") is None
    assert to_num("1_000") is None
    assert to_num("nan") is None
    assert to_num(True) is None
    assert to_num(datetime(2024, 1, 1)) is None
    assert to_num({"formula": "SUM(A:A)", "result": 9}) == 9
    assert to_num({"result": "3.5"}) == 3.5


def test_to_num_numpy_scalars():
    assert to_num(np.int64(5)) == 5
    assert to_num(np.float64(1.5)) == 1.5
    assert to_num(np.float64("nan")) is None


def test_to_int_floors():
    """Test to_int floors fractional values."""
    assert to_int(3.9) == 3
    assert to_int("-1.5") == -2
    assert to_int("x") is None


def test_to_decimal_rounds_half_up_to_cents():
    """Test decimal rounding to two places."""
    assert to_decimal(10) == Decimal("10.00")
    assert to_decimal("2.345") == Decimal("2.35")
    assert to_decimal(1.005) == Decimal("1.01")
    assert to_decimal(3.14159) == Decimal("3.14")
    assert to_decimal("not a price") is None


@pytest.mark.parametrize("token", ["true", "1", "yes", "vrai", "oui", "o", " OUI ", "Vrai"])
def test_to_bool_true_tokens(token):
    """Test tokens read as true."""
    assert to_bool(token) is True


@pytest.mark.parametrize("token", ["false", "0", "no", "faux", "non", "n", "NON"])
def test_to_bool_false_tokens(token):
    """Test tokens read as false."""
    assert to_bool(token) is False


def test_to_bool_other_values():
    assert to_bool(True) is True
    assert to_bool(False) is False
    assert to_bool(2) is True
    assert to_bool(0) is False
    assert to_bool(0.0) is False
    # ambiguous is None, not False
    assert to_bool("maybe") is None
    assert to_bool(None) is None
    assert to_bool(datetime(2024, 1, 1)) is None


def test_numpy_booleans_pass_through():
    """Test numpy booleans coerce like native booleans."""
    assert to_bool(np.True_) is True
    assert to_bool(np.False_) is False
    assert to_str(np.False_) == "false"


def test_to_date_passthrough_and_date_only():
    d = datetime(2023, 5, 17, 8, 0)
    assert to_date(d) == d
    assert to_date(date(2023, 5, 17)) == datetime(2023, 5, 17)
    assert to_date(pd.Timestamp("2023-05-17")) == datetime(2023, 5, 17)


def test_to_date_serial_numbers():
    """Test spreadsheet serial numbers convert to dates."""
    assert to_date(1) == datetime(1899, 12, 31)
    # 1900-01-01 is serial 2 with the leap-year-bug epoch
    assert to_date(2) == datetime(1900, 1, 1)
    assert to_date(45000) == datetime(2023, 3, 15)
    assert to_date(45000.5) == datetime(2023, 3, 15, 12, 0)


def test_to_date_custom_epoch():
    """Test a configured serial epoch."""
    assert to_date(1, epoch=date(1904, 1, 1)) == datetime(1904, 1, 2)


def test_to_date_strings():
    """Test date string parsing."""
    assert to_date("2021-07-04") == datetime(2021, 7, 4)
    assert to_date("not a date") is None
    assert to_date("   ") is None


def test_to_date_rejects_booleans_and_overflow():
    """Test booleans and out of range serials give None."""
    assert to_date(True) is None
    assert to_date(1e12) is None
    assert excel_serial_to_datetime(1e12) is None


def test_cell_instances_accepted_directly():
    assert to_num(Number(4)) == 4
    assert to_str(RichText(" a ")) == "a"


def test_or_default():
    """Test or_default substitutes only None."""
    assert or_default(None, "XAF") == "XAF"
    assert or_default("EUR", "XAF") == "EUR"
    assert or_default(False, True) is False
