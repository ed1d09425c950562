"""難易度属性のシリアライズ処理のテスト。"""

from __future__ import annotations

import locale

import pytest

from conftest import make_attributes
from ppcalc.codec import (
    attributes_to_row,
    decode_curve,
    encode_curve,
    row_to_attributes,
)
from ppcalc.errors import FormatError


@pytest.mark.light
@pytest.mark.parametrize(
    "values",
    [
        (),
        (1.5,),
        (0.1, 0.2, 0.30000000000000004),
        (-0.0, 1e-300, 1.7976931348623157e308, -123456.789),
        tuple(i / 7 for i in range(50)),
    ],
)
def test_curve_round_trips_exactly(values):
    assert decode_curve(encode_curve(values)) == values


@pytest.mark.light
def test_encode_uses_dot_and_single_space():
    assert encode_curve([1.25, 2.0, 3]) == "1.25 2.0 3.0"
    assert encode_curve([]) == ""


@pytest.mark.light
def test_encode_is_locale_independent():
    """ロケールを変えても小数点は "." のままであることを確認する。"""
    previous = locale.setlocale(locale.LC_NUMERIC)
    try:
        try:
            locale.setlocale(locale.LC_NUMERIC, "de_DE.UTF-8")
        except locale.Error:
            pytest.skip("de_DE locale is not installed")
        assert encode_curve([0.5]) == "0.5"
        assert decode_curve("0.5 1.25") == (0.5, 1.25)
    finally:
        locale.setlocale(locale.LC_NUMERIC, previous)


@pytest.mark.light
@pytest.mark.parametrize("payload", [None, "abc", "1.0  2.0", "1,5", "nan", "1.0 inf", " 1.0"])
def test_decode_rejects_malformed_payload(payload):
    with pytest.raises(FormatError):
        decode_curve(payload)


@pytest.mark.light
def test_encode_rejects_non_finite_values():
    with pytest.raises(FormatError):
        encode_curve([1.0, float("nan")])


@pytest.mark.light
def test_attribute_row_uses_prefixed_columns_and_round_trips():
    attrs = make_attributes()
    row = attributes_to_row(attrs)

    assert all(k.startswith(("attr_", "curve_")) for k in row)
    assert row["attr_max_combo"] == 1024
    assert row["curve_cheese_levels"] == ""
    assert row_to_attributes(row) == attrs


@pytest.mark.light
def test_row_with_missing_column_is_format_error():
    row = attributes_to_row(make_attributes())
    del row["curve_tap_skills"]

    with pytest.raises(FormatError):
        row_to_attributes(row)


@pytest.mark.light
def test_row_with_corrupt_curve_is_format_error():
    row = attributes_to_row(make_attributes())
    row["curve_mash_levels"] = "0.1 oops"

    with pytest.raises(FormatError):
        row_to_attributes(row)
