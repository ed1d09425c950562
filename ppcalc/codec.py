"""
難易度属性のシリアライズ処理を提供するモジュール。

可変長の数値列(curve)を保存用のテキストへ変換し、また逆変換する。
ホストのロケールに依存しないよう、小数点は常に "." とし、値は半角スペース区切りとする。

保存スキーマの列名は attr_* / curve_* の接頭辞を付け、
計算用オブジェクトのフィールド名と衝突しないようにする。
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping, Tuple

from ppcalc.errors import FormatError
from ppcalc.models import CURVE_FIELDS, SCALAR_FIELDS, DifficultyAttributes

SEPARATOR = " "


def encode_curve(values: Iterable[float]) -> str:
    """
    数値列をテキストへ変換する。

    repr(float) は最短で往復可能な10進表現を返すため、decode_curve で元の値に戻る。

    Args:
        values: 有限の実数列。空でもよい。

    Returns:
        半角スペース区切りのテキスト。空列は空文字。

    Raises:
        FormatError: NaN/∞など有限でない値が含まれる場合。
    """
    parts = []
    for v in values:
        x = float(v)
        if not math.isfinite(x):
            raise FormatError(f"non-finite value in curve: {v!r}")
        parts.append(repr(x))
    return SEPARATOR.join(parts)


def decode_curve(text: str) -> Tuple[float, ...]:
    """
    encode_curve の出力を数値列へ戻す。

    Args:
        text: 半角スペース区切りのテキスト。

    Returns:
        floatのタプル。空文字の場合は空タプル。

    Raises:
        FormatError: None、数値でないトークン、空トークン、有限でない値を含む場合。
    """
    if text is None:
        raise FormatError("curve payload is missing")
    if not isinstance(text, str):
        raise FormatError(f"curve payload must be text: {type(text).__name__}")
    if text == "":
        return ()

    values = []
    for token in text.split(SEPARATOR):
        try:
            x = float(token)
        except ValueError as e:
            raise FormatError(f"malformed curve token: {token!r}") from e
        if not math.isfinite(x):
            raise FormatError(f"non-finite curve token: {token!r}")
        values.append(x)
    return tuple(values)


def scalar_column(name: str) -> str:
    return f"attr_{name}"


def curve_column(name: str) -> str:
    return f"curve_{name}"


def attributes_to_row(attrs: DifficultyAttributes) -> Dict[str, Any]:
    """
    DifficultyAttributes を保存用の列名→値の辞書へ変換する。

    Raises:
        FormatError: curveに有限でない値が含まれる場合。
    """
    row: Dict[str, Any] = {}
    for name in SCALAR_FIELDS:
        row[scalar_column(name)] = getattr(attrs, name)
    for name in CURVE_FIELDS:
        row[curve_column(name)] = encode_curve(getattr(attrs, name))
    return row


def row_to_attributes(row: Mapping[str, Any]) -> DifficultyAttributes:
    """
    保存行から DifficultyAttributes を復元する。

    Args:
        row: sqlite3.Row または列名→値の辞書。

    Returns:
        DifficultyAttributes。

    Raises:
        FormatError: 列の欠落、型不正、curveの復元失敗の場合。
    """
    values: Dict[str, Any] = {}
    try:
        for name in SCALAR_FIELDS:
            raw = row[scalar_column(name)]
            if raw is None:
                raise FormatError(f"missing value for {scalar_column(name)}")
            values[name] = int(raw) if name == "max_combo" else float(raw)
        for name in CURVE_FIELDS:
            values[name] = decode_curve(row[curve_column(name)])
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise FormatError(f"malformed attribute row: {e}") from e

    return DifficultyAttributes(**values)
