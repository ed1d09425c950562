"""
入力スコアの読み込み処理。

osu_scores_high 形式のSQLiteダンプ、またはAPI応答と同じ形の辞書から
RawScore を生成する。値の型と範囲はここで検証し、以降の処理では信頼する。
"""

from __future__ import annotations

import logging
import math
import sqlite3
from typing import Any, List, Mapping, Optional

from ppcalc.errors import ValidationError
from ppcalc.models import RawScore

logger = logging.getLogger(__name__)

SCORES_TABLE = "osu_scores_high"

_REQUIRED_INT_FIELDS = ("beatmap_id", "maxcombo", "count300", "count100", "count50", "countmiss")


def _as_int(data: Mapping[str, Any], key: str, default: Optional[int] = None) -> int:
    value = data.get(key)
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"missing field: {key}")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be an integer: {value!r}") from e
    if not number.is_integer():
        raise ValidationError(f"{key} must be an integer: {value!r}")
    return int(number)


def _as_pp(data: Mapping[str, Any], key: str = "pp") -> float:
    value = data.get(key)
    if value is None or value == "":
        return 0.0
    try:
        pp = float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{key} must be a number: {value!r}") from e
    if not math.isfinite(pp):
        raise ValidationError(f"{key} must be finite: {value!r}")
    return pp


def raw_score_from_mapping(data: Mapping[str, Any]) -> RawScore:
    """
    API応答またはDB行の辞書を RawScore へ変換する。

    数値が文字列で渡される(osu! API v1形式)場合も受け付ける。

    Args:
        data: score_id, beatmap_id, maxcombo, count300 等を持つ辞書。

    Returns:
        RawScore。

    Raises:
        ValidationError: 必須項目の欠落、型不正、負の値がある場合。
    """
    for key in _REQUIRED_INT_FIELDS:
        if key not in data:
            raise ValidationError(f"missing field: {key}")

    score = RawScore(
        score_id=_as_int(data, "score_id", default=0),
        beatmap_id=_as_int(data, "beatmap_id"),
        user_id=_as_int(data, "user_id", default=0),
        max_combo=_as_int(data, "maxcombo"),
        count_300=_as_int(data, "count300"),
        count_100=_as_int(data, "count100"),
        count_50=_as_int(data, "count50"),
        count_miss=_as_int(data, "countmiss"),
        count_geki=_as_int(data, "countgeki", default=0),
        count_katu=_as_int(data, "countkatu", default=0),
        legacy_mods=_as_int(data, "enabled_mods", default=0),
        live_pp=_as_pp(data),
        date=str(data["date"]) if data.get("date") else None,
    )

    for name in ("max_combo", "count_300", "count_100", "count_50", "count_miss", "legacy_mods"):
        if getattr(score, name) < 0:
            raise ValidationError(f"score {score.score_id}: negative {name}")
    return score


def load_scores_from_db(
    path: str,
    user_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[RawScore]:
    """
    osu_scores_high テーブルからスコアをpp降順で読み込む。

    不正な行は警告を出してスキップする。

    Args:
        path: SQLiteファイルパス。
        user_id: 指定した場合はそのユーザーのスコアのみ。
        limit: 正の値を指定した場合は上位N件のみ。

    Returns:
        RawScore のリスト。
    """
    sql = f"SELECT * FROM {SCORES_TABLE}"
    params: list = []
    if user_id is not None:
        sql += " WHERE user_id=?"
        params.append(user_id)
    sql += " ORDER BY pp DESC, score_id ASC"
    if limit is not None and limit > 0:
        sql += " LIMIT ?"
        params.append(limit)

    con = sqlite3.connect(path)
    con.row_factory = sqlite3.Row
    try:
        rows = con.execute(sql, params).fetchall()
    finally:
        con.close()

    scores = []
    for row in rows:
        data = dict(row)
        try:
            scores.append(raw_score_from_mapping(data))
        except ValidationError as e:
            logger.warning("invalid score row skipped: score_id=%s error=%s", data.get("score_id"), e)
    return scores
