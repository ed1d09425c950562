"""
スコア正規化処理。

旧形式のスコア記録(RawScore)を、ルールセット非依存の NormalizedScore と
キャッシュキー用の ModKey へ変換する。

Modの変換と精度計算はルールセット(RulesetCapability)に委譲する。
統計値が矛盾している場合は ValidationError とし、パイプラインは該当スコアをスキップする。
"""

from __future__ import annotations

import math
from typing import Tuple

from ppcalc.capabilities import RulesetCapability
from ppcalc.errors import ValidationError
from ppcalc.mods import ModKey
from ppcalc.models import NormalizedScore, RawScore


def score_statistics(raw: RawScore) -> dict:
    """
    RawScore の判定数を統計辞書へ変換する。

    Raises:
        ValidationError: 負の判定数が含まれる場合。
    """
    statistics = {
        "great": raw.count_300,
        "ok": raw.count_100,
        "meh": raw.count_50,
        "miss": raw.count_miss,
    }
    for name, count in statistics.items():
        if count is None or count < 0:
            raise ValidationError(f"score {raw.score_id}: invalid {name} count: {count}")

    if sum(statistics.values()) == 0:
        raise ValidationError(f"score {raw.score_id}: no judged hit objects")

    return statistics


def normalize(raw: RawScore, ruleset: RulesetCapability) -> Tuple[ModKey, NormalizedScore]:
    """
    RawScore を (ModKey, NormalizedScore) へ変換する。

    Args:
        raw: 入力スコア。
        ruleset: Mod変換と精度計算を提供するルールセット。

    Returns:
        (ModKey, NormalizedScore)。

    Raises:
        ValidationError: 統計値・コンボ・Modフラグ・精度のいずれかが不正な場合。
    """
    statistics = score_statistics(raw)

    if raw.max_combo is None or raw.max_combo < 0:
        raise ValidationError(f"score {raw.score_id}: invalid combo: {raw.max_combo}")

    try:
        mods = tuple(ruleset.convert_legacy_mods(raw.legacy_mods))
    except ValueError as e:
        raise ValidationError(f"score {raw.score_id}: invalid mod flags {raw.legacy_mods}") from e

    accuracy = float(ruleset.accuracy(statistics))
    if not math.isfinite(accuracy) or not 0.0 <= accuracy <= 1.0:
        raise ValidationError(f"score {raw.score_id}: accuracy out of range: {accuracy}")

    normalized = NormalizedScore(
        mods=mods,
        accuracy=accuracy,
        max_combo=raw.max_combo,
        count_miss=raw.count_miss,
        statistics=statistics,
    )
    return ModKey.from_applied_mods(mods), normalized
