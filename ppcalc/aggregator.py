"""
プロフィール集計処理。

スコア単位の計算結果(ScoreResult)をローカルpp順・ライブpp順に並べ、
減衰重み付き合計(Σ 0.95^i · pp_i)とプレイ回数ボーナスから
プロフィール全体のppを求める。

同ppのスコアは入力順を維持する(安定ソート)。
"""

from __future__ import annotations

import enum
from typing import Callable, Iterable, List, Optional, Sequence

from ppcalc.models import ProfileReport, RankedScore, ScoreResult

WEIGHT_DECAY = 0.95

# 旧クライアントで使われていたスコア件数ベースのボーナス式の定数
SCORE_COUNT_BONUS_MAX = 417.0 - 1.0 / 3.0
SCORE_COUNT_BONUS_DECAY = 0.995


class PlaycountBonusMode(enum.Enum):
    """
    プレイ回数ボーナスの算出方法。

    - LIVE_DIFFERENCE: 公開済み合計pp − ライブppの重み付き合計
    - SCORE_COUNT: (417 − 1/3) · (1 − 0.995^n)
    """

    LIVE_DIFFERENCE = "live_difference"
    SCORE_COUNT = "score_count"


def weighted_sum(values: Iterable[float]) -> float:
    """降順に並んだ値の減衰重み付き合計を返す。"""
    return sum(WEIGHT_DECAY ** i * v for i, v in enumerate(values))


def rank_scores(
    results: Sequence[ScoreResult],
    key: Callable[[ScoreResult], float],
    dedupe: bool = False,
) -> List[ScoreResult]:
    """
    keyの降順に並べる。同値は input_index の昇順。

    dedupe が True の場合、同じ譜面のスコアは最上位の1件だけを残す。
    beatmap_id が None のスコアは重複排除しない。
    """
    ordered = sorted(results, key=lambda r: (-key(r), r.input_index))
    if not dedupe:
        return ordered

    seen = set()
    kept = []
    for r in ordered:
        if r.beatmap_id is not None:
            if r.beatmap_id in seen:
                continue
            seen.add(r.beatmap_id)
        kept.append(r)
    return kept


def playcount_bonus(
    mode: PlaycountBonusMode,
    total_live_pp: float,
    non_bonus_live_pp: float,
    score_count: int,
) -> float:
    if mode is PlaycountBonusMode.SCORE_COUNT:
        return SCORE_COUNT_BONUS_MAX * (1.0 - SCORE_COUNT_BONUS_DECAY ** score_count)
    return total_live_pp - non_bonus_live_pp


def aggregate(
    results: Iterable[ScoreResult],
    reported_live_pp: Optional[float],
    *,
    dedupe: bool = False,
    bonus_mode: PlaycountBonusMode = PlaycountBonusMode.LIVE_DIFFERENCE,
) -> ProfileReport:
    """
    スコア群を集計して ProfileReport を返す。

    1. ローカルpp降順・ライブpp降順の2つの順位を作る(dedupe時はそれぞれ独立に重複排除)
    2. ライブ順の重み付き合計を non_bonus_live とする
    3. 公開済み合計が正ならそれを total_live、そうでなければ non_bonus_live とする
       (非アクティブなプロフィールは公開済み合計が0)
    4. プレイ回数ボーナスを求め、ローカル順の重み付き合計に加える
    5. スコアごとに順位差(ライブ順位 − ローカル順位)とpp差を求める

    Args:
        results: スコア単位の計算結果。
        reported_live_pp: 公開済みのプロフィール合計pp。
        dedupe: 同じ譜面のスコアを1件にまとめるかどうか。
        bonus_mode: プレイ回数ボーナスの算出方法。

    Returns:
        ProfileReport。
    """
    results = list(results)

    local_order = rank_scores(results, lambda r: r.local_pp, dedupe)
    live_order = rank_scores(results, lambda r: r.live_pp, dedupe)

    non_bonus_live = weighted_sum(r.live_pp for r in live_order)
    reported = float(reported_live_pp or 0.0)
    total_live = reported if reported > 0.0 else non_bonus_live

    bonus = playcount_bonus(bonus_mode, total_live, non_bonus_live, len(results))
    total_local = weighted_sum(r.local_pp for r in local_order) + bonus

    local_rank = {id(r): i + 1 for i, r in enumerate(local_order)}
    live_rank = {id(r): i + 1 for i, r in enumerate(live_order)}

    entries = [RankedScore(r, local_rank[id(r)], live_rank.get(id(r))) for r in local_order]
    entries += [RankedScore(r, None, live_rank[id(r)]) for r in live_order if id(r) not in local_rank]

    return ProfileReport(
        total_local_pp=total_local,
        total_live_pp=total_live,
        non_bonus_live_pp=non_bonus_live,
        playcount_bonus_pp=bonus,
        entries=tuple(entries),
    )
