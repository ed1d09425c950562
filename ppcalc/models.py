"""
データモデル定義モジュール。

難易度属性、入力スコア、スコア単位の計算結果、プロフィール集計結果など、
パイプラインの各段で受け渡す不変の値オブジェクトを定義する。
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Mapping, Optional, Tuple

from ppcalc.mods import Mod, ModKey


@dataclass(frozen=True)
class DifficultyAttributes:
    """
    譜面×Modごとの難易度属性ベクトル。

    外部の難易度計算機のみが生成し、生成後に変更しない。

    - スカラー値は星レート、スキル別難易度、譜面メタ情報(長さ/AR/OD/最大コンボ)
    - curve系は可変長の数値列(タプル)
    """

    star_rating: float = 0.0

    aim_sr: float = 0.0
    aim_diff: float = 0.0
    aim_hidden_factor: float = 0.0

    tap_sr: float = 0.0
    tap_diff: float = 0.0
    stream_note_count: float = 0.0

    finger_control_sr: float = 0.0
    finger_control_diff: float = 0.0

    cheese_note_count: float = 0.0

    length: float = 0.0
    approach_rate: float = 0.0
    overall_difficulty: float = 0.0
    max_combo: int = 0

    mash_levels: Tuple[float, ...] = ()
    tap_skills: Tuple[float, ...] = ()
    combo_tps: Tuple[float, ...] = ()
    miss_tps: Tuple[float, ...] = ()
    miss_counts: Tuple[float, ...] = ()
    cheese_levels: Tuple[float, ...] = ()
    cheese_factors: Tuple[float, ...] = ()


CURVE_FIELDS = (
    "mash_levels",
    "tap_skills",
    "combo_tps",
    "miss_tps",
    "miss_counts",
    "cheese_levels",
    "cheese_factors",
)
SCALAR_FIELDS = tuple(f.name for f in fields(DifficultyAttributes) if f.name not in CURVE_FIELDS)


@dataclass(frozen=True)
class CacheEntry:
    """
    難易度属性キャッシュの1エントリ。

    主キーは (map_id, mods)。部分更新はせず、常に丸ごと置き換える。
    """

    map_id: int
    mods: ModKey
    attributes: DifficultyAttributes
    computed_at: datetime


@dataclass(frozen=True)
class RawScore:
    """
    外部から与えられる1プレイ分のスコア記録(読み取り専用)。

    live_pp は公開済みのpp。未算出の場合は0として扱う。
    """

    score_id: int
    beatmap_id: Optional[int]
    user_id: int
    max_combo: int
    count_300: int
    count_100: int
    count_50: int
    count_miss: int
    legacy_mods: int = 0
    count_geki: int = 0
    count_katu: int = 0
    live_pp: float = 0.0
    date: Optional[str] = None


@dataclass(frozen=True)
class NormalizedScore:
    """ルールセット非依存の形に変換したスコア。"""

    mods: Tuple[Mod, ...]
    accuracy: float
    max_combo: int
    count_miss: int
    statistics: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreResult:
    """
    1スコア分の計算結果。1回のパイプライン実行の間だけ存在する。

    local_pp は常に有限の非負値。
    """

    score_id: int
    beatmap_id: Optional[int]
    mods: ModKey
    accuracy: float
    combo: int
    misses: int
    local_pp: float
    live_pp: float
    breakdown: Mapping[str, float] = field(default_factory=dict)
    attributes: Optional[DifficultyAttributes] = None
    input_index: int = 0

    @property
    def pp_delta(self) -> float:
        return self.local_pp - self.live_pp


@dataclass(frozen=True)
class RankedScore:
    """
    プロフィール集計でのスコア1件分の順位情報。

    重複排除モードで片方の順位から除外されたスコアは該当rankがNoneになる。
    """

    result: ScoreResult
    local_rank: Optional[int]
    live_rank: Optional[int]

    @property
    def position_delta(self) -> Optional[int]:
        if self.local_rank is None or self.live_rank is None:
            return None
        return self.live_rank - self.local_rank

    @property
    def pp_delta(self) -> float:
        return self.result.pp_delta


@dataclass(frozen=True)
class ProfileReport:
    """
    プロフィール全体の集計結果。実行ごとに新しく作り、永続化しない。

    entries はローカルpp順(重複排除でライブ側のみに残ったスコアは末尾)。
    """

    total_local_pp: float
    total_live_pp: float
    non_bonus_live_pp: float
    playcount_bonus_pp: float
    entries: Tuple[RankedScore, ...] = ()

    @property
    def total_pp_delta(self) -> float:
        return self.total_local_pp - self.total_live_pp
