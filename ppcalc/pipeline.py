"""
スコア単位のpp計算パイプライン。

1スコアごとに以下を順に行う:
1. スコア正規化(ModKey / NormalizedScore)
2. 譜面の取得
3. 難易度属性の解決(キャッシュ参照、または再計算して保存)
4. pp計算機の呼び出し

例外方針:
- ValidationError / BeatmapUnavailableError は該当スコアをスキップする
- 難易度計算・pp計算の失敗(応答の形が不正な場合を含む)は local_pp=0 として結果に残す
- それ以外の想定外の例外もログを出して該当スコアをスキップする
- 1スコアの失敗でバッチ全体を中断しない
- キャッシュのコミットは全ワーカー終了後に1回だけ行い、キャンセル時は行わない
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ppcalc.cache import AttributeCache, resolve_attributes, utc_now
from ppcalc.capabilities import (
    BeatmapDocument,
    BeatmapSource,
    DifficultyCalculator,
    PerformanceCalculator,
    RulesetCapability,
    count_hit_objects,
)
from ppcalc.errors import (
    BeatmapUnavailableError,
    CacheWriteError,
    ExternalCalculatorError,
    ValidationError,
)
from ppcalc.mods import Mod, ModKey, difficulty_adjustment_mods
from ppcalc.models import DifficultyAttributes, NormalizedScore, RawScore, ScoreResult
from ppcalc.normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkippedScore:
    """スキップしたスコアとその理由。"""

    score_id: int
    beatmap_id: Optional[int]
    reason: str
    input_index: int = 0


@dataclass(frozen=True)
class PipelineRun:
    """
    1回のバッチ実行の結果。

    cancelled が True の場合、results は途中までの結果であり、キャッシュはコミットされていない。
    """

    results: Tuple[ScoreResult, ...] = ()
    skipped: Tuple[SkippedScore, ...] = ()
    committed: bool = False
    cancelled: bool = False
    sources: Mapping[str, int] = field(default_factory=dict)


def clamp_pp(value, *, score_id=None, name="pp") -> float:
    """ppを有限の非負値に丸める。NaN/∞/負値は0。"""
    try:
        pp = float(value)
    except (TypeError, ValueError):
        pp = math.nan
    if not math.isfinite(pp) or pp < 0.0:
        logger.warning("invalid %s clamped to 0: score_id=%s pp=%r", name, score_id, value)
        return 0.0
    return pp


def clamp_breakdown(breakdown, *, score_id=None) -> Dict[str, float]:
    """
    カテゴリ別ppの各値を clamp_pp と同じ規則で丸める。

    Raises:
        TypeError / ValueError: 数値として解釈できない値が含まれる場合。
    """
    return {
        str(k): clamp_pp(float(v), score_id=score_id, name=f"breakdown[{k}]")
        for k, v in dict(breakdown or {}).items()
    }


class PerformancePipeline:
    """
    RawScore → ScoreResult の変換を行うパイプライン。

    Args:
        cache: 難易度属性キャッシュ。
        beatmaps: 譜面ソース。
        difficulty: 難易度計算機。
        performance: pp計算機。
        ruleset: Mod変換・精度計算を提供するルールセット。
        freshness_boundary: この時刻より後に計算されたキャッシュのみ有効とする。
        clock: キャッシュに記録する計算時刻の取得関数。
    """

    def __init__(
        self,
        cache: AttributeCache,
        beatmaps: BeatmapSource,
        difficulty: DifficultyCalculator,
        performance: PerformanceCalculator,
        ruleset: RulesetCapability,
        freshness_boundary: Optional[datetime] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.beatmaps = beatmaps
        self.difficulty = difficulty
        self.performance = performance
        self.ruleset = ruleset
        self.freshness_boundary = freshness_boundary
        self.clock = clock

        self._locks_guard = threading.Lock()
        self._key_locks: Dict[Tuple[Optional[int], int], threading.Lock] = {}
        self._sources_guard = threading.Lock()
        self._sources: Dict[str, int] = {}

    def _key_lock(self, map_id: Optional[int], mods: ModKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get((map_id, mods.value))
            if lock is None:
                lock = self._key_locks[(map_id, mods.value)] = threading.Lock()
            return lock

    def resolve(self, beatmap: BeatmapDocument, mods: ModKey) -> DifficultyAttributes:
        """
        難易度属性を解決する。

        同じ (map_id, mods) を複数ワーカーが同時に要求した場合、計算は1回だけ行い、
        後続はキャッシュ(保留中のエントリ)から受け取る。

        Raises:
            ExternalCalculatorError: 難易度計算機が失敗した場合。
        """
        with self._key_lock(beatmap.map_id, mods):
            attributes, source = resolve_attributes(
                self.cache,
                beatmap,
                mods,
                self.difficulty,
                self.freshness_boundary,
                clock=self.clock,
            )

        with self._sources_guard:
            self._sources[source] = self._sources.get(source, 0) + 1
        return attributes

    def _fetch_beatmap(self, map_id: Optional[int], score_id=None) -> BeatmapDocument:
        if map_id is None:
            raise BeatmapUnavailableError(f"score {score_id} has no beatmap id")
        try:
            return self.beatmaps.resolve(map_id)
        except BeatmapUnavailableError:
            raise
        except Exception as e:
            raise BeatmapUnavailableError(f"beatmap {map_id} unavailable: {e}") from e

    def _calculate_pp(
        self,
        map_id: Optional[int],
        score_id,
        mods: ModKey,
        score: NormalizedScore,
        attributes: DifficultyAttributes,
    ) -> Tuple[float, Dict[str, float]]:
        # 応答の形が不正な場合も計算機の失敗として扱う
        try:
            total, breakdown = self.performance.calculate(score, attributes)
            breakdown = clamp_breakdown(breakdown, score_id=score_id)
        except Exception as e:
            logger.error(
                "performance calculation failed: map_id=%s mods=%s error=%s",
                map_id, mods, e,
            )
            return 0.0, {}

        return clamp_pp(total, score_id=score_id), breakdown

    def process(self, raw: RawScore, input_index: int = 0) -> ScoreResult:
        """
        1スコアを処理して ScoreResult を返す。

        Raises:
            ValidationError: スコアの統計値が不正な場合。
            BeatmapUnavailableError: 譜面を取得できない場合。
        """
        mods, score = normalize(raw, self.ruleset)
        beatmap = self._fetch_beatmap(raw.beatmap_id, raw.score_id)
        diff_mods = ModKey.from_applied_mods(difficulty_adjustment_mods(score.mods))

        attributes: Optional[DifficultyAttributes] = None
        local_pp, breakdown = 0.0, {}
        try:
            attributes = self.resolve(beatmap, diff_mods)
        except ExternalCalculatorError as e:
            logger.error(
                "difficulty calculation failed: map_id=%s mods=%s error=%s",
                raw.beatmap_id, diff_mods, e,
            )
        else:
            local_pp, breakdown = self._calculate_pp(raw.beatmap_id, raw.score_id, mods, score, attributes)

        return ScoreResult(
            score_id=raw.score_id,
            beatmap_id=raw.beatmap_id,
            mods=mods,
            accuracy=score.accuracy,
            combo=score.max_combo,
            misses=score.count_miss,
            local_pp=local_pp,
            live_pp=float(raw.live_pp or 0.0),
            breakdown=breakdown,
            attributes=attributes,
            input_index=input_index,
        )

    def simulate(
        self,
        beatmap_id: int,
        mods: Sequence[Mod] = (),
        accuracy: float = 1.0,
        combo: Optional[int] = None,
        misses: int = 0,
        *,
        mehs: Optional[int] = None,
        goods: Optional[int] = None,
        percent_combo: Optional[float] = None,
        total_objects: Optional[int] = None,
    ) -> ScoreResult:
        """
        仮想プレイのppを計算する。

        判定数は ruleset.hit_statistics_for で組み立てる。
        combo の指定が無い場合は percent_combo(譜面最大コンボに対する%)、
        どちらも無い場合は譜面の最大コンボを使う。
        計算した難易度属性はキャッシュへコミットする。

        Args:
            beatmap_id: 譜面ID。
            mods: 適用するMod。
            accuracy: 目標精度(0〜1)。
            combo: 最大コンボ。
            misses: ミス数。
            mehs: 50の数。
            goods: 100の数。
            percent_combo: 譜面最大コンボに対するコンボの割合(%)。
            total_objects: オブジェクト数。None なら譜面の [HitObjects] から数える。

        Returns:
            score_id=0, live_pp=0 の ScoreResult。

        Raises:
            ValidationError: 入力値が不正な場合。
            BeatmapUnavailableError: 譜面を取得できない場合。
            ExternalCalculatorError: 難易度計算機が失敗した場合。
        """
        beatmap = self._fetch_beatmap(beatmap_id)
        applied = ModKey.from_applied_mods(mods).to_applied_mods()
        mod_key = ModKey.from_applied_mods(applied)
        diff_mods = ModKey.from_applied_mods(difficulty_adjustment_mods(applied))

        if total_objects is None:
            total_objects = count_hit_objects(beatmap.content)
        statistics = self.ruleset.hit_statistics_for(accuracy, total_objects, misses, mehs, goods)

        attributes = self.resolve(beatmap, diff_mods)
        if combo is None:
            if percent_combo is not None:
                combo = int(round(percent_combo / 100 * attributes.max_combo))
            else:
                combo = attributes.max_combo
        if combo < 0:
            raise ValidationError(f"combo must be >= 0: {combo}")

        score = NormalizedScore(
            mods=applied,
            accuracy=float(self.ruleset.accuracy(statistics)),
            max_combo=combo,
            count_miss=misses,
            statistics=statistics,
        )
        local_pp, breakdown = self._calculate_pp(beatmap_id, None, mod_key, score, attributes)

        try:
            self.cache.commit()
        except CacheWriteError as e:
            logger.error("cache commit failed: failed_keys=%s error=%s", e.failed_keys, e)

        return ScoreResult(
            score_id=0,
            beatmap_id=beatmap_id,
            mods=mod_key,
            accuracy=score.accuracy,
            combo=combo,
            misses=misses,
            local_pp=local_pp,
            live_pp=0.0,
            breakdown=breakdown,
            attributes=attributes,
        )

    def _process_or_skip(
        self, index: int, raw: RawScore, cancel: Optional[threading.Event]
    ) -> Union[ScoreResult, SkippedScore, None]:
        if cancel is not None and cancel.is_set():
            return None
        try:
            return self.process(raw, input_index=index)
        except (ValidationError, BeatmapUnavailableError) as e:
            logger.warning(
                "score skipped: score_id=%s map_id=%s mods=%s error=%s",
                raw.score_id, raw.beatmap_id, raw.legacy_mods, e,
            )
            return SkippedScore(
                score_id=raw.score_id,
                beatmap_id=raw.beatmap_id,
                reason=str(e),
                input_index=index,
            )
        except Exception as e:
            logger.exception(
                "unexpected error, score skipped: score_id=%s map_id=%s mods=%s error=%s",
                raw.score_id, raw.beatmap_id, raw.legacy_mods, e,
            )
            return SkippedScore(
                score_id=raw.score_id,
                beatmap_id=raw.beatmap_id,
                reason=f"{type(e).__name__}: {e}",
                input_index=index,
            )

    def run(
        self,
        raw_scores: Iterable[RawScore],
        *,
        workers: int = 1,
        cancel: Optional[threading.Event] = None,
    ) -> PipelineRun:
        """
        スコア群をまとめて処理し、最後にキャッシュをコミットする。

        Args:
            raw_scores: 入力スコア。
            workers: 並列ワーカー数。1以下なら逐次処理。
            cancel: セットされると未着手のスコアを処理せず終了する。

        Returns:
            PipelineRun。results / skipped は入力順。
        """
        scores = list(raw_scores)
        with self._sources_guard:
            self._sources = {}

        if workers <= 1:
            outcomes = []
            for index, raw in enumerate(scores):
                if cancel is not None and cancel.is_set():
                    break
                outcomes.append(self._process_or_skip(index, raw, cancel))
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [
                    pool.submit(self._process_or_skip, index, raw, cancel)
                    for index, raw in enumerate(scores)
                ]
                outcomes = [f.result() for f in futures]

        results: List[ScoreResult] = [o for o in outcomes if isinstance(o, ScoreResult)]
        skipped: List[SkippedScore] = [o for o in outcomes if isinstance(o, SkippedScore)]
        with self._sources_guard:
            sources = dict(self._sources)

        if cancel is not None and cancel.is_set():
            discarded = self.cache.discard()
            logger.info("run cancelled: %d results kept, %d cache entries discarded", len(results), discarded)
            return PipelineRun(tuple(results), tuple(skipped), committed=False, cancelled=True, sources=sources)

        committed = True
        try:
            written = self.cache.commit()
            logger.info("cache committed: %d entries", written)
        except CacheWriteError as e:
            logger.error("cache commit failed: failed_keys=%s error=%s", e.failed_keys, e)
            committed = False

        return PipelineRun(tuple(results), tuple(skipped), committed=committed, cancelled=False, sources=sources)
