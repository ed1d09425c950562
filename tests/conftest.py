from __future__ import annotations

import sys
import threading
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ppcalc.cache import AttributeCache
from ppcalc.capabilities import BeatmapDocument, OsuRuleset
from ppcalc.errors import BeatmapUnavailableError
from ppcalc.models import DifficultyAttributes, RawScore, ScoreResult
from ppcalc.mods import ModKey


class FakeDifficultyCalculator:
    """呼び出し回数を数える難易度計算機。star_rating は map_id から決まる。"""

    def __init__(self, fail_for=()):
        self.calls = Counter()
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def calculate(self, beatmap, mods):
        key = (beatmap.map_id, ModKey.from_applied_mods(mods).value)
        with self._lock:
            self.calls[key] += 1
        if beatmap.map_id in self.fail_for:
            raise RuntimeError("strain calculation exploded")
        return make_attributes(star_rating=float(beatmap.map_id or 1) / 10)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


class FakePerformanceCalculator:
    """pp = star_rating * 100 * accuracy。指定した値を返すこともできる。"""

    def __init__(self, fail_for_combo=(), fixed=None, reply_for_combo=None):
        self.fail_for_combo = set(fail_for_combo)
        self.fixed = fixed
        self.reply_for_combo = dict(reply_for_combo or {})
        self.scores = []

    def calculate(self, score, attributes):
        self.scores.append(score)
        if score.max_combo in self.fail_for_combo:
            raise RuntimeError("performance calculation exploded")
        if score.max_combo in self.reply_for_combo:
            return self.reply_for_combo[score.max_combo]
        if self.fixed is not None:
            return self.fixed, {}
        pp = attributes.star_rating * 100 * score.accuracy
        return pp, {"aim": pp * 0.5, "tap": pp * 0.3, "acc": pp * 0.2}


class DictBeatmapSource:
    """map_id → BeatmapDocument の辞書を使う譜面ソース。未登録IDは取得不可。"""

    def __init__(self, map_ids=(), unstable=()):
        self.docs = {i: BeatmapDocument(map_id=i, content="osu file format v14", title=f"map {i}") for i in map_ids}
        for i in unstable:
            self.docs[i] = BeatmapDocument(map_id=None, content="osu file format v14")

    def resolve(self, map_id):
        try:
            return self.docs[map_id]
        except KeyError as e:
            raise BeatmapUnavailableError(f"beatmap {map_id} not found") from e


def make_attributes(**overrides) -> DifficultyAttributes:
    values = dict(
        star_rating=5.25,
        aim_sr=2.5,
        aim_diff=120.0,
        aim_hidden_factor=0.9,
        tap_sr=2.1,
        tap_diff=98.5,
        stream_note_count=310.0,
        finger_control_sr=1.2,
        finger_control_diff=40.0,
        cheese_note_count=12.0,
        length=183.4,
        approach_rate=9.3,
        overall_difficulty=8.7,
        max_combo=1024,
        mash_levels=(0.1, 0.25, 0.5),
        tap_skills=(1.0, 1.5),
        combo_tps=(0.3, 0.6, 0.9),
        miss_tps=(0.05,),
        miss_counts=(0.0, 1.0, 2.5),
        cheese_levels=(),
        cheese_factors=(0.95, 0.975),
    )
    values.update(overrides)
    return DifficultyAttributes(**values)


def make_raw_score(**overrides) -> RawScore:
    values = dict(
        score_id=1,
        beatmap_id=100,
        user_id=7,
        max_combo=500,
        count_300=300,
        count_100=10,
        count_50=2,
        count_miss=1,
        legacy_mods=0,
        live_pp=100.0,
    )
    values.update(overrides)
    return RawScore(**values)


def make_result(beatmap_id, local_pp, live_pp, index=0, score_id=None) -> ScoreResult:
    return ScoreResult(
        score_id=index if score_id is None else score_id,
        beatmap_id=beatmap_id,
        mods=ModKey(),
        accuracy=0.98,
        combo=500,
        misses=0,
        local_pp=local_pp,
        live_pp=live_pp,
        input_index=index,
    )


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def cache(tmp_path: Path):
    cache = AttributeCache.open(str(tmp_path / "difficultycache.db"))
    try:
        yield cache
    finally:
        cache.close()


@pytest.fixture
def ruleset() -> OsuRuleset:
    return OsuRuleset()


@pytest.fixture
def boundary() -> datetime:
    return datetime(2026, 1, 1, tzinfo=timezone.utc)
