"""
外部コラボレータ(譜面取得・難易度計算・pp計算・ルールセット)のインターフェース定義。

計算アルゴリズム自体は本パッケージの責務外であり、ここでは呼び出し規約のみを定める。
osu!standard 向けのルールセット実装と、ディレクトリ上の .osu ファイルを読む
譜面ソースは既定実装として提供する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

from ppcalc.errors import BeatmapUnavailableError, ValidationError
from ppcalc.mods import Mod, ModKey
from ppcalc.models import DifficultyAttributes, NormalizedScore


@dataclass(frozen=True)
class BeatmapDocument:
    """
    譜面データ。解析は難易度計算機側で行う。

    map_id が None の譜面は安定したIDを持たないため、キャッシュ対象外となる。
    """

    map_id: Optional[int]
    content: str = ""
    title: str = ""


class BeatmapSource(Protocol):
    def resolve(self, map_id: int) -> BeatmapDocument:
        """譜面を返す。取得できない場合は BeatmapUnavailableError。"""
        ...


class DifficultyCalculator(Protocol):
    def calculate(self, beatmap: BeatmapDocument, mods: Sequence[Mod]) -> DifficultyAttributes:
        """(beatmap, mods) に対して決定的な難易度属性を返す。"""
        ...


class PerformanceCalculator(Protocol):
    def calculate(
        self, score: NormalizedScore, attributes: DifficultyAttributes
    ) -> Tuple[float, Mapping[str, float]]:
        """(合計pp, カテゴリ別pp) を返す。"""
        ...


class RulesetCapability(Protocol):
    def convert_legacy_mods(self, flags: int) -> Sequence[Mod]:
        ...

    def accuracy(self, statistics: Mapping[str, int]) -> float:
        ...

    def hit_statistics_for(
        self,
        accuracy: float,
        total_objects: int,
        misses: int = 0,
        mehs: Optional[int] = None,
        goods: Optional[int] = None,
    ) -> Mapping[str, int]:
        ...


class OsuRuleset:
    """osu!standard のルールセット。"""

    ruleset_id = 0

    def convert_legacy_mods(self, flags: int) -> Tuple[Mod, ...]:
        """旧形式のビットフラグをModのタプルへ変換する。NCがあればDTは含めない。"""
        return ModKey.from_legacy(flags).to_applied_mods()

    def accuracy(self, statistics: Mapping[str, int]) -> float:
        """
        判定数から精度を求める。

        accuracy = (6*300 + 2*100 + 50) / (6 * total)

        Raises:
            ValidationError: 総判定数が0の場合。
        """
        great = int(statistics.get("great", 0))
        ok = int(statistics.get("ok", 0))
        meh = int(statistics.get("meh", 0))
        miss = int(statistics.get("miss", 0))
        total = great + ok + meh + miss
        if total <= 0:
            raise ValidationError("score has no judged hit objects")
        return (6 * great + 2 * ok + meh) / (6 * total)

    def hit_statistics_for(
        self,
        accuracy: float,
        total_objects: int,
        misses: int = 0,
        mehs: Optional[int] = None,
        goods: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        目標精度から仮想プレイの判定数を組み立てる。

        mehs / goods のどちらかが指定された場合は accuracy を使わず、残りをすべて300とする。
        指定が無い場合は 300=6, 100=2, 50=1, miss=0 の重みで合計が
        round(accuracy * total_objects * 6) になるよう配分する。

        Args:
            accuracy: 目標精度(0〜1)。
            total_objects: 譜面のオブジェクト数。
            misses: ミス数。
            mehs: 50の数。
            goods: 100の数。

        Returns:
            great / ok / meh / miss をキーとする判定数。

        Raises:
            ValidationError: 入力が範囲外、または判定数が負になる組み合わせの場合。
        """
        if not math.isfinite(accuracy) or not 0.0 <= accuracy <= 1.0:
            raise ValidationError(f"accuracy must be within [0, 1]: {accuracy!r}")
        if total_objects <= 0:
            raise ValidationError(f"total_objects must be positive: {total_objects}")
        if misses < 0 or misses > total_objects:
            raise ValidationError(f"misses out of range: {misses} (objects={total_objects})")

        if mehs is not None or goods is not None:
            meh = mehs or 0
            ok = goods or 0
            great = total_objects - ok - meh - misses
        else:
            target_total = round(accuracy * total_objects * 6)
            # 全て50とした状態から、300は+5、100は+1ずつ合計を増やす
            delta = target_total - (total_objects - misses)
            great = int(delta / 5)
            ok = delta - great * 5
            meh = total_objects - great - ok - misses

        statistics = {"great": great, "ok": ok, "meh": meh, "miss": misses}
        if any(count < 0 for count in statistics.values()):
            raise ValidationError(f"impossible hit statistics: {statistics}")
        return statistics


class DirectoryBeatmapSource:
    """
    <directory>/<map_id>.osu を読む譜面ソース。

    ファイルが無い、または空の場合は BeatmapUnavailableError とする。
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def path_for(self, map_id: int) -> Path:
        return self.directory / f"{map_id}.osu"

    def resolve(self, map_id: int) -> BeatmapDocument:
        path = self.path_for(map_id)
        try:
            content = path.read_text(encoding="utf-8-sig")
        except OSError as e:
            raise BeatmapUnavailableError(f"beatmap unavailable: {path} ({e})") from e

        if not content.strip():
            raise BeatmapUnavailableError(f"beatmap file is empty: {path}")

        return BeatmapDocument(map_id=map_id, content=content, title=_read_title(content))


def count_hit_objects(content: str) -> int:
    """[HitObjects] セクションの行数を数える。"""
    count = 0
    in_section = False
    for line in content.splitlines():
        line = line.strip()
        if line.startswith("["):
            in_section = line == "[HitObjects]"
            continue
        if in_section and line and not line.startswith("//"):
            count += 1
    return count


def _read_title(content: str) -> str:
    """[Metadata] の Artist/Title/Version から表示用タイトルを作る。"""
    meta = {}
    for line in content.splitlines():
        key, sep, value = line.partition(":")
        if sep and key in ("Artist", "Title", "Version"):
            meta.setdefault(key, value.strip())

    if "Title" not in meta:
        return ""
    title = f"{meta.get('Artist', '')} - {meta['Title']}".strip(" -")
    if meta.get("Version"):
        title += f" [{meta['Version']}]"
    return title
