"""
ProfileReport をJSON文書として出力するヘルパー群。
"""

from __future__ import annotations

import json
import os
from typing import Mapping, Optional

from ppcalc.models import ProfileReport, RankedScore


def format_signed(value: Optional[float], digits: int = 1, zero: Optional[str] = None) -> str:
    """
    符号付きで数値を整形する。

    Args:
        value: 整形対象。None の場合は "-"。
        digits: 小数点以下の桁数。
        zero: 丸めた結果が0のときに使う文字列。None なら "+0.0" 形式。
    """
    if value is None:
        return "-"
    rounded = round(value, digits)
    if rounded == 0:
        return zero if zero is not None else f"+{0:.{digits}f}"
    return f"{rounded:+.{digits}f}"


def _beatmap_label(entry: RankedScore, titles: Mapping[int, str]) -> str:
    result = entry.result
    label = f"{result.beatmap_id}"
    title = titles.get(result.beatmap_id) if result.beatmap_id is not None else None
    if title:
        label += f" - {title}"
    if result.mods.value:
        label += f" +{result.mods.acronyms}"
    return label


def build_report_document(
    report: ProfileReport,
    user_id: str,
    username: str = "",
    titles: Optional[Mapping[int, str]] = None,
) -> dict:
    """
    ProfileReport を出力用の辞書へ変換する。

    表示用の文字列と、後段処理向けの数値をどちらも含める。
    """
    titles = titles or {}
    beatmaps = []
    for entry in report.entries:
        result = entry.result
        beatmaps.append({
            "score_id": result.score_id,
            "beatmap_id": result.beatmap_id,
            "beatmap": _beatmap_label(entry, titles),
            "mods": result.mods.acronyms,
            "accuracy": round(result.accuracy * 100, 2),
            "combo": result.combo,
            "misses": result.misses,
            "live_pp": round(result.live_pp, 3),
            "local_pp": round(result.local_pp, 3),
            "pp_change": format_signed(entry.pp_delta),
            "local_rank": entry.local_rank,
            "live_rank": entry.live_rank,
            "position_change": format_signed(entry.position_delta, digits=0, zero="-"),
            "breakdown": {k: round(v, 3) for k, v in result.breakdown.items()},
        })

    return {
        "user_id": user_id,
        "username": username,
        "live_pp": (
            f"{report.total_live_pp:.1f} "
            f"(including {report.playcount_bonus_pp:.1f}pp from playcount)"
        ),
        "local_pp": f"{report.total_local_pp:.1f} ({format_signed(report.total_pp_delta, zero='-')})",
        "totals": {
            "total_local_pp": report.total_local_pp,
            "total_live_pp": report.total_live_pp,
            "non_bonus_live_pp": report.non_bonus_live_pp,
            "playcount_bonus_pp": report.playcount_bonus_pp,
        },
        "beatmaps": beatmaps,
    }


def write_report(path: str, document: dict) -> None:
    """JSON文書をファイルへ書き出す。親ディレクトリが無ければ作成する。"""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as file_obj:
        json.dump(document, file_obj, ensure_ascii=False, indent=2)
        file_obj.write("\n")
