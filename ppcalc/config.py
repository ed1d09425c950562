"""
設定ファイル(settings.yaml)の読み込み処理を提供するモジュール。

settings.yaml からpp計算に必要な各種設定を読み込み、
アプリ内で扱いやすい dataclass に変換する。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import yaml

from ppcalc.aggregator import PlaycountBonusMode
from ppcalc.cache import as_utc
from ppcalc.errors import ConfigError


@dataclass(frozen=True)
class PluginConfig:
    """
    外部計算機の読み込み設定。

    Attributes:
        difficulty: 難易度計算機のインポートパス(`module:attr` 形式)。
        performance: pp計算機のインポートパス(`module:attr` 形式)。
    """

    difficulty: str
    performance: str


@dataclass(frozen=True)
class Settings:
    """
    アプリケーション全体設定。

    settings.yaml の内容を保持する。

    Attributes:
        cache_db_path: 難易度属性キャッシュのSQLiteファイルパス。
        scores_db_path: osu_scores_high 形式のスコアDBのパス。
        beatmap_dir: .osu ファイルを置くディレクトリ。
        output_dir: 集計結果JSONの出力先ディレクトリ。
        freshness_boundary: この時刻より後に計算されたキャッシュのみ有効とする。
        workers: 並列ワーカー数。
        score_limit: 上位N件のみ計算する(0なら全件)。
        dedupe: 同じ譜面のスコアを1件にまとめるかどうか。
        playcount_bonus: プレイ回数ボーナスの算出方法。
        log_level: ログレベル名。
        plugins: 外部計算機の設定。
    """

    cache_db_path: str
    scores_db_path: str
    beatmap_dir: str
    output_dir: str
    freshness_boundary: Optional[datetime]
    workers: int
    score_limit: int
    dedupe: bool
    playcount_bonus: PlaycountBonusMode
    log_level: str
    plugins: PluginConfig


def parse_boundary(value) -> Optional[datetime]:
    """
    鮮度境界をdatetimeへ変換する。タイムゾーンなしの値はUTCとみなす。

    Raises:
        ConfigError: ISO 8601として解釈できない場合。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as e:
        raise ConfigError(f"freshness_boundary must be ISO 8601: {value!r}") from e


def settings_from_dict(data: dict) -> Settings:
    """
    設定辞書を Settings に変換する。

    Raises:
        ConfigError: 必須キー(plugins.difficulty/plugins.performance)の欠落や値が不正な場合。
    """
    data = data or {}
    plugins = data.get("plugins") or {}

    try:
        difficulty = str(plugins["difficulty"]).strip()
        performance = str(plugins["performance"]).strip()
        workers = int(data.get("workers", 1))
        score_limit = int(data.get("score_limit", 0))
        bonus = PlaycountBonusMode(str(data.get("playcount_bonus", "live_difference")))
    except KeyError as e:
        raise ConfigError(f"missing setting: plugins.{e.args[0]}") from e
    except TypeError as e:
        raise ConfigError(f"plugins must be a mapping: {plugins!r}") from e
    except ValueError as e:
        raise ConfigError(f"invalid setting: {e}") from e

    if workers < 1:
        raise ConfigError(f"workers must be >= 1: {workers}")

    return Settings(
        cache_db_path=str(data.get("cache_db_path", "cache/difficultycache.db")),
        scores_db_path=str(data.get("scores_db_path", "osu_scores_high.db")),
        beatmap_dir=str(data.get("beatmap_dir", "cache")),
        output_dir=str(data.get("output_dir", "players")),
        freshness_boundary=parse_boundary(data.get("freshness_boundary")),
        workers=workers,
        score_limit=score_limit,
        dedupe=bool(data.get("dedupe", False)),
        playcount_bonus=bonus,
        log_level=str(data.get("log_level", "INFO")).upper(),
        plugins=PluginConfig(difficulty=difficulty, performance=performance),
    )


def load_settings(path: str) -> Settings:
    """
    settings.yaml を読み込み Settings に変換する。

    Args:
        path: settings.yaml のファイルパス。

    Returns:
        Settingsオブジェクト。

    Raises:
        FileNotFoundError: 設定ファイルが存在しない場合。
        yaml.YAMLError: YAMLのパースに失敗した場合。
        ConfigError: 設定値が不正な場合。
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"settings must be a mapping: {path}")

    return settings_from_dict(data)
