"""
アプリケーション固有の例外定義モジュール。

スコア正規化、難易度属性キャッシュ、外部計算機呼び出しなどの処理で発生する例外を
分類して扱うために、基底例外および派生例外を定義する。

処理方針:
- スコア単位の例外はパイプライン境界で捕捉し「スキップ」または「0pp」に縮退する
- CacheOpenError / ConfigError のみ実行全体を中断する
"""


class PerformanceCalcError(Exception):
    """pp計算システム全体の基底例外。"""


class ConfigError(PerformanceCalcError):
    """設定ファイルの内容が不正な場合の例外。"""


class ValidationError(PerformanceCalcError):
    """入力スコアの統計値が矛盾している場合の例外。該当スコアはスキップする。"""


class FormatError(PerformanceCalcError):
    """キャッシュのペイロードが壊れている場合の例外。キャッシュミスとして扱う。"""


class CacheOpenError(PerformanceCalcError):
    """キャッシュストアを開けない場合の例外。致命的エラーとして扱う。"""


class CacheWriteError(PerformanceCalcError):
    """
    キャッシュのコミットに失敗した場合の例外。

    計算済みのpp自体は有効なので、呼び出し側はログに残して処理を継続する。

    Attributes:
        failed_keys: 書き込みに失敗した (map_id, mods) のタプル。
    """

    def __init__(self, message: str, failed_keys=()):
        super().__init__(message)
        self.failed_keys = tuple(failed_keys)


class ExternalCalculatorError(PerformanceCalcError):
    """難易度計算機・pp計算機の呼び出しに失敗した場合の例外。"""


class BeatmapUnavailableError(PerformanceCalcError):
    """譜面を取得できない場合の例外。該当スコアはスキップする。"""
