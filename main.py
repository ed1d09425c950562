import importlib
import logging
import os
import sys
import traceback

from ppcalc.aggregator import aggregate
from ppcalc.cache import AttributeCache
from ppcalc.capabilities import DirectoryBeatmapSource, OsuRuleset
from ppcalc.config import load_settings
from ppcalc.errors import BeatmapUnavailableError, ConfigError
from ppcalc.pipeline import PerformancePipeline
from ppcalc.report import build_report_document, write_report
from ppcalc.score_source import load_scores_from_db


def load_plugin(path: str):
    """
    `module:attr` 形式のインポートパスから外部計算機を読み込む。

    attr がクラスまたはファクトリ関数の場合は引数なしで呼び出したものを返す。

    Raises:
        ConfigError: 形式が不正、またはインポートに失敗した場合。
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"plugin path must be 'module:attr': {path!r}")
    try:
        obj = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load plugin {path!r}: {e}") from e

    if isinstance(obj, type) or not hasattr(obj, "calculate"):
        obj = obj()
    return obj


def main():
    """
    プロフィールのpp再計算と集計を行うメイン処理。
    以下の処理を順序実行する:
    1. settings.yaml と外部計算機を読み込む
    2. スコアDBから対象ユーザーのスコアを読み込む
    3. 難易度属性キャッシュを使ってスコアごとのppを計算する
    4. ローカルpp/ライブppを集計し、players/<user>.json に書き出す
    環境変数の要件:
    - PPCALC_USER_ID: 対象ユーザーID
    - PPCALC_SETTINGS: 設定ファイルパス(デフォルト: "settings.yaml")
    - PPCALC_LIVE_PP: 公開済み合計pp(オプション。未指定なら0として扱う)
    Raises:
        Exception: 処理中に任意のエラーが発生した場合。
    """
    try:
        settings = load_settings(os.environ.get("PPCALC_SETTINGS", "settings.yaml"))
        logging.basicConfig(
            level=getattr(logging, settings.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        user_id = os.environ["PPCALC_USER_ID"]
        reported_live_pp = float(os.environ.get("PPCALC_LIVE_PP", "0") or 0)

        difficulty = load_plugin(settings.plugins.difficulty)
        performance = load_plugin(settings.plugins.performance)

        # 1. スコア読み込み
        scores = load_scores_from_db(
            settings.scores_db_path,
            user_id=int(user_id),
            limit=settings.score_limit,
        )

        # 2. pp計算(キャッシュのコミットまで)
        beatmaps = DirectoryBeatmapSource(settings.beatmap_dir)
        with AttributeCache.open(settings.cache_db_path) as cache:
            pipeline = PerformancePipeline(
                cache=cache,
                beatmaps=beatmaps,
                difficulty=difficulty,
                performance=performance,
                ruleset=OsuRuleset(),
                freshness_boundary=settings.freshness_boundary,
            )
            run = pipeline.run(scores, workers=settings.workers)

        # 3. 集計
        report = aggregate(
            run.results,
            reported_live_pp,
            dedupe=settings.dedupe,
            bonus_mode=settings.playcount_bonus,
        )

        # 4. 出力
        titles = {}
        for result in run.results:
            if result.beatmap_id is not None and result.beatmap_id not in titles:
                try:
                    titles[result.beatmap_id] = beatmaps.resolve(result.beatmap_id).title
                except BeatmapUnavailableError as e:
                    logging.getLogger(__name__).debug("title unavailable: %s", e)
        document = build_report_document(report, user_id=user_id, titles=titles)
        write_report(os.path.join(settings.output_dir, f"{user_id}.json"), document)

        print(
            f"SUCCESS local={report.total_local_pp:.1f} live={report.total_live_pp:.1f} "
            f"scores={len(run.results)} skipped={len(run.skipped)} committed={run.committed}"
        )

    except Exception:
        err = traceback.format_exc()
        print(err, file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
