"""既定のルールセット・譜面ソース・プラグイン読み込みのテスト。"""

from __future__ import annotations

from pathlib import Path

import pytest

from main import load_plugin
from ppcalc.capabilities import DirectoryBeatmapSource, OsuRuleset, count_hit_objects
from ppcalc.errors import BeatmapUnavailableError, ConfigError, ValidationError
from ppcalc.mods import Mod

OSU_FILE = """osu file format v14

[Metadata]
Title:Blue Zenith
Artist:xi
Version:FOUR DIMENSIONS
BeatmapID:658127
"""


@pytest.mark.light
def test_osu_ruleset_accuracy():
    ruleset = OsuRuleset()
    acc = ruleset.accuracy({"great": 97, "ok": 2, "meh": 1, "miss": 0})

    assert acc == pytest.approx((6 * 97 + 2 * 2 + 1) / 600)
    with pytest.raises(ValidationError):
        ruleset.accuracy({"great": 0, "ok": 0, "meh": 0, "miss": 0})


@pytest.mark.light
def test_osu_ruleset_converts_legacy_mods():
    assert OsuRuleset().convert_legacy_mods(8 + 64 + 512) == (Mod.NIGHTCORE, Mod.HIDDEN)
    assert OsuRuleset().convert_legacy_mods(0) == ()


@pytest.mark.light
def test_directory_beatmap_source(tmp_path: Path):
    (tmp_path / "658127.osu").write_text(OSU_FILE, encoding="utf-8")
    (tmp_path / "1.osu").write_text("", encoding="utf-8")
    source = DirectoryBeatmapSource(str(tmp_path))

    doc = source.resolve(658127)

    assert doc.map_id == 658127
    assert doc.title == "xi - Blue Zenith [FOUR DIMENSIONS]"
    with pytest.raises(BeatmapUnavailableError):
        source.resolve(1)
    with pytest.raises(BeatmapUnavailableError):
        source.resolve(2)


@pytest.mark.light
def test_load_plugin_instantiates_classes():
    plugin = load_plugin("ppcalc.capabilities:OsuRuleset")
    assert isinstance(plugin, OsuRuleset)


@pytest.mark.light
@pytest.mark.parametrize("path", ["no_colon", "ppcalc.capabilities:Missing", "no_such_module_xyz:Thing"])
def test_load_plugin_rejects_bad_paths(path):
    with pytest.raises(ConfigError):
        load_plugin(path)


@pytest.mark.light
@pytest.mark.parametrize(
    "accuracy, total, misses, expected",
    [
        (1.0, 100, 0, {"great": 100, "ok": 0, "meh": 0, "miss": 0}),
        (0.95, 100, 1, {"great": 94, "ok": 1, "meh": 4, "miss": 1}),
        (0.5, 2, 1, {"great": 1, "ok": 0, "meh": 0, "miss": 1}),
    ],
)
def test_hit_statistics_for_accuracy(accuracy, total, misses, expected):
    ruleset = OsuRuleset()

    statistics = ruleset.hit_statistics_for(accuracy, total, misses)

    assert statistics == expected
    assert ruleset.accuracy(statistics) == pytest.approx(accuracy, abs=1 / (6 * total))


@pytest.mark.light
def test_hit_statistics_for_explicit_counts():
    statistics = OsuRuleset().hit_statistics_for(0.5, 100, misses=2, mehs=1, goods=7)

    assert statistics == {"great": 90, "ok": 7, "meh": 1, "miss": 2}


@pytest.mark.light
@pytest.mark.parametrize(
    "args",
    [
        (float("nan"), 100, 0),
        (-0.1, 100, 0),
        (1.0, 0, 0),
        (1.0, 10, 11),
        (1.0, 10, 1),
    ],
)
def test_hit_statistics_for_rejects_impossible_input(args):
    with pytest.raises(ValidationError):
        OsuRuleset().hit_statistics_for(*args)


@pytest.mark.light
def test_count_hit_objects():
    content = OSU_FILE + "\n[HitObjects]\n256,192,0,1,0\n\n// comment\n128,96,500,2,0,B|200:100,1,100\n\n[Events]\n0,0,bg.jpg\n"

    assert count_hit_objects(content) == 2
    assert count_hit_objects(OSU_FILE) == 0
