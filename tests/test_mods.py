"""ModKey の正規化と相互変換のテスト。"""

from __future__ import annotations

import pytest

from ppcalc.mods import LegacyMods, Mod, ModKey, difficulty_adjustment_mods


@pytest.mark.light
def test_mod_key_is_order_independent():
    a = ModKey.from_applied_mods([Mod.HIDDEN, Mod.HARD_ROCK, Mod.DOUBLE_TIME])
    b = ModKey.from_applied_mods([Mod.DOUBLE_TIME, Mod.HIDDEN, Mod.HARD_ROCK])

    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b}) == 1


@pytest.mark.light
def test_nightcore_implies_double_time_and_round_trips_as_nightcore():
    key = ModKey.from_applied_mods([Mod.NIGHTCORE, Mod.HIDDEN])

    assert key.legacy & LegacyMods.DOUBLE_TIME
    assert key.legacy & LegacyMods.NIGHTCORE
    assert key.to_applied_mods() == (Mod.NIGHTCORE, Mod.HIDDEN)
    assert key == ModKey.from_applied_mods([Mod.NIGHTCORE, Mod.DOUBLE_TIME, Mod.HIDDEN])


@pytest.mark.light
def test_nightcore_key_differs_from_plain_double_time():
    assert ModKey.from_applied_mods([Mod.NIGHTCORE]) != ModKey.from_applied_mods([Mod.DOUBLE_TIME])


@pytest.mark.light
def test_exclusive_pairs_are_kept_as_given():
    key = ModKey.from_applied_mods([Mod.NO_FAIL, Mod.PERFECT])

    assert key.to_applied_mods() == (Mod.NO_FAIL, Mod.PERFECT)
    assert not key.legacy & LegacyMods.SUDDEN_DEATH


@pytest.mark.light
def test_from_legacy_flags():
    flags = int(LegacyMods.HIDDEN | LegacyMods.DOUBLE_TIME | LegacyMods.NIGHTCORE)
    key = ModKey.from_legacy(flags)

    assert key.value == flags
    assert key.acronyms == "NC, HD"
    assert ModKey.from_legacy(0).acronyms == "None"


@pytest.mark.light
def test_from_legacy_drops_unknown_bits():
    key = ModKey.from_legacy(int(LegacyMods.HIDDEN) | (1 << 29))
    assert key == ModKey.from_applied_mods([Mod.HIDDEN])


@pytest.mark.light
def test_difficulty_adjustment_mods_filters_score_only_mods():
    mods = (Mod.NO_FAIL, Mod.HIDDEN, Mod.SUDDEN_DEATH, Mod.NIGHTCORE, Mod.SPUN_OUT)
    assert difficulty_adjustment_mods(mods) == (Mod.HIDDEN, Mod.NIGHTCORE)


@pytest.mark.light
def test_from_acronym_is_case_insensitive():
    assert Mod.from_acronym("hd") is Mod.HIDDEN
    with pytest.raises(ValueError):
        Mod.from_acronym("XX")
