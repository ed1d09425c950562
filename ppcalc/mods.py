"""
Mod（ゲーム修飾子）の表現を提供するモジュール。

旧形式スコアのビットフラグ(LegacyMods)、個々のMod、
およびキャッシュキーとして使う順序非依存のビット集合(ModKey)を定義する。

正規化方針:
- NC(Nightcore)はDT(DoubleTime)の派生としてNCを正とし、DTビットも同時に立てる
- NFとPF/SDのような排他的な組み合わせは与えられたまま保持し、暗黙の補正はしない
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Tuple


class LegacyMods(enum.IntFlag):
    """osu!旧形式スコアで使われるModのビットフラグ。"""

    NONE = 0
    NO_FAIL = 1
    EASY = 2
    TOUCH_DEVICE = 4
    HIDDEN = 8
    HARD_ROCK = 16
    SUDDEN_DEATH = 32
    DOUBLE_TIME = 64
    RELAX = 128
    HALF_TIME = 256
    NIGHTCORE = 512
    FLASHLIGHT = 1024
    AUTOPLAY = 2048
    SPUN_OUT = 4096
    AUTOPILOT = 8192
    PERFECT = 16384
    TARGET = 8388608


class Mod(enum.Enum):
    """
    個々のMod。値はacronym。

    宣言順がModKey.to_applied_mods()の出力順になる。
    """

    NIGHTCORE = "NC"
    DOUBLE_TIME = "DT"
    AUTOPILOT = "AP"
    AUTOPLAY = "AT"
    EASY = "EZ"
    FLASHLIGHT = "FL"
    HALF_TIME = "HT"
    HARD_ROCK = "HR"
    HIDDEN = "HD"
    NO_FAIL = "NF"
    PERFECT = "PF"
    RELAX = "RX"
    SPUN_OUT = "SO"
    SUDDEN_DEATH = "SD"
    TARGET = "TP"
    TOUCH_DEVICE = "TD"

    @property
    def acronym(self) -> str:
        return self.value

    @property
    def legacy(self) -> LegacyMods:
        return LegacyMods[self.name]

    @classmethod
    def from_acronym(cls, acronym: str) -> "Mod":
        """acronym(大文字小文字不問)からModを返す。未知の場合はValueError。"""
        return cls(acronym.strip().upper())


# 難易度属性に影響するMod。それ以外(NF/SD/PF等)は同じキャッシュエントリを共有する。
DIFFICULTY_ADJUSTMENT_MODS = frozenset({
    Mod.TOUCH_DEVICE,
    Mod.DOUBLE_TIME,
    Mod.NIGHTCORE,
    Mod.HALF_TIME,
    Mod.EASY,
    Mod.HARD_ROCK,
    Mod.HIDDEN,
    Mod.FLASHLIGHT,
})


@dataclass(frozen=True)
class ModKey:
    """
    適用Modの組み合わせを表す順序非依存のビット集合。

    等価性・ハッシュは value(ビット値)のみに依存する。

    Attributes:
        value: LegacyModsと同じビット配置の整数値。
    """

    value: int = 0

    @classmethod
    def from_applied_mods(cls, mods: Iterable[Mod]) -> "ModKey":
        """
        Modのリストから正規化済みModKeyを生成する。

        NCが含まれる場合はDTビットも立てる。

        Args:
            mods: 適用Modのリスト(順序は問わない)。

        Returns:
            ModKey。
        """
        flags = LegacyMods.NONE
        for mod in mods:
            flags |= mod.legacy

        if flags & LegacyMods.NIGHTCORE:
            flags |= LegacyMods.DOUBLE_TIME

        return cls(int(flags))

    @classmethod
    def from_legacy(cls, flags: int) -> "ModKey":
        """旧形式のビットフラグからModKeyを生成する。未知のビットは捨てる。"""
        return cls.from_applied_mods(_iter_mods(LegacyMods(int(flags) & _KNOWN_BITS)))

    @property
    def legacy(self) -> LegacyMods:
        return LegacyMods(self.value)

    def to_applied_mods(self) -> Tuple[Mod, ...]:
        """
        計算機へ渡せるModのタプルに戻す。

        NCとDTが両方立っている場合はNCのみを返す。

        Returns:
            宣言順に並んだModのタプル。
        """
        return tuple(_iter_mods(self.legacy))

    @property
    def acronyms(self) -> str:
        """表示用の文字列。Modなしの場合は "None"。"""
        mods = self.to_applied_mods()
        if not mods:
            return "None"
        return ", ".join(m.acronym for m in mods)

    def __str__(self) -> str:
        return self.acronyms


_KNOWN_BITS = int(sum(m.legacy for m in Mod))


def _iter_mods(flags: LegacyMods):
    for mod in Mod:
        if not flags & mod.legacy:
            continue
        if mod is Mod.DOUBLE_TIME and flags & LegacyMods.NIGHTCORE:
            continue
        yield mod


def difficulty_adjustment_mods(mods: Iterable[Mod]) -> Tuple[Mod, ...]:
    """
    難易度計算に影響するModだけを残す。

    Args:
        mods: 適用Modのリスト。

    Returns:
        難易度に影響するModのタプル(入力順を維持)。
    """
    return tuple(m for m in mods if m in DIFFICULTY_ADJUSTMENT_MODS)
