"""
SQLiteへの難易度属性キャッシュ処理を提供するモジュール。

(map_id, mods) を主キーとして難易度属性と計算時刻を保存し、
呼び出し側が与える鮮度境界(freshness boundary)より新しいエントリのみを有効とみなす。

処理方針:
- upsert は即座にDBへ書かず、メモリ上に保留する(保留中のエントリも lookup で参照できる)
- commit で保留分をまとめて書き込む。失敗した行があっても他の行は確定させる
- キャッシュは best-effort であり、書き込み失敗で計算済みのppを捨てない
- 同一ストアへの並行実行は想定しない(呼び出し側で直列化する)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from ppcalc.capabilities import BeatmapDocument, DifficultyCalculator
from ppcalc.codec import attributes_to_row, curve_column, row_to_attributes, scalar_column
from ppcalc.errors import CacheOpenError, CacheWriteError, ExternalCalculatorError, FormatError
from ppcalc.mods import ModKey
from ppcalc.models import CURVE_FIELDS, SCALAR_FIELDS, CacheEntry, DifficultyAttributes

logger = logging.getLogger(__name__)

TABLE_NAME = "difficulty_attributes"

SOURCE_CACHE = "cache"
SOURCE_COMPUTED = "computed"
SOURCE_UNCACHED = "uncached"


def utc_now() -> datetime:
    """
    現在時刻(UTC)を返す。

    Returns:
        タイムゾーン付きのUTC時刻。
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """タイムゾーンなしの時刻はUTCとみなし、UTCへ変換して返す。"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(text: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(str(text)))
    except ValueError as e:
        raise FormatError(f"malformed computed_at: {text!r}") from e


def _data_columns() -> Tuple[str, ...]:
    return tuple(scalar_column(n) for n in SCALAR_FIELDS) + tuple(curve_column(n) for n in CURVE_FIELDS)


def init_schema(con: sqlite3.Connection) -> None:
    """
    DBスキーマを初期化する。

    difficulty_attributes テーブルが存在しない場合に作成する。
    スカラー属性は1列ずつ、curveはテキスト1列ずつ持つ。

    Args:
        con: SQLite接続。
    """
    columns = []
    for name in SCALAR_FIELDS:
        sql_type = "INTEGER" if name == "max_combo" else "REAL"
        columns.append(f"{scalar_column(name)} {sql_type} NOT NULL")
    for name in CURVE_FIELDS:
        columns.append(f"{curve_column(name)} TEXT NOT NULL")

    cur = con.cursor()
    cur.execute(f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        map_id INTEGER NOT NULL,
        mods INTEGER NOT NULL,
        {", ".join(columns)},
        computed_at TEXT NOT NULL,
        PRIMARY KEY (map_id, mods)
    )
    """)
    con.commit()


class AttributeCache:
    """
    (map_id, ModKey) → (難易度属性, 計算時刻) の永続キャッシュ。

    スレッドセーフ。ワーカーから lookup/upsert を並行に呼んでよいが、
    commit はすべてのワーカーの終了後に1回だけ呼ぶこと。
    """

    def __init__(self, con: sqlite3.Connection):
        self._con = con
        self._lock = threading.RLock()
        self._pending: Dict[Tuple[int, int], Tuple[CacheEntry, dict]] = {}

    @classmethod
    def open(cls, path: str) -> "AttributeCache":
        """
        キャッシュストアを開く。存在しなければ作成する。

        Args:
            path: SQLiteファイルパス。":memory:" も可。

        Returns:
            AttributeCache。

        Raises:
            CacheOpenError: ストアを開けない、またはスキーマを作成できない場合。
        """
        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            con = sqlite3.connect(path, check_same_thread=False)
            con.row_factory = sqlite3.Row
            init_schema(con)
        except (sqlite3.Error, OSError) as e:
            raise CacheOpenError(f"cannot open attribute cache: {path} ({e})") from e
        return cls(con)

    def __enter__(self) -> "AttributeCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._pending.clear()
            self._con.close()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def lookup(self, map_id: int, mods: ModKey) -> Optional[CacheEntry]:
        """
        (map_id, mods) のエントリを返す。保留中のupsertを優先する。

        Returns:
            CacheEntry。存在しなければ None。

        Raises:
            FormatError: 保存内容を復元できない場合。
            sqlite3.Error: DB読み込みに失敗した場合。
        """
        with self._lock:
            pending = self._pending.get((map_id, mods.value))
            if pending is not None:
                return pending[0]

            cur = self._con.cursor()
            cur.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE map_id=? AND mods=?",
                (map_id, mods.value),
            )
            row = cur.fetchone()

        if row is None:
            return None

        return CacheEntry(
            map_id=int(row["map_id"]),
            mods=ModKey(int(row["mods"])),
            attributes=row_to_attributes(row),
            computed_at=_parse_timestamp(row["computed_at"]),
        )

    @staticmethod
    def is_fresh(entry: CacheEntry, freshness_boundary: Optional[datetime]) -> bool:
        """
        エントリが鮮度境界より後に計算されたかを返す。

        境界が None の場合は常に有効とみなす。
        """
        if freshness_boundary is None:
            return True
        return as_utc(entry.computed_at) > as_utc(freshness_boundary)

    def upsert(
        self,
        map_id: int,
        mods: ModKey,
        attributes: DifficultyAttributes,
        computed_at: datetime,
    ) -> None:
        """
        エントリの挿入または置き換えを保留する。commit まで永続化されない。

        Raises:
            FormatError: 属性を保存形式へ変換できない場合。
        """
        row = attributes_to_row(attributes)
        entry = CacheEntry(
            map_id=map_id,
            mods=mods,
            attributes=attributes,
            computed_at=as_utc(computed_at),
        )
        with self._lock:
            self._pending[(map_id, mods.value)] = (entry, row)

    def discard(self) -> int:
        """保留中のupsertを破棄し、破棄した件数を返す。"""
        with self._lock:
            n = len(self._pending)
            self._pending.clear()
            return n

    def commit(self) -> int:
        """
        保留中のupsertをDBへ書き込む。

        行単位で書き込み、失敗した行を除いて確定させる。保留分は成否に関わらず空にする。

        Returns:
            書き込みに成功した件数。

        Raises:
            CacheWriteError: 1件以上の書き込みに失敗した場合。
        """
        columns = ("map_id", "mods") + _data_columns() + ("computed_at",)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c}=excluded.{c}" for c in columns[2:])
        sql = (
            f"INSERT INTO {TABLE_NAME} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT(map_id, mods) DO UPDATE SET {updates}"
        )

        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
            if not pending:
                return 0

            failed = []
            written = 0
            cur = self._con.cursor()
            for key, (entry, row) in pending:
                values = (entry.map_id, entry.mods.value)
                values += tuple(row[c] for c in _data_columns())
                values += (entry.computed_at.isoformat(),)
                try:
                    cur.execute(sql, values)
                    written += 1
                except sqlite3.Error as e:
                    logger.warning(
                        "cache upsert failed: map_id=%s mods=%s error=%s",
                        entry.map_id, entry.mods, e,
                    )
                    failed.append(key)

            try:
                self._con.commit()
            except sqlite3.Error as e:
                self._con.rollback()
                raise CacheWriteError(
                    f"cache commit failed: {e}", failed_keys=[k for k, _ in pending]
                ) from e

        if failed:
            raise CacheWriteError(
                f"{len(failed)} of {len(pending)} cache entries could not be written",
                failed_keys=failed,
            )
        return written

    def count(self, map_id: int, mods: ModKey) -> int:
        """永続化済みの (map_id, mods) の件数を返す。主キー制約により0か1。"""
        with self._lock:
            cur = self._con.cursor()
            cur.execute(
                f"SELECT COUNT(*) AS cnt FROM {TABLE_NAME} WHERE map_id=? AND mods=?",
                (map_id, mods.value),
            )
            return int(cur.fetchone()["cnt"])


def compute_attributes(
    calculator: DifficultyCalculator,
    beatmap: BeatmapDocument,
    mods: ModKey,
) -> DifficultyAttributes:
    """
    難易度計算機を呼び出す。

    Raises:
        ExternalCalculatorError: 計算機が例外を送出した場合。
    """
    try:
        return calculator.calculate(beatmap, mods.to_applied_mods())
    except ExternalCalculatorError:
        raise
    except Exception as e:
        raise ExternalCalculatorError(
            f"difficulty calculation failed: map_id={beatmap.map_id} mods={mods} ({e})"
        ) from e


def resolve_attributes(
    cache: AttributeCache,
    beatmap: BeatmapDocument,
    mods: ModKey,
    calculator: DifficultyCalculator,
    freshness_boundary: Optional[datetime],
    clock: Callable[[], datetime] = utc_now,
) -> Tuple[DifficultyAttributes, str]:
    """
    キャッシュを参照し、必要な場合のみ難易度属性を再計算する。

    1. 安定した map_id が無い譜面は常に再計算し、キャッシュしない
    2. キャッシュに無ければ計算して upsert する
    3. 鮮度境界以前のエントリは再計算して置き換える
    4. 有効なエントリはそのまま返す(計算機を呼ばない)
    5. 2〜4でのキャッシュ障害(復元失敗・DBエラー)は警告を出し、キャッシュなしで計算する

    Returns:
        (難易度属性, 取得元)。取得元は "cache" / "computed" / "uncached"。

    Raises:
        ExternalCalculatorError: 難易度計算機が失敗した場合。
    """
    map_id = beatmap.map_id
    if map_id is None or map_id <= 0:
        return compute_attributes(calculator, beatmap, mods), SOURCE_UNCACHED

    try:
        entry = cache.lookup(map_id, mods)
        if entry is not None and cache.is_fresh(entry, freshness_boundary):
            return entry.attributes, SOURCE_CACHE
    except (FormatError, sqlite3.Error) as e:
        logger.warning("cache lookup failed: map_id=%s mods=%s error=%s", map_id, mods, e)
        return compute_attributes(calculator, beatmap, mods), SOURCE_UNCACHED

    attributes = compute_attributes(calculator, beatmap, mods)
    try:
        cache.upsert(map_id, mods, attributes, clock())
    except (FormatError, sqlite3.Error) as e:
        logger.warning("cache upsert failed: map_id=%s mods=%s error=%s", map_id, mods, e)
        return attributes, SOURCE_UNCACHED

    return attributes, SOURCE_COMPUTED
