"""
database.py — SQLite schema init, migration, and the entity store.

Single-file database with WAL mode. Six record kinds: races, runners,
checkpoints, checkpoint_runners, base_station_runners, settings.
Every record has an auto-generated integer id except settings (keyed by name).

Store wraps one connection and gives typed CRUD over those tables plus two
primitives the rest of racecore builds on:
    transaction()  unit of work, all-or-nothing across tables
    upsert()       look up by composite key, insert defaults+patch on miss
"""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from racecore.errors import storage_operation

DB_DIR = Path(os.environ.get("RACETRACKER_DATA_DIR",
                             Path(__file__).parent.parent / "data"))
DB_NAME = "racetracker.db"


def get_db_path() -> Path:
    DB_DIR.mkdir(parents=True, exist_ok=True)
    return DB_DIR / DB_NAME


def get_connection(db_path: Optional[Path | str] = None) -> sqlite3.Connection:
    """Return a new connection with WAL mode and foreign keys enabled.

    Pass ":memory:" for a throwaway in-memory database.
    """
    if db_path is None:
        db_path = get_db_path()
    conn = sqlite3.connect(str(db_path), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS races (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    date            TEXT NOT NULL,
    start_time      TEXT NOT NULL,
    min_runner      INTEGER NOT NULL,
    max_runner      INTEGER NOT NULL,
    runner_ranges   TEXT,
    checkpoints     TEXT,
    metadata        TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS runners (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    race_id         INTEGER NOT NULL,
    number          INTEGER NOT NULL,
    status          TEXT NOT NULL DEFAULT 'not-started',
    recorded_time   TEXT,
    notes           TEXT,
    UNIQUE(race_id, number)
);

CREATE TABLE IF NOT EXISTS checkpoints (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    race_id     INTEGER NOT NULL,
    number      INTEGER NOT NULL,
    name        TEXT NOT NULL,
    UNIQUE(race_id, number)
);

CREATE TABLE IF NOT EXISTS checkpoint_runners (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    race_id             INTEGER NOT NULL,
    checkpoint_number   INTEGER NOT NULL,
    number              INTEGER NOT NULL,
    status              TEXT NOT NULL DEFAULT 'not-started',
    call_in_time        TEXT,
    mark_off_time       TEXT,
    notes               TEXT,
    UNIQUE(race_id, checkpoint_number, number)
);

CREATE TABLE IF NOT EXISTS base_station_runners (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    race_id             INTEGER NOT NULL,
    checkpoint_number   INTEGER NOT NULL,
    number              INTEGER NOT NULL,
    status              TEXT NOT NULL DEFAULT 'not-started',
    common_time         TEXT,
    notes               TEXT,
    UNIQUE(race_id, checkpoint_number, number)
);

CREATE INDEX IF NOT EXISTS idx_races_name_date ON races(name, date);
CREATE INDEX IF NOT EXISTS idx_races_created ON races(created_at);
CREATE INDEX IF NOT EXISTS idx_runners_race ON runners(race_id);
CREATE INDEX IF NOT EXISTS idx_checkpoints_race ON checkpoints(race_id);
CREATE INDEX IF NOT EXISTS idx_cp_runners_race ON checkpoint_runners(race_id, checkpoint_number);
CREATE INDEX IF NOT EXISTS idx_bs_runners_race ON base_station_runners(race_id, checkpoint_number);

CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

# Table → columns (excluding id). Used to reject unknown names before SQL is built.
TABLES: dict[str, tuple[str, ...]] = {
    "races": ("name", "date", "start_time", "min_runner", "max_runner",
              "runner_ranges", "checkpoints", "metadata", "created_at"),
    "runners": ("race_id", "number", "status", "recorded_time", "notes"),
    "checkpoints": ("race_id", "number", "name"),
    "checkpoint_runners": ("race_id", "checkpoint_number", "number", "status",
                           "call_in_time", "mark_off_time", "notes"),
    "base_station_runners": ("race_id", "checkpoint_number", "number", "status",
                             "common_time", "notes"),
    "settings": ("key", "value"),
}

# Tables a race owns; deleting a race removes its rows from each of these.
RACE_TABLES = ("runners", "checkpoints", "checkpoint_runners", "base_station_runners")

JSON_COLUMNS: dict[str, frozenset[str]] = {
    "races": frozenset({"runner_ranges", "checkpoints", "metadata"}),
    "settings": frozenset({"value"}),
}

PRIMARY_KEYS = {"settings": "key"}


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they don't exist."""
    conn.executescript(SCHEMA_SQL)


def migrate_db(conn: sqlite3.Connection) -> None:
    """Add columns introduced after the first schema (idempotent for upgrades)."""
    def _has_column(table: str, column: str) -> bool:
        cols = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return any(c["name"] == column for c in cols)

    # races: multi-range runner numbering and free-form metadata
    if not _has_column("races", "runner_ranges"):
        conn.execute("ALTER TABLE races ADD COLUMN runner_ranges TEXT")
    if not _has_column("races", "metadata"):
        conn.execute("ALTER TABLE races ADD COLUMN metadata TEXT")

    # base station: batch common time
    if not _has_column("base_station_runners", "common_time"):
        conn.execute("ALTER TABLE base_station_runners ADD COLUMN common_time TEXT")

    conn.commit()


# ======================================================================
# ENTITY STORE
# ======================================================================

class Store:
    """CRUD over the racecore tables on one injected connection.

    No validation happens here beyond table/column names; callers own the
    semantics of what they write. Each write commits immediately unless it
    runs inside transaction().
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._tx_depth = 0

    def close(self) -> None:
        self.conn.close()

    # ── helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _check(table: str, columns: Iterable[str] = ()) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        allowed = TABLES[table]
        for col in columns:
            if col != "id" and col not in allowed:
                raise ValueError(f"Unknown column {table}.{col}")

    @staticmethod
    def _encode(table: str, record: dict) -> dict:
        json_cols = JSON_COLUMNS.get(table, frozenset())
        return {
            k: (json.dumps(v) if k in json_cols and v is not None else v)
            for k, v in record.items()
        }

    @staticmethod
    def _decode(table: str, row: Optional[sqlite3.Row]) -> Optional[dict]:
        if row is None:
            return None
        record = dict(row)
        for col in JSON_COLUMNS.get(table, ()):
            if record.get(col) is not None:
                record[col] = json.loads(record[col])
        return record

    @staticmethod
    def _where(criteria: dict) -> tuple[str, list]:
        if not criteria:
            return "", []
        clauses = []
        vals = []
        for k, v in criteria.items():
            if v is None:
                clauses.append(f"{k} IS NULL")
            else:
                clauses.append(f"{k}=?")
                vals.append(v)
        return " WHERE " + " AND ".join(clauses), vals

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self.conn.commit()

    # ── unit of work ──────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """All writes inside the block commit together or not at all.

        Nested blocks join the outermost one.
        """
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self.conn.commit()

    # ── create ────────────────────────────────────────────────────────

    def add(self, table: str, record: dict) -> Any:
        """Insert one record and return its id (or key, for settings)."""
        self._check(table, record.keys())
        data = self._encode(table, record)
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        cur = self.conn.execute(
            f"INSERT INTO {table} ({cols}) VALUES ({marks})", list(data.values())
        )
        self._commit()
        return record[PRIMARY_KEYS[table]] if table in PRIMARY_KEYS else cur.lastrowid

    def bulk_add(self, table: str, records: list[dict]) -> list[Any]:
        """Insert many records in one transaction. Returns the new ids."""
        ids = []
        with self.transaction():
            for record in records:
                ids.append(self.add(table, record))
        return ids

    def put(self, table: str, record: dict) -> None:
        """Insert or replace by primary key (settings)."""
        self._check(table, record.keys())
        data = self._encode(table, record)
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        self.conn.execute(
            f"INSERT OR REPLACE INTO {table} ({cols}) VALUES ({marks})",
            list(data.values())
        )
        self._commit()

    # ── read ──────────────────────────────────────────────────────────

    def get(self, table: str, record_id: Any) -> Optional[dict]:
        self._check(table)
        pk = PRIMARY_KEYS.get(table, "id")
        row = self.conn.execute(
            f"SELECT * FROM {table} WHERE {pk}=?", (record_id,)
        ).fetchone()
        return self._decode(table, row)

    def find(self, table: str, order_by: str | tuple[str, ...] | None = None,
             descending: bool = False, limit: Optional[int] = None,
             **criteria) -> list[dict]:
        """Return all records matching every criterion (equality on columns)."""
        order_cols = (order_by,) if isinstance(order_by, str) else tuple(order_by or ())
        self._check(table, list(criteria) + list(order_cols))
        where, vals = self._where(criteria)
        sql = f"SELECT * FROM {table}{where}"
        if order_cols:
            direction = " DESC" if descending else ""
            sql += " ORDER BY " + ", ".join(f"{c}{direction}" for c in order_cols)
        if limit is not None:
            sql += " LIMIT ?"
            vals.append(limit)
        return [self._decode(table, r) for r in self.conn.execute(sql, vals).fetchall()]

    def first(self, table: str, **criteria) -> Optional[dict]:
        rows = self.find(table, order_by="id", limit=1, **criteria)
        return rows[0] if rows else None

    def find_before(self, table: str, column: str, value: Any) -> list[dict]:
        """Records whose `column` sorts strictly below `value`."""
        self._check(table, (column,))
        rows = self.conn.execute(
            f"SELECT * FROM {table} WHERE {column} < ? ORDER BY id", (value,)
        ).fetchall()
        return [self._decode(table, r) for r in rows]

    def count(self, table: str, **criteria) -> int:
        self._check(table, criteria.keys())
        where, vals = self._where(criteria)
        return self.conn.execute(f"SELECT COUNT(*) FROM {table}{where}", vals).fetchone()[0]

    # ── update ────────────────────────────────────────────────────────

    def update(self, table: str, record_id: Any, patch: dict) -> int:
        """Apply a partial patch to one record. Returns rows affected."""
        if not patch:
            return 0
        self._check(table, patch.keys())
        data = self._encode(table, patch)
        pk = PRIMARY_KEYS.get(table, "id")
        sets = ", ".join(f"{k}=?" for k in data)
        vals = list(data.values()) + [record_id]
        cur = self.conn.execute(f"UPDATE {table} SET {sets} WHERE {pk}=?", vals)
        self._commit()
        return cur.rowcount

    def upsert(self, table: str, key: dict, defaults: dict, patch: dict) -> dict:
        """Patch the record matching `key`, or insert key+defaults+patch if none.

        Returns the resulting record.
        """
        existing = self.first(table, **key)
        if existing is None:
            record = {**defaults, **patch, **key}
            record_id = self.add(table, record)
            return {"id": record_id, **record}
        self.update(table, existing["id"], patch)
        return {**existing, **patch}

    # ── delete ────────────────────────────────────────────────────────

    def delete(self, table: str, record_id: Any) -> None:
        self._check(table)
        pk = PRIMARY_KEYS.get(table, "id")
        self.conn.execute(f"DELETE FROM {table} WHERE {pk}=?", (record_id,))
        self._commit()

    def delete_where(self, table: str, **criteria) -> int:
        if not criteria:
            raise ValueError("delete_where needs at least one criterion; use clear()")
        self._check(table, criteria.keys())
        where, vals = self._where(criteria)
        cur = self.conn.execute(f"DELETE FROM {table}{where}", vals)
        self._commit()
        return cur.rowcount

    def clear(self, table: str) -> None:
        self._check(table)
        self.conn.execute(f"DELETE FROM {table}")
        self._commit()


# ======================================================================
# SETTINGS (key-value store)
# ======================================================================

@storage_operation("Failed to load setting")
def get_setting(store: Store, key: str, default: Any = None) -> Any:
    """Read a setting value; `default` when the key was never saved."""
    row = store.get("settings", key)
    return row["value"] if row else default


@storage_operation("Failed to save setting")
def set_setting(store: Store, key: str, value: Any) -> None:
    """Write a setting value (any JSON-serialisable value)."""
    store.put("settings", {"key": key, "value": value})


@storage_operation("Failed to load settings")
def get_all_settings(store: Store) -> dict:
    return {row["key"]: row["value"] for row in store.find("settings")}
