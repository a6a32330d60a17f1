"""
Purple OS — Record Database.

SQLite-backed record store behind the persistence gateway. Unlike the
per-entity query methods of a classic repository, every table is reached
through four generic operations (insert / update / delete / select) with
simple equality, substring and id-set filters, mirroring the hosted
row-store the dashboard was designed against.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from purple.ports.store_port import Filters

logger = logging.getLogger(__name__)


_SCHEMA: dict[str, str] = {
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL,
            title       TEXT NOT NULL,
            status      TEXT NOT NULL DEFAULT 'TODO',
            category    TEXT NOT NULL DEFAULT 'SYSTEM',
            frequency   TEXT NOT NULL DEFAULT 'DAILY',
            due_date    TEXT,
            created_at  TEXT NOT NULL
        )
    """,
    "schedule_blocks": """
        CREATE TABLE IF NOT EXISTS schedule_blocks (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL,
            title       TEXT NOT NULL,
            start_time  TEXT NOT NULL,
            type        TEXT NOT NULL DEFAULT 'WORK',
            date        TEXT NOT NULL,
            created_at  TEXT NOT NULL
        )
    """,
    "neural_logs": """
        CREATE TABLE IF NOT EXISTS neural_logs (
            id            TEXT PRIMARY KEY,
            user_id       TEXT NOT NULL,
            title         TEXT NOT NULL,
            content       TEXT NOT NULL DEFAULT '',
            mood          TEXT NOT NULL DEFAULT 'ZEN',
            is_encrypted  INTEGER NOT NULL DEFAULT 0,
            created_at    TEXT NOT NULL
        )
    """,
    "chat_history": """
        CREATE TABLE IF NOT EXISTS chat_history (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL,
            session_id  TEXT NOT NULL,
            role        TEXT NOT NULL,
            content     TEXT NOT NULL,
            attachment  TEXT,
            client_id   TEXT,
            created_at  TEXT NOT NULL
        )
    """,
    "training_logs": """
        CREATE TABLE IF NOT EXISTS training_logs (
            id            TEXT PRIMARY KEY,
            user_id       TEXT NOT NULL,
            session_name  TEXT NOT NULL,
            total_volume  REAL NOT NULL DEFAULT 0,
            exercises     TEXT NOT NULL DEFAULT '[]',
            date          TEXT NOT NULL,
            created_at    TEXT NOT NULL
        )
    """,
    "user_stats": """
        CREATE TABLE IF NOT EXISTS user_stats (
            id                 TEXT PRIMARY KEY,
            user_id            TEXT NOT NULL UNIQUE,
            xp                 INTEGER NOT NULL DEFAULT 0,
            level              INTEGER NOT NULL DEFAULT 1,
            streak             INTEGER NOT NULL DEFAULT 1,
            focus_time         INTEGER NOT NULL DEFAULT 0,
            last_visit         TEXT NOT NULL DEFAULT '',
            hydration_current  INTEGER NOT NULL DEFAULT 0,
            hydration_date     TEXT NOT NULL DEFAULT '',
            current_weight     REAL,
            weight_history     TEXT NOT NULL DEFAULT '[]',
            created_at         TEXT NOT NULL
        )
    """,
    "physique_logs": """
        CREATE TABLE IF NOT EXISTS physique_logs (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL,
            date        TEXT NOT NULL,
            image_url   TEXT NOT NULL,
            stats       TEXT NOT NULL DEFAULT '{}',
            created_at  TEXT NOT NULL
        )
    """,
}

# Columns holding JSON documents, (de)serialized transparently
_JSON_COLUMNS: dict[str, set[str]] = {
    "training_logs": {"exercises"},
    "user_stats": {"weight_history"},
    "physique_logs": {"stats"},
}

_BOOL_COLUMNS: dict[str, set[str]] = {
    "neural_logs": {"is_encrypted"},
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


class LifeDB:
    """SQLite-backed storage for every dashboard table."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from purple.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._columns: dict[str, set[str]] = {}
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        # LOWER() only folds ASCII; ilike needs full Unicode case folding
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            for ddl in _SCHEMA.values():
                conn.execute(ddl)

            # Migrate existing DBs: add new columns if missing
            task_cols = self._table_columns(conn, "tasks")
            if "frequency" not in task_cols:
                conn.execute(
                    "ALTER TABLE tasks ADD COLUMN frequency TEXT NOT NULL DEFAULT 'DAILY'"
                )
            # Legacy rows encoded the frequency inside the category ("WEEKLY::WORK")
            cursor = conn.execute(
                """
                UPDATE tasks
                   SET frequency = substr(category, 1, instr(category, '::') - 1),
                       category  = substr(category, instr(category, '::') + 2)
                 WHERE instr(category, '::') > 0
                """
            )
            if cursor.rowcount:
                logger.info("Migrated %d legacy FREQUENCY::CATEGORY task rows", cursor.rowcount)

            chat_cols = self._table_columns(conn, "chat_history")
            if "client_id" not in chat_cols:
                conn.execute("ALTER TABLE chat_history ADD COLUMN client_id TEXT")

            for table in _SCHEMA:
                self._columns[table] = self._table_columns(conn, table)
        logger.debug("Record tables initialized at %s", self._db_path)

    @staticmethod
    def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}

    # ------------------------------------------------------------------
    # Row (de)serialization
    # ------------------------------------------------------------------

    def _check(self, table: str, columns) -> None:
        known = self._columns.get(table)
        if known is None:
            raise ValueError(f"Unknown table: {table!r}")
        unknown = set(columns) - known
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {sorted(unknown)}")

    @staticmethod
    def _encode(table: str, record: dict) -> dict:
        json_cols = _JSON_COLUMNS.get(table, set())
        bool_cols = _BOOL_COLUMNS.get(table, set())
        encoded = {}
        for key, value in record.items():
            if key in json_cols and not isinstance(value, str):
                value = json.dumps(value)
            elif key in bool_cols:
                value = int(bool(value))
            encoded[key] = value
        return encoded

    @staticmethod
    def _decode(table: str, row: sqlite3.Row) -> dict:
        json_cols = _JSON_COLUMNS.get(table, set())
        bool_cols = _BOOL_COLUMNS.get(table, set())
        record = dict(row)
        for key in record:
            if key in json_cols and isinstance(record[key], str):
                record[key] = json.loads(record[key])
            elif key in bool_cols and record[key] is not None:
                record[key] = bool(record[key])
        return record

    def _where(self, table: str, filters: Filters | None) -> tuple[str, list]:
        if filters is None:
            return "", []
        self._check(table, [*filters.eq, *filters.ilike, *filters.in_])

        clauses: list[str] = []
        params: list = []
        for col, value in filters.eq.items():
            if value is None:
                clauses.append(f"{col} IS NULL")
            else:
                clauses.append(f"{col} = ?")
                params.append(value)
        for col, keyword in filters.ilike.items():
            clauses.append(f"casefold({col}) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(keyword.casefold())}%")
        for col, values in filters.in_.items():
            if not values:
                clauses.append("0")
                continue
            clauses.append(f"{col} IN ({', '.join('?' for _ in values)})")
            params.extend(values)

        if not clauses:
            return "", []
        return " WHERE " + " AND ".join(clauses), params

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    def insert(self, table: str, record: dict) -> dict:
        """Insert a row; assigns an opaque id and created_at when absent."""
        row = dict(record)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now_iso())
        self._check(table, row)

        encoded = self._encode(table, row)
        cols = ", ".join(encoded)
        marks = ", ".join("?" for _ in encoded)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO {table} ({cols}) VALUES ({marks})",
                list(encoded.values()),
            )
            stored = conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (row["id"],)
            ).fetchone()

        logger.info("Inserted %s #%s", table, row["id"])
        return self._decode(table, stored)

    def update(self, table: str, values: dict, filters: Filters) -> int:
        """Update matching rows, returning how many changed."""
        if not values:
            return 0
        self._check(table, values)
        encoded = self._encode(table, values)
        assignments = ", ".join(f"{col} = ?" for col in encoded)
        where, params = self._where(table, filters)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}{where}",
                [*encoded.values(), *params],
            )
        logger.info("Updated %d %s row(s)", cursor.rowcount, table)
        return cursor.rowcount

    def delete(self, table: str, filters: Filters) -> int:
        """Hard-delete matching rows, returning how many went away."""
        where, params = self._where(table, filters)
        if not where:
            raise ValueError(f"Refusing to delete from {table} without filters")

        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table}{where}", params)
        logger.info("Deleted %d %s row(s)", cursor.rowcount, table)
        return cursor.rowcount

    def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        columns: list[str] | None = None,
    ) -> list[dict]:
        """Return matching rows as dicts, optionally ordered and paginated."""
        self._check(table, columns or [])
        if columns:
            projection = ", ".join(columns)
        else:
            projection = "*"
        where, params = self._where(table, filters)

        query = f"SELECT {projection} FROM {table}{where}"
        if order_by:
            self._check(table, [order_by])
            direction = "DESC" if descending else "ASC"
            query += f" ORDER BY {order_by} {direction}, rowid {direction}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = [*params, limit, offset]
        elif offset:
            query += " LIMIT -1 OFFSET ?"
            params = [*params, offset]

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._decode(table, r) for r in rows]
