"""SQLite durable store with JSON columns, keyed by user id.

Every statement runs under a deadline: a timeout surfaces as
UpstreamTimeoutError and any SQLite failure as PersistenceError, so callers
can reject the mutation without committing in-memory state.
"""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable
from datetime import datetime, timedelta
from typing import Any, TypeVar

import aiosqlite

from aura.errors import NotInitializedError, PersistenceError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS interactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        content TEXT,
        metadata TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_interactions_user_ts ON interactions(user_id, timestamp DESC)",
    """
    CREATE TABLE IF NOT EXISTS preferences (
        user_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS devices (
        user_id TEXT NOT NULL,
        id TEXT NOT NULL,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS automations (
        user_id TEXT NOT NULL,
        id TEXT NOT NULL,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS automation_rules (
        user_id TEXT NOT NULL,
        id TEXT NOT NULL,
        position INTEGER NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (user_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS predictions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        confidence REAL NOT NULL,
        data TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_predictions_user_ts ON predictions(user_id, timestamp DESC)",
    """
    CREATE TABLE IF NOT EXISTS environmental_readings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        value TEXT,
        unit TEXT,
        source TEXT,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_readings_user_ts ON environmental_readings(user_id, timestamp DESC)",
    """
    CREATE TABLE IF NOT EXISTS schedule_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        start_at TEXT NOT NULL,
        end_at TEXT,
        location TEXT,
        completed BOOLEAN DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_patterns (
        user_id TEXT NOT NULL,
        pattern_type TEXT NOT NULL,
        frequency INTEGER NOT NULL DEFAULT 1,
        last_used TEXT NOT NULL,
        metadata TEXT,
        PRIMARY KEY (user_id, pattern_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        event_type TEXT NOT NULL,
        data TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp DESC)",
]


def _dumps(value: Any) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _loads(raw: str | None) -> Any:
    return json.loads(raw) if raw else None


class Store:
    """Async SQLite store for interactions, preferences, devices, rules and predictions."""

    def __init__(self, db_path: str, timeout: float = 5.0):
        """Initialize store.

        Args:
            db_path: Path to SQLite database file (":memory:" allowed)
            timeout: Per-operation deadline in seconds
        """
        self.db_path = db_path
        self.timeout = timeout
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        """Open the connection and ensure the schema exists."""
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        for statement in SCHEMA:
            await self._conn.execute(statement)
        await self._conn.commit()

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ── Plumbing ────────────────────────────────────────────────────────

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise NotInitializedError("Store not initialized. Call initialize() first.")
        return self._conn

    async def _run(self, op: str, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` under the store deadline, translating failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TimeoutError as e:
            logger.warning("Store operation %s timed out after %.1fs", op, self.timeout)
            raise UpstreamTimeoutError(f"store.{op} exceeded {self.timeout}s") from e
        except aiosqlite.Error as e:
            logger.error("Store operation %s failed: %s", op, e)
            raise PersistenceError(f"store.{op} failed: {e}") from e

    async def _write(self, op: str, statements: list[tuple[str, tuple | list]]):
        """Execute statements as one transaction; rolls back on any failure."""
        conn = self._require_conn()

        async def _tx():
            async with self._write_lock:
                try:
                    for sql, params in statements:
                        await conn.execute(sql, params)
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise

        await self._run(op, _tx())

    async def _fetchall(self, op: str, sql: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        conn = self._require_conn()

        async def _query():
            cursor = await conn.execute(sql, params)
            return await cursor.fetchall()

        return await self._run(op, _query())

    # ── Interactions ────────────────────────────────────────────────────

    async def add_interaction(self, user_id: str, interaction: dict[str, Any]):
        await self._write(
            "add_interaction",
            [
                (
                    "INSERT INTO interactions (user_id, type, content, metadata, timestamp) VALUES (?, ?, ?, ?, ?)",
                    (
                        user_id,
                        interaction["type"],
                        _dumps(interaction.get("content")),
                        _dumps(interaction.get("metadata") or {}),
                        interaction["timestamp"],
                    ),
                )
            ],
        )

    async def list_interactions(
        self, user_id: str, limit: int = 50, offset: int = 0, interaction_type: str | None = None
    ) -> list[dict[str, Any]]:
        """Interactions newest-first."""
        query = "SELECT * FROM interactions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if interaction_type:
            query += " AND type = ?"
            params.append(interaction_type)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        rows = await self._fetchall("list_interactions", query, params)
        return [
            {
                "type": row["type"],
                "content": _loads(row["content"]),
                "metadata": _loads(row["metadata"]) or {},
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    async def prune_interactions(self, retention_days: int = 90) -> int:
        cutoff = (datetime.now() - timedelta(days=retention_days)).isoformat()
        return await self._delete("prune_interactions", "DELETE FROM interactions WHERE timestamp < ?", (cutoff,))

    # ── Preferences ─────────────────────────────────────────────────────

    async def get_preferences(self, user_id: str) -> dict[str, Any]:
        rows = await self._fetchall("get_preferences", "SELECT data FROM preferences WHERE user_id = ?", (user_id,))
        if not rows:
            return {}
        return _loads(rows[0]["data"]) or {}

    async def set_preferences(self, user_id: str, preferences: dict[str, Any]):
        await self._write(
            "set_preferences",
            [
                (
                    """
                    INSERT INTO preferences (user_id, data, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, _dumps(preferences), datetime.now().isoformat()),
                )
            ],
        )

    # ── Devices & automations ───────────────────────────────────────────

    async def upsert_device(self, user_id: str, device: dict[str, Any]):
        await self._upsert_keyed("devices", "upsert_device", user_id, device)

    async def delete_device(self, user_id: str, device_id: str) -> int:
        return await self._delete(
            "delete_device", "DELETE FROM devices WHERE user_id = ? AND id = ?", (user_id, device_id)
        )

    async def list_devices(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_devices", "SELECT data FROM devices WHERE user_id = ? ORDER BY id", (user_id,)
        )
        return [_loads(row["data"]) for row in rows]

    async def upsert_automation(self, user_id: str, automation: dict[str, Any]):
        await self._upsert_keyed("automations", "upsert_automation", user_id, automation)

    async def delete_automation(self, user_id: str, automation_id: str) -> int:
        return await self._delete(
            "delete_automation", "DELETE FROM automations WHERE user_id = ? AND id = ?", (user_id, automation_id)
        )

    async def list_automations(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_automations", "SELECT data FROM automations WHERE user_id = ? ORDER BY id", (user_id,)
        )
        return [_loads(row["data"]) for row in rows]

    async def _upsert_keyed(self, table: str, op: str, user_id: str, record: dict[str, Any]):
        await self._write(
            op,
            [
                (
                    f"""
                    INSERT INTO {table} (user_id, id, data, updated_at) VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, id) DO UPDATE SET
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, record["id"], _dumps(record), datetime.now().isoformat()),
                )
            ],
        )

    # ── Automation rules ────────────────────────────────────────────────

    async def replace_rules(self, user_id: str, rules: list[dict[str, Any]]):
        """Persist the full ordered rule list atomically."""
        statements: list[tuple[str, tuple | list]] = [
            ("DELETE FROM automation_rules WHERE user_id = ?", (user_id,))
        ]
        for position, rule in enumerate(rules):
            statements.append(
                (
                    "INSERT INTO automation_rules (user_id, id, position, data) VALUES (?, ?, ?, ?)",
                    (user_id, rule["id"], position, _dumps(rule)),
                )
            )
        await self._write("replace_rules", statements)

    async def list_rules(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_rules", "SELECT data FROM automation_rules WHERE user_id = ? ORDER BY position", (user_id,)
        )
        return [_loads(row["data"]) for row in rows]

    # ── Predictions ─────────────────────────────────────────────────────

    async def insert_predictions(self, user_id: str, predictions: list[dict[str, Any]]):
        if not predictions:
            return
        await self._write(
            "insert_predictions",
            [
                (
                    """INSERT INTO predictions (id, user_id, type, confidence, data, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (p["id"], user_id, p["type"], p["confidence"], _dumps(p["data"]), p["timestamp"]),
                )
                for p in predictions
            ],
        )

    async def list_predictions(
        self, user_id: str, prediction_type: str | None = None, limit: int = 200, offset: int = 0
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM predictions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if prediction_type:
            query += " AND type = ?"
            params.append(prediction_type)
        query += " ORDER BY timestamp DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        rows = await self._fetchall("list_predictions", query, params)
        return [
            {
                "id": row["id"],
                "type": row["type"],
                "confidence": row["confidence"],
                "data": _loads(row["data"]) or {},
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    async def prune_predictions(self, retention_days: int = 30) -> int:
        """Delete predictions older than retention_days."""
        cutoff = (datetime.now() - timedelta(days=retention_days)).isoformat()
        return await self._delete("prune_predictions", "DELETE FROM predictions WHERE timestamp < ?", (cutoff,))

    # ── Environmental readings & schedule ───────────────────────────────

    async def add_reading(self, user_id: str, reading: dict[str, Any]):
        await self._write(
            "add_reading",
            [
                (
                    """INSERT INTO environmental_readings (user_id, kind, value, unit, source, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        user_id,
                        reading["kind"],
                        _dumps(reading.get("value")),
                        reading.get("unit"),
                        reading.get("source"),
                        reading["timestamp"],
                    ),
                )
            ],
        )

    async def list_readings(self, user_id: str, limit: int = 24, offset: int = 0) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_readings",
            """SELECT * FROM environmental_readings WHERE user_id = ?
               ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?""",
            (user_id, limit, offset),
        )
        return [
            {
                "kind": row["kind"],
                "value": _loads(row["value"]),
                "unit": row["unit"],
                "source": row["source"],
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    async def add_schedule_entry(self, user_id: str, entry: dict[str, Any]):
        await self._write(
            "add_schedule_entry",
            [
                (
                    """INSERT INTO schedule_entries (user_id, title, start_at, end_at, location, completed)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        user_id,
                        entry["title"],
                        entry["start"],
                        entry.get("end"),
                        entry.get("location"),
                        bool(entry.get("completed", False)),
                    ),
                )
            ],
        )

    async def replace_schedule_source(self, user_id: str, start: str, end: str, entries: list[dict[str, Any]]):
        """Swap every entry starting in [start, end) for ``entries`` (calendar refresh)."""
        statements: list[tuple[str, tuple | list]] = [
            (
                "DELETE FROM schedule_entries WHERE user_id = ? AND start_at >= ? AND start_at < ? AND completed = 0",
                (user_id, start, end),
            )
        ]
        for entry in entries:
            statements.append(
                (
                    """INSERT INTO schedule_entries (user_id, title, start_at, end_at, location, completed)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (user_id, entry["title"], entry["start"], entry.get("end"), entry.get("location"), False),
                )
            )
        await self._write("replace_schedule_source", statements)

    async def set_schedule_completed(self, user_id: str, title: str, completed: bool = True) -> int:
        conn = self._require_conn()

        async def _tx():
            async with self._write_lock:
                cursor = await conn.execute(
                    "UPDATE schedule_entries SET completed = ? WHERE user_id = ? AND title = ?",
                    (completed, user_id, title),
                )
                await conn.commit()
                return cursor.rowcount

        return await self._run("set_schedule_completed", _tx())

    async def list_schedule_entries(self, user_id: str, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_schedule_entries",
            "SELECT * FROM schedule_entries WHERE user_id = ? ORDER BY start_at ASC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        return [
            {
                "title": row["title"],
                "start": row["start_at"],
                "end": row["end_at"],
                "location": row["location"],
                "completed": bool(row["completed"]),
            }
            for row in rows
        ]

    # ── Usage patterns ──────────────────────────────────────────────────

    async def record_usage(self, user_id: str, pattern_type: str, metadata: dict[str, Any] | None = None):
        """Increment the frequency counter for ``pattern_type``, merging metadata."""
        conn = self._require_conn()

        async def _tx():
            async with self._write_lock:
                try:
                    cursor = await conn.execute(
                        "SELECT metadata FROM usage_patterns WHERE user_id = ? AND pattern_type = ?",
                        (user_id, pattern_type),
                    )
                    row = await cursor.fetchone()
                    now = datetime.now().isoformat()
                    if row:
                        merged = {**(_loads(row["metadata"]) or {}), **(metadata or {})}
                        await conn.execute(
                            """UPDATE usage_patterns SET frequency = frequency + 1, last_used = ?, metadata = ?
                               WHERE user_id = ? AND pattern_type = ?""",
                            (now, _dumps(merged), user_id, pattern_type),
                        )
                    else:
                        await conn.execute(
                            """INSERT INTO usage_patterns (user_id, pattern_type, frequency, last_used, metadata)
                               VALUES (?, ?, 1, ?, ?)""",
                            (user_id, pattern_type, now, _dumps(metadata or {})),
                        )
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise

        await self._run("record_usage", _tx())

    async def list_usage(self, user_id: str, limit: int = 5) -> list[dict[str, Any]]:
        rows = await self._fetchall(
            "list_usage",
            """SELECT * FROM usage_patterns WHERE user_id = ?
               ORDER BY frequency DESC, last_used DESC LIMIT ?""",
            (user_id, limit),
        )
        return [
            {
                "pattern_type": row["pattern_type"],
                "frequency": row["frequency"],
                "last_used": row["last_used"],
                "metadata": _loads(row["metadata"]) or {},
            }
            for row in rows
        ]

    # ── Audit events ────────────────────────────────────────────────────

    async def log_event(self, event_type: str, data: dict[str, Any] | None = None):
        await self._write(
            "log_event",
            [
                (
                    "INSERT INTO events (timestamp, event_type, data) VALUES (?, ?, ?)",
                    (datetime.now().isoformat(), event_type, _dumps(data)),
                )
            ],
        )

    async def get_events(self, event_type: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        query = "SELECT * FROM events WHERE 1=1"
        params: list[Any] = []
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        rows = await self._fetchall("get_events", query, params)
        return [
            {
                "id": row["id"],
                "timestamp": row["timestamp"],
                "event_type": row["event_type"],
                "data": _loads(row["data"]),
            }
            for row in rows
        ]

    async def prune_events(self, retention_days: int = 7) -> int:
        cutoff = (datetime.now() - timedelta(days=retention_days)).isoformat()
        return await self._delete("prune_events", "DELETE FROM events WHERE timestamp < ?", (cutoff,))

    async def _delete(self, op: str, sql: str, params: tuple) -> int:
        conn = self._require_conn()

        async def _tx():
            async with self._write_lock:
                cursor = await conn.execute(sql, params)
                await conn.commit()
                return cursor.rowcount

        return await self._run(op, _tx())
