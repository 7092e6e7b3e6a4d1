"""Tests for aura.hub.store: SQLite persistence keyed by user id."""

import asyncio
import os
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from aura.errors import NotInitializedError, PersistenceError, UpstreamTimeoutError
from aura.hub.store import Store


@pytest_asyncio.fixture
async def store(tmp_path):
    """Create a Store with a temp database, initialize, and clean up."""
    s = Store(str(tmp_path / "test_aura.db"))
    await s.initialize()
    yield s
    await s.close()


# ── Initialization ──────────────────────────────────────────────────────


class TestInitialization:
    async def test_creates_db_file(self, tmp_path):
        """initialize() creates the SQLite file and parent directory."""
        db_path = str(tmp_path / "nested" / "aura.db")
        s = Store(db_path)
        await s.initialize()
        assert os.path.exists(db_path)
        await s.close()

    async def test_wal_mode_enabled(self, store):
        cursor = await store._conn.execute("PRAGMA journal_mode")
        row = await cursor.fetchone()
        assert row[0] == "wal"

    async def test_use_before_initialize_raises(self, tmp_path):
        """Queries on an unopened store raise NotInitializedError."""
        s = Store(str(tmp_path / "never.db"))
        with pytest.raises(NotInitializedError):
            await s.list_devices("u1")

    async def test_close_is_idempotent(self, store):
        await store.close()
        await store.close()
        assert not store.is_open


# ── Interactions ────────────────────────────────────────────────────────


class TestInteractions:
    async def test_newest_first_with_json_content(self, store):
        """Content and metadata round-trip as JSON, newest first."""
        base = datetime(2026, 1, 5, 8, 0)
        for i in range(3):
            await store.add_interaction(
                "u1",
                {
                    "type": "command_execution",
                    "content": {"command": f"cmd-{i}"},
                    "metadata": {"i": i},
                    "timestamp": (base + timedelta(minutes=i)).isoformat(),
                },
            )
        rows = await store.list_interactions("u1")
        assert [r["content"]["command"] for r in rows] == ["cmd-2", "cmd-1", "cmd-0"]
        assert rows[0]["metadata"] == {"i": 2}

    async def test_users_isolated(self, store):
        await store.add_interaction("u1", {"type": "chat_message", "content": "hi", "timestamp": "2026-01-05T08:00:00"})
        assert await store.list_interactions("u2") == []

    async def test_filter_by_type_and_limit(self, store):
        for i, kind in enumerate(["chat_message", "voice_command", "chat_message"]):
            await store.add_interaction(
                "u1", {"type": kind, "content": str(i), "timestamp": f"2026-01-05T08:0{i}:00"}
            )
        chats = await store.list_interactions("u1", interaction_type="chat_message")
        assert [r["content"] for r in chats] == ["2", "0"]
        assert len(await store.list_interactions("u1", limit=1)) == 1

    async def test_prune_interactions(self, store):
        old = (datetime.now() - timedelta(days=200)).isoformat()
        await store.add_interaction("u1", {"type": "chat_message", "content": "old", "timestamp": old})
        await store.add_interaction(
            "u1", {"type": "chat_message", "content": "new", "timestamp": datetime.now().isoformat()}
        )
        assert await store.prune_interactions(retention_days=90) == 1
        assert [r["content"] for r in await store.list_interactions("u1")] == ["new"]


# ── Preferences ─────────────────────────────────────────────────────────


class TestPreferences:
    async def test_missing_user_returns_empty(self, store):
        assert await store.get_preferences("nobody") == {}

    async def test_set_overwrites(self, store):
        await store.set_preferences("u1", {"theme": "dark"})
        await store.set_preferences("u1", {"theme": "light", "volume": 3})
        assert await store.get_preferences("u1") == {"theme": "light", "volume": 3}


# ── Devices, automations, rules ─────────────────────────────────────────


class TestKeyedRecords:
    async def test_device_upsert_and_delete(self, store):
        await store.upsert_device("u1", {"id": "light-1", "state": {"on": False}})
        await store.upsert_device("u1", {"id": "light-1", "state": {"on": True}})
        assert await store.list_devices("u1") == [{"id": "light-1", "state": {"on": True}}]
        assert await store.delete_device("u1", "light-1") == 1
        assert await store.delete_device("u1", "light-1") == 0

    async def test_automation_upsert(self, store):
        await store.upsert_automation("u1", {"id": "b", "name": "B"})
        await store.upsert_automation("u1", {"id": "a", "name": "A"})
        assert [a["id"] for a in await store.list_automations("u1")] == ["a", "b"]
        assert await store.delete_automation("u1", "a") == 1

    async def test_rules_keep_order(self, store):
        """replace_rules stores the list atomically in the given order."""
        await store.replace_rules("u1", [{"id": "z"}, {"id": "a"}, {"id": "m"}])
        assert [r["id"] for r in await store.list_rules("u1")] == ["z", "a", "m"]
        await store.replace_rules("u1", [{"id": "a"}])
        assert await store.list_rules("u1") == [{"id": "a"}]


# ── Predictions ─────────────────────────────────────────────────────────


class TestPredictions:
    def _prediction(self, pid, ptype, ts):
        return {"id": pid, "type": ptype, "confidence": 0.8, "data": {"x": 1}, "timestamp": ts}

    async def test_insert_and_filter(self, store):
        await store.insert_predictions(
            "u1",
            [
                self._prediction("p1", "behavior", "2026-01-05T08:00:00"),
                self._prediction("p2", "schedule", "2026-01-05T09:00:00"),
            ],
        )
        assert [p["id"] for p in await store.list_predictions("u1")] == ["p2", "p1"]
        behavior = await store.list_predictions("u1", prediction_type="behavior")
        assert behavior[0]["data"] == {"x": 1}

    async def test_insert_empty_is_noop(self, store):
        await store.insert_predictions("u1", [])
        assert await store.list_predictions("u1") == []

    async def test_prune(self, store):
        old = (datetime.now() - timedelta(days=40)).isoformat()
        await store.insert_predictions("u1", [self._prediction("old", "behavior", old)])
        assert await store.prune_predictions(retention_days=30) == 1


# ── Readings and schedule ───────────────────────────────────────────────


class TestReadingsAndSchedule:
    async def test_readings_newest_first(self, store):
        for hour, value in [(8, 20.5), (9, 21.0)]:
            await store.add_reading(
                "u1", {"kind": "temperature", "value": value, "unit": "C", "timestamp": f"2026-01-05T0{hour}:00:00"}
            )
        rows = await store.list_readings("u1")
        assert [r["value"] for r in rows] == [21.0, 20.5]

    async def test_schedule_ordered_by_start(self, store):
        await store.add_schedule_entry("u1", {"title": "Late", "start": "2026-01-05T15:00:00"})
        await store.add_schedule_entry("u1", {"title": "Early", "start": "2026-01-05T09:00:00"})
        assert [e["title"] for e in await store.list_schedule_entries("u1")] == ["Early", "Late"]

    async def test_complete_entry(self, store):
        await store.add_schedule_entry("u1", {"title": "Buy milk", "start": "2026-01-05T00:00:00"})
        assert await store.set_schedule_completed("u1", "Buy milk") == 1
        assert await store.set_schedule_completed("u1", "Unknown") == 0
        assert (await store.list_schedule_entries("u1"))[0]["completed"] is True

    async def test_replace_source_keeps_completed_and_other_days(self, store):
        """A calendar refresh swaps open entries inside the window only."""
        await store.add_schedule_entry("u1", {"title": "Stale", "start": "2026-01-05T10:00:00"})
        await store.add_schedule_entry("u1", {"title": "Done", "start": "2026-01-05T11:00:00", "completed": True})
        await store.add_schedule_entry("u1", {"title": "Tomorrow", "start": "2026-01-06T10:00:00"})

        await store.replace_schedule_source(
            "u1",
            "2026-01-05T00:00:00",
            "2026-01-06T00:00:00",
            [{"title": "Fresh", "start": "2026-01-05T12:00:00"}],
        )
        titles = [e["title"] for e in await store.list_schedule_entries("u1")]
        assert titles == ["Done", "Fresh", "Tomorrow"]


# ── Usage and events ────────────────────────────────────────────────────


class TestUsageAndEvents:
    async def test_usage_frequency_and_metadata_merge(self, store):
        await store.record_usage("u1", "voice", {"lang": "en"})
        await store.record_usage("u1", "voice", {"device": "kitchen"})
        await store.record_usage("u1", "chat")
        usage = await store.list_usage("u1")
        assert usage[0]["pattern_type"] == "voice"
        assert usage[0]["frequency"] == 2
        assert usage[0]["metadata"] == {"lang": "en", "device": "kitchen"}

    async def test_events_logged_and_filtered(self, store):
        await store.log_event("rule_fired", {"rule_id": "r1"})
        await store.log_event("device_state_changed", {"device_id": "light-1"})
        fired = await store.get_events("rule_fired")
        assert len(fired) == 1
        assert fired[0]["data"] == {"rule_id": "r1"}
        assert len(await store.get_events()) == 2


# ── Deadlines and failures ──────────────────────────────────────────────


class TestDeadlines:
    async def test_blocked_write_times_out(self, tmp_path):
        """A write stuck behind the write lock past the deadline raises UpstreamTimeoutError."""
        s = Store(str(tmp_path / "slow.db"), timeout=0.01)
        await s.initialize()
        try:
            async with s._write_lock:
                with pytest.raises(UpstreamTimeoutError, match="set_preferences"):
                    await s.set_preferences("u1", {"volume": 30})
            s.timeout = 5.0
            await s.set_preferences("u1", {"volume": 40})
            assert await s.get_preferences("u1") == {"volume": 40}
        finally:
            await s.close()

    async def test_stalled_operation_times_out(self, store):
        store.timeout = 0.01
        with pytest.raises(UpstreamTimeoutError, match="exceeded 0.01s"):
            await store._run("stalled", asyncio.Event().wait())

    async def test_sqlite_error_becomes_persistence_error(self, store):
        with pytest.raises(PersistenceError):
            await store._write("broken", [("INSERT INTO no_such_table VALUES (?)", (1,))])
