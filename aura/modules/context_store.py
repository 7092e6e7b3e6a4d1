"""Context Store Module — rolling window of user, environment and schedule signals.

Holds the ContextSnapshot the analysis cycle runs on. Interactions and
readings are bounded most-recent-first lists; writes are persisted before
they are acknowledged, and preference read-modify-write is serialized per
user so concurrent updates to different keys never clobber each other.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

from aura.automation.models import ContextSnapshot, Interaction, InteractionType, Reading, ScheduleEntry
from aura.config import ContextConfig
from aura.errors import NotInitializedError
from aura.hub.constants import (
    EVENT_PREFERENCE_UPDATED,
    MODULE_CONTEXT,
    PREF_NOW_PLAYING,
    USAGE_AUTOMATION_RUN,
    USAGE_CALENDAR,
    USAGE_COMMAND,
    USAGE_FEATURE,
    USAGE_MUSIC,
    USAGE_WEATHER,
)
from aura.hub.core import AutomationHub, Module
from aura.shared.providers import Providers


class ContextStore(Module):
    """Owns the ContextSnapshot for the bound user."""

    def __init__(
        self,
        hub: AutomationHub,
        config: ContextConfig | None = None,
        providers: Providers | None = None,
        refresh_interval: timedelta | None = timedelta(minutes=30),
    ):
        super().__init__(MODULE_CONTEXT, hub)
        self.config = config or ContextConfig()
        self.providers = providers or Providers()
        self.refresh_interval = refresh_interval
        self._user_id: str | None = None
        self._snapshot = ContextSnapshot()
        self._pref_locks: dict[str, asyncio.Lock] = {}
        self._interaction_lock = asyncio.Lock()

    async def initialize(self):
        """Bind the configured user, load the context and schedule provider refreshes."""
        self.logger.info("Context store initializing...")
        if self._user_id is None and self.hub.user_id:
            self.bind_user(self.hub.user_id)
        await self.load_context()

        has_providers = any((self.providers.weather, self.providers.calendar, self.providers.music))
        if has_providers and self.refresh_interval:
            await self.hub.schedule_task(
                task_id="context_provider_refresh",
                coro=self.refresh_from_providers,
                interval=self.refresh_interval,
                run_immediately=True,
            )

    async def shutdown(self):
        await self.providers.close()

    # ── Session ─────────────────────────────────────────────────────────

    def bind_user(self, user_id: str):
        """Bind the user session; clears state belonging to a previous user."""
        if self._user_id != user_id:
            self._snapshot = ContextSnapshot()
        self._user_id = user_id
        self.logger.info("Bound user session: %s", user_id)

    @property
    def user_id(self) -> str:
        if not self._user_id:
            raise NotInitializedError("Context store has no bound user session")
        return self._user_id

    # ── Interactions ────────────────────────────────────────────────────

    async def record_interaction(self, interaction: Interaction) -> Interaction:
        """Persist ``interaction`` and push it onto the bounded window.

        Raises:
            NotInitializedError: no user session bound
            PersistenceError / UpstreamTimeoutError: durable write failed
        """
        user_id = self.user_id
        async with self._interaction_lock:
            await self.hub.store.add_interaction(user_id, interaction.to_dict())
            window = [interaction, *self._snapshot.recent_interactions]
            window.sort(key=lambda i: i.timestamp, reverse=True)
            del window[self.config.interaction_capacity :]
            self._snapshot.recent_interactions = window
        return interaction

    async def record(
        self, interaction_type: InteractionType, content: Any, metadata: dict[str, Any] | None = None
    ) -> Interaction:
        """Shorthand for record_interaction with a fresh timestamp."""
        return await self.record_interaction(
            Interaction(type=interaction_type, content=content, metadata=metadata or {})
        )

    # ── Loading ─────────────────────────────────────────────────────────

    async def load_context(self) -> ContextSnapshot:
        """(Re)load every section from storage.

        Sections load independently: a failed section keeps its previous
        in-memory value and the failure is logged.
        """
        user_id = self.user_id
        store = self.hub.store
        snapshot = self._snapshot

        try:
            snapshot.user_preferences = await store.get_preferences(user_id)
        except Exception as e:
            self.logger.warning("Failed to load preferences, keeping previous: %s", e)

        try:
            rows = await store.list_interactions(user_id, limit=self.config.interaction_capacity)
            snapshot.recent_interactions = [Interaction.from_dict(r) for r in rows]
        except Exception as e:
            self.logger.warning("Failed to load interactions, keeping previous: %s", e)

        try:
            rows = await store.list_readings(user_id, limit=self.config.reading_capacity)
            snapshot.environmental_readings = [Reading.from_dict(r) for r in rows]
        except Exception as e:
            self.logger.warning("Failed to load environmental readings, keeping previous: %s", e)

        try:
            rows = await store.list_schedule_entries(user_id)
            snapshot.schedule_entries = [ScheduleEntry.from_dict(r) for r in rows]
        except Exception as e:
            self.logger.warning("Failed to load schedule, keeping previous: %s", e)

        self.logger.debug(
            "Context loaded: %d prefs, %d interactions, %d readings, %d schedule entries",
            len(snapshot.user_preferences),
            len(snapshot.recent_interactions),
            len(snapshot.environmental_readings),
            len(snapshot.schedule_entries),
        )
        return snapshot.copy()

    def snapshot(self) -> ContextSnapshot:
        """Copy of the current context window."""
        return self._snapshot.copy()

    # ── Preferences ─────────────────────────────────────────────────────

    def _pref_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._pref_locks.get(user_id)
        if lock is None:
            lock = self._pref_locks[user_id] = asyncio.Lock()
        return lock

    async def update_preference(self, key: str, value: Any) -> dict[str, Any]:
        """Set one preference key (last writer wins)."""
        return await self.update_preferences({key: value})

    async def update_preferences(self, changes: dict[str, Any]) -> dict[str, Any]:
        """Atomically merge ``changes`` into the stored preference map.

        Returns:
            The full preference map after the update
        """
        user_id = self.user_id
        async with self._pref_lock(user_id):
            current = await self.hub.store.get_preferences(user_id)
            updated = {**current, **changes}
            await self.hub.store.set_preferences(user_id, updated)
            self._snapshot.user_preferences = updated

        try:
            await self.record(InteractionType.PREFERENCE_UPDATE, {"keys": sorted(changes)}, {"changes": changes})
        except Exception as e:
            self.logger.warning("Preference saved but audit interaction failed: %s", e)

        await self.hub.publish(EVENT_PREFERENCE_UPDATED, {"keys": sorted(changes)})
        return dict(updated)

    def get_preferences(self) -> dict[str, Any]:
        return dict(self._snapshot.user_preferences)

    def get_preference(self, key: str, default: Any = None) -> Any:
        return self._snapshot.user_preferences.get(key, default)

    # ── Readings & schedule ─────────────────────────────────────────────

    async def record_reading(self, reading: Reading) -> Reading:
        user_id = self.user_id
        await self.hub.store.add_reading(user_id, reading.to_dict())
        window = [reading, *self._snapshot.environmental_readings]
        window.sort(key=lambda r: r.timestamp, reverse=True)
        del window[self.config.reading_capacity :]
        self._snapshot.environmental_readings = window
        return reading

    def latest_readings(self) -> dict[str, Reading]:
        """Newest reading per kind."""
        latest: dict[str, Reading] = {}
        for reading in self._snapshot.environmental_readings:
            latest.setdefault(reading.kind, reading)
        return latest

    async def add_schedule_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        user_id = self.user_id
        await self.hub.store.add_schedule_entry(user_id, entry.to_dict())
        entries = [*self._snapshot.schedule_entries, entry]
        entries.sort(key=lambda e: e.start)
        self._snapshot.schedule_entries = entries
        return entry

    async def complete_schedule_entry(self, title: str) -> bool:
        """Mark every entry titled ``title`` completed. Returns False if none matched."""
        user_id = self.user_id
        updated = await self.hub.store.set_schedule_completed(user_id, title)
        if not updated:
            return False
        self._snapshot.schedule_entries = [
            ScheduleEntry(e.title, e.start, e.end, e.location, True) if e.title == title else e
            for e in self._snapshot.schedule_entries
        ]
        return True

    # ── Provider refresh ────────────────────────────────────────────────

    async def refresh_from_providers(self, now: datetime | None = None):
        """Pull weather, calendar and music; a failing provider contributes nothing."""
        now = now or datetime.now()

        if self.providers.weather is not None:
            try:
                weather = await self.providers.weather.fetch()
                if weather is not None and weather.temperature is not None:
                    await self.record_reading(
                        Reading(
                            kind="temperature",
                            value=weather.temperature,
                            unit=weather.unit,
                            timestamp=now,
                            source="weather",
                        )
                    )
                if weather is not None and weather.condition:
                    await self.record_reading(
                        Reading(kind="condition", value=weather.condition, timestamp=now, source="weather")
                    )
                if weather is not None:
                    await self.record_usage(
                        USAGE_WEATHER, {"temperature": weather.temperature, "condition": weather.condition}
                    )
            except Exception as e:
                self.logger.warning("Weather refresh failed: %s", e)

        if self.providers.calendar is not None:
            try:
                entries = await self.providers.calendar.fetch(now)
                if entries:
                    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
                    day_end = day_start + timedelta(days=1)
                    await self.hub.store.replace_schedule_source(
                        self.user_id, day_start.isoformat(), day_end.isoformat(), [e.to_dict() for e in entries]
                    )
                    rows = await self.hub.store.list_schedule_entries(self.user_id)
                    self._snapshot.schedule_entries = [ScheduleEntry.from_dict(r) for r in rows]
                    await self.record_usage(USAGE_CALENDAR, {"event_count": len(entries)})
            except Exception as e:
                self.logger.warning("Calendar refresh failed: %s", e)

        if self.providers.music is not None:
            try:
                track = await self.providers.music.fetch()
                if track is not None and self.get_preference(PREF_NOW_PLAYING, {}).get("title") != track.title:
                    await self.update_preference(
                        PREF_NOW_PLAYING, {"title": track.title, "artist": track.artist, "state": track.state}
                    )
                if track is not None:
                    await self.record_usage(USAGE_MUSIC, {"title": track.title, "artist": track.artist})
            except Exception as e:
                self.logger.warning("Music refresh failed: %s", e)

    # ── Usage patterns & suggestions ────────────────────────────────────

    async def record_usage(self, pattern_type: str, metadata: dict[str, Any] | None = None):
        """Count one use of ``pattern_type``; metadata merges into the stored row."""
        await self.hub.store.record_usage(self.user_id, pattern_type, metadata)

    async def get_suggestions(self, now: datetime | None = None) -> list[str]:
        """Suggestions from the most frequent usage patterns plus time-of-day hints."""
        now = now or datetime.now()
        suggestions: list[str] = []

        for pattern in await self.hub.store.list_usage(self.user_id, limit=5):
            meta = pattern["metadata"]
            kind = pattern["pattern_type"]
            if kind == USAGE_COMMAND and meta.get("command"):
                suggestions.append(f'You often run "{meta["command"]}".')
            elif kind == USAGE_FEATURE and meta.get("feature"):
                suggestions.append(f'You frequently use "{meta["feature"]}".')
            elif kind == USAGE_AUTOMATION_RUN and meta.get("name"):
                suggestions.append(f'"{meta["name"]}" runs regularly. Want to adjust its schedule?')
            elif kind == USAGE_MUSIC and meta.get("title"):
                suggestions.append(f'Pick up where you left off with "{meta["title"]}"?')

        if 8 <= now.hour < 12:
            suggestions.append("Good morning! How about reviewing today's tasks?")
        elif 12 <= now.hour < 18:
            suggestions.append("Good afternoon! Need a hand with anything?")
        else:
            suggestions.append("Good evening! Shall we review the day?")

        if now.weekday() >= 5:
            suggestions.append("It's the weekend! Check the weather before making plans.")
        else:
            suggestions.append("It's a weekday! Let's look at your schedule.")
        return suggestions
