"""External data providers — weather, calendar and now-playing music.

Each provider performs one HTTP call under an aiohttp.ClientTimeout. A
failure of any kind is logged and reported as "no data this cycle"
(None or an empty list); providers never raise into the context refresh.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import aiohttp

from aura.automation.models import ScheduleEntry, local_naive
from aura.config import HAConfig, WeatherConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeatherSnapshot:
    condition: str
    temperature: float | None
    humidity: int | None = None
    wind: int | None = None
    unit: str = "C"
    raw: str = ""


@dataclass(frozen=True)
class TrackInfo:
    title: str
    artist: str | None = None
    state: str = "unknown"
    extra: dict[str, Any] = field(default_factory=dict)


def parse_weather(raw: str) -> WeatherSnapshot | None:
    """Parse wttr.in compact format (``%C+%t+%h+%w``) into a snapshot."""
    if not raw:
        return None
    temperature = None
    unit = "C"
    m = re.search(r"([+-]?\d+(?:\.\d+)?)\s*°([CF])", raw)
    if m:
        temperature = float(m.group(1))
        unit = m.group(2)
    humidity = None
    m = re.search(r"(\d+)%", raw)
    if m:
        humidity = int(m.group(1))
    wind = None
    m = re.search(r"[→←↑↓↗↘↙↖]?\s*(\d+)\s*(?:km/h|mph)", raw)
    if m:
        wind = int(m.group(1))
    condition = ""
    m = re.match(r"^(.+?)\s*[+-]?\d+(?:\.\d+)?°", raw)
    if m:
        condition = m.group(1).strip()
    return WeatherSnapshot(condition=condition, temperature=temperature, humidity=humidity, wind=wind, unit=unit, raw=raw)


class _HttpProvider:
    """Shared aiohttp session handling for providers."""

    def __init__(self, timeout: float = 10.0, session: aiohttp.ClientSession | None = None):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class WeatherProvider(_HttpProvider):
    """wttr.in weather lookup."""

    def __init__(self, config: WeatherConfig, timeout: float = 10.0, session: aiohttp.ClientSession | None = None):
        super().__init__(timeout, session)
        self.config = config

    async def fetch(self) -> WeatherSnapshot | None:
        url = f"https://wttr.in/{self.config.location}?format=%C+%t+%h+%w&{self.config.units}"
        try:
            session = await self._get_session()
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status != 200:
                    logger.warning("wttr.in returned %d", resp.status)
                    return None
                raw = (await resp.text()).strip()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning("Failed to fetch weather from wttr.in: %s", e)
            return None
        return parse_weather(raw)


class CalendarProvider(_HttpProvider):
    """Home Assistant calendar entity: today's appointments."""

    def __init__(self, config: HAConfig, timeout: float = 10.0, session: aiohttp.ClientSession | None = None):
        super().__init__(timeout, session)
        self.config = config

    async def fetch(self, day: datetime) -> list[ScheduleEntry]:
        if not self.config.url or not self.config.token:
            logger.debug("Calendar provider disabled: HA_URL/HA_TOKEN not set")
            return []
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        url = f"{self.config.url}/api/calendars/{self.config.calendar_entity}"
        params = {"start": start.isoformat(), "end": end.isoformat()}
        headers = {"Authorization": f"Bearer {self.config.token}"}
        try:
            session = await self._get_session()
            async with session.get(
                url, params=params, headers=headers, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                if resp.status != 200:
                    logger.warning("HA calendar API returned %d", resp.status)
                    return []
                events = await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Failed to fetch calendar events: %s", e)
            return []

        entries = []
        for event in events or []:
            entry = _calendar_event_to_entry(event)
            if entry is not None:
                entries.append(entry)
        return entries


def _calendar_event_to_entry(event: dict[str, Any]) -> ScheduleEntry | None:
    """HA calendar events carry start/end as {"dateTime": ...} or {"date": ...}."""
    def _when(raw: Any) -> datetime | None:
        if isinstance(raw, dict):
            raw = raw.get("dateTime") or raw.get("date")
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            return None
        return local_naive(parsed)

    start = _when(event.get("start"))
    summary = event.get("summary")
    if start is None or not summary:
        return None
    return ScheduleEntry(title=summary, start=start, end=_when(event.get("end")), location=event.get("location"))


class MusicProvider(_HttpProvider):
    """Home Assistant media_player state: what is playing right now."""

    def __init__(self, config: HAConfig, timeout: float = 10.0, session: aiohttp.ClientSession | None = None):
        super().__init__(timeout, session)
        self.config = config

    async def fetch(self) -> TrackInfo | None:
        if not self.config.url or not self.config.token:
            return None
        url = f"{self.config.url}/api/states/{self.config.media_player_entity}"
        headers = {"Authorization": f"Bearer {self.config.token}"}
        try:
            session = await self._get_session()
            async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status != 200:
                    logger.warning("HA media_player state returned %d", resp.status)
                    return None
                payload = await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Failed to fetch media player state: %s", e)
            return None

        attrs = payload.get("attributes", {}) if isinstance(payload, dict) else {}
        title = attrs.get("media_title")
        if not title:
            return None
        return TrackInfo(
            title=title,
            artist=attrs.get("media_artist"),
            state=payload.get("state", "unknown"),
            extra={k: attrs[k] for k in ("media_album_name", "volume_level") if k in attrs},
        )


@dataclass
class Providers:
    """Bundle of optional providers consumed by the context refresh."""

    weather: WeatherProvider | None = None
    calendar: CalendarProvider | None = None
    music: MusicProvider | None = None

    async def close(self):
        for provider in (self.weather, self.calendar, self.music):
            if provider is not None:
                await provider.close()
