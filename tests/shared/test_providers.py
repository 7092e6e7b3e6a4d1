"""Tests for aura.shared.providers: parsing and failure handling, no network."""

from datetime import datetime, timedelta, timezone

import aiohttp

from aura.config import HAConfig, WeatherConfig
from aura.shared.providers import (
    CalendarProvider,
    MusicProvider,
    Providers,
    WeatherProvider,
    _calendar_event_to_entry,
    parse_weather,
)


class FakeResponse:
    def __init__(self, status=200, text="", payload=None):
        self.status = status
        self._text = text
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self._text

    async def json(self):
        return self._payload


class FakeSession:
    """Stands in for aiohttp.ClientSession; records requested URLs."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.closed = False
        self.urls = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


# ── Weather ─────────────────────────────────────────────────────────────


class TestParseWeather:
    def test_full_line(self):
        snapshot = parse_weather("Partly cloudy +21°C 60% ↙11km/h")
        assert snapshot.condition == "Partly cloudy"
        assert snapshot.temperature == 21.0
        assert snapshot.unit == "C"
        assert snapshot.humidity == 60
        assert snapshot.wind == 11

    def test_negative_fahrenheit(self):
        snapshot = parse_weather("Snow -3°F 90% 5mph")
        assert snapshot.temperature == -3.0
        assert snapshot.unit == "F"
        assert snapshot.condition == "Snow"

    def test_empty(self):
        assert parse_weather("") is None


class TestWeatherProvider:
    async def test_fetch_parses_body(self):
        session = FakeSession(FakeResponse(text="Sunny +25°C 40% →8km/h\n"))
        provider = WeatherProvider(WeatherConfig(location="Porto"), session=session)
        snapshot = await provider.fetch()
        assert snapshot.temperature == 25.0
        assert "Porto" in session.urls[0]

    async def test_non_200_is_no_data(self):
        provider = WeatherProvider(WeatherConfig(), session=FakeSession(FakeResponse(status=503)))
        assert await provider.fetch() is None

    async def test_client_error_is_no_data(self):
        provider = WeatherProvider(WeatherConfig(), session=FakeSession(error=aiohttp.ClientError("down")))
        assert await provider.fetch() is None

    async def test_injected_session_not_closed(self):
        session = FakeSession(FakeResponse(text=""))
        provider = WeatherProvider(WeatherConfig(), session=session)
        await provider.close()
        assert not session.closed


# ── Calendar ────────────────────────────────────────────────────────────


class TestCalendar:
    def test_event_with_datetime(self):
        entry = _calendar_event_to_entry(
            {
                "summary": "Standup",
                "start": {"dateTime": "2026-01-05T09:30:00+00:00"},
                "end": {"dateTime": "2026-01-05T09:45:00+00:00"},
                "location": "Office",
            }
        )
        assert entry.title == "Standup"
        # UTC offsets convert to naive local time
        assert entry.start == datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert entry.end - entry.start == timedelta(minutes=15)
        assert entry.start.tzinfo is None
        assert entry.location == "Office"

    def test_all_day_event(self):
        entry = _calendar_event_to_entry({"summary": "Holiday", "start": {"date": "2026-01-05"}})
        assert entry.start == datetime(2026, 1, 5)
        assert entry.end is None

    def test_missing_summary_or_start_skipped(self):
        assert _calendar_event_to_entry({"start": {"date": "2026-01-05"}}) is None
        assert _calendar_event_to_entry({"summary": "x", "start": {"dateTime": "garbage"}}) is None

    async def test_disabled_without_credentials(self):
        provider = CalendarProvider(HAConfig(url="", token=""))
        assert await provider.fetch(datetime(2026, 1, 5)) == []

    async def test_fetch_skips_malformed_events(self):
        payload = [
            {"summary": "Dentist", "start": {"dateTime": "2026-01-05T14:00:00"}},
            {"summary": "", "start": {"dateTime": "2026-01-05T15:00:00"}},
        ]
        session = FakeSession(FakeResponse(payload=payload))
        provider = CalendarProvider(HAConfig(url="http://ha.local:8123", token="t"), session=session)
        entries = await provider.fetch(datetime(2026, 1, 5, 10, 0))
        assert [e.title for e in entries] == ["Dentist"]
        assert session.urls == ["http://ha.local:8123/api/calendars/calendar.personal"]


# ── Music ───────────────────────────────────────────────────────────────


class TestMusic:
    async def test_playing_track(self):
        payload = {"state": "playing", "attributes": {"media_title": "Blue", "media_artist": "Joni", "volume_level": 0.4}}
        provider = MusicProvider(HAConfig(url="http://ha", token="t"), session=FakeSession(FakeResponse(payload=payload)))
        track = await provider.fetch()
        assert (track.title, track.artist, track.state) == ("Blue", "Joni", "playing")
        assert track.extra == {"volume_level": 0.4}

    async def test_idle_player_is_no_data(self):
        payload = {"state": "idle", "attributes": {}}
        provider = MusicProvider(HAConfig(url="http://ha", token="t"), session=FakeSession(FakeResponse(payload=payload)))
        assert await provider.fetch() is None

    async def test_providers_close_all(self):
        session = FakeSession()
        bundle = Providers(weather=WeatherProvider(WeatherConfig(), session=session))
        await bundle.close()
        assert bundle.weather._session is None
