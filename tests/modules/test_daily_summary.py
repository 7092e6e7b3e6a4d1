"""Tests for aura.modules.daily_summary."""

from datetime import date, datetime

from aura.automation.models import ContextSnapshot, Reading, ScheduleEntry
from aura.modules.daily_summary import build_daily_summary, format_summary, pending_items

NOW = datetime(2026, 1, 5, 8, 0)


def _snapshot():
    return ContextSnapshot(
        environmental_readings=[
            Reading("temperature", 18.0, "C", NOW, source="weather"),
            Reading("condition", "Cloudy", "", NOW, source="weather"),
            Reading("temperature", 22.0, "C", NOW, source="thermostat"),
        ],
        schedule_entries=[
            ScheduleEntry("Dentist", NOW.replace(hour=14), NOW.replace(hour=15), "Clinic"),
            ScheduleEntry("Buy milk", NOW.replace(hour=0)),
            ScheduleEntry("Pay rent", NOW.replace(hour=0), completed=True),
            ScheduleEntry("Tomorrow's call", datetime(2026, 1, 6, 10, 0)),
        ],
    )


class TestBuildDailySummary:
    def test_splits_appointments_and_tasks(self):
        summary = build_daily_summary(_snapshot(), NOW)
        assert summary.date == date(2026, 1, 5)
        assert summary.appointments == [{"title": "Dentist", "time": "14:00", "location": "Clinic"}]
        assert summary.tasks == [
            {"title": "Buy milk", "completed": False},
            {"title": "Pay rent", "completed": True},
        ]

    def test_weather_only_from_weather_source(self):
        summary = build_daily_summary(_snapshot(), NOW)
        assert summary.weather == {"temperature": 18.0, "unit": "C", "condition": "Cloudy"}

    def test_empty_snapshot(self):
        summary = build_daily_summary(ContextSnapshot(), NOW)
        assert summary.weather is None
        assert summary.appointments == []


class TestFormatSummary:
    def test_full_summary(self):
        text = format_summary(build_daily_summary(_snapshot(), NOW))
        assert text.splitlines() == [
            "Summary for Monday, 05 January.",
            "Cloudy, 18.0°C.",
            "You have 1 appointment(s):",
            "- 14:00 Dentist at Clinic",
            "1 open task(s): Buy milk.",
        ]

    def test_no_appointments(self):
        text = format_summary(build_daily_summary(ContextSnapshot(), NOW))
        assert "No appointments today." in text


class TestPendingItems:
    def test_today_not_completed(self):
        assert pending_items(_snapshot(), NOW) == ["Buy milk", "Dentist"]
