"""Daily summary composition from the context snapshot."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from aura.automation.models import ContextSnapshot


@dataclass(frozen=True)
class DailySummary:
    date: date
    weather: dict[str, Any] | None = None
    appointments: list[dict[str, Any]] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)


def _latest_weather(snapshot: ContextSnapshot) -> dict[str, Any] | None:
    weather: dict[str, Any] = {}
    for reading in snapshot.environmental_readings:
        if reading.source != "weather":
            continue
        if reading.kind == "temperature" and "temperature" not in weather:
            weather["temperature"] = reading.value
            weather["unit"] = reading.unit
        elif reading.kind == "condition" and "condition" not in weather:
            weather["condition"] = reading.value
    return weather or None


def build_daily_summary(snapshot: ContextSnapshot, now: datetime | None = None) -> DailySummary:
    """Today's weather, timed appointments and open tasks.

    Entries at exactly midnight without an end are treated as all-day tasks.
    """
    now = now or datetime.now()
    today = now.date()
    appointments = []
    tasks = []
    for entry in sorted(snapshot.schedule_entries, key=lambda e: e.start):
        if entry.start.date() != today:
            continue
        all_day = entry.start.time() == datetime.min.time() and entry.end is None
        if all_day or entry.completed:
            tasks.append({"title": entry.title, "completed": entry.completed})
        else:
            appointments.append(
                {"title": entry.title, "time": entry.start.strftime("%H:%M"), "location": entry.location}
            )
    return DailySummary(date=today, weather=_latest_weather(snapshot), appointments=appointments, tasks=tasks)


def format_summary(summary: DailySummary) -> str:
    lines = [f"Summary for {summary.date.strftime('%A, %d %B')}."]
    if summary.weather:
        condition = summary.weather.get("condition") or "Weather"
        temperature = summary.weather.get("temperature")
        if temperature is not None:
            lines.append(f"{condition}, {temperature}°{summary.weather.get('unit') or 'C'}.")
        else:
            lines.append(f"{condition}.")

    if summary.appointments:
        lines.append(f"You have {len(summary.appointments)} appointment(s):")
        for appt in summary.appointments:
            where = f" at {appt['location']}" if appt.get("location") else ""
            lines.append(f"- {appt['time']} {appt['title']}{where}")
    else:
        lines.append("No appointments today.")

    pending = [t for t in summary.tasks if not t["completed"]]
    if pending:
        lines.append(f"{len(pending)} open task(s): " + ", ".join(t["title"] for t in pending) + ".")
    return "\n".join(lines)


def pending_items(snapshot: ContextSnapshot, now: datetime | None = None) -> list[str]:
    """Titles of today's entries not yet completed."""
    now = now or datetime.now()
    return [
        e.title
        for e in sorted(snapshot.schedule_entries, key=lambda e: e.start)
        if e.start.date() == now.date() and not e.completed
    ]
