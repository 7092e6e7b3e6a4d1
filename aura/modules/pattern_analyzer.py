"""Pattern Analyzer — derive confidence-scored patterns from a ContextSnapshot.

Every function here is pure: the output depends only on the snapshot (and
``now`` for schedule lookahead). Missing data never raises; an absent
category yields an empty list. When fewer than ``min_samples`` observations
back a category, its confidence is capped at ``sparse_cap`` rather than
reporting high certainty from a handful of points.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any

import numpy as np

from aura.automation.models import (
    ContextSnapshot,
    Interaction,
    InteractionType,
    Observation,
    PatternBundle,
)
from aura.hub.constants import SOURCE_SYSTEM, SYSTEM_FEATURES

logger = logging.getLogger(__name__)

MIN_SAMPLES = 5
SPARSE_CONFIDENCE_CAP = 0.5

ACTIVE_WINDOW_SHARE = 0.8
MIN_BREAK_MINUTES = 15
MAX_RANKED = 10

COMMAND_TYPES = (InteractionType.COMMAND_EXECUTION, InteractionType.VOICE_COMMAND)

# preference category -> (preference keys, device type, state key)
PREFERENCE_CATEGORIES: dict[str, tuple[tuple[str, ...], str | None, str | None]] = {
    "temperature": (("temperature", "preferred_temperature"), "thermostat", "temperature"),
    "lighting": (("brightness", "lighting", "light_brightness"), "light", "brightness"),
    "music": (("music", "now_playing", "favorite_music"), None, None),
}


def _cap(confidence: float, samples: int, min_samples: int, sparse_cap: float) -> float:
    confidence = float(min(1.0, max(0.0, confidence)))
    if samples < min_samples:
        return min(confidence, sparse_cap)
    return confidence


def content_label(content: Any) -> str | None:
    """Normalize interaction content to a comparable label."""
    if content is None:
        return None
    if isinstance(content, str):
        label = content.strip().lower()
        return label or None
    if isinstance(content, dict):
        for key in ("command", "feature", "text", "action"):
            if content.get(key):
                return str(content[key]).strip().lower()
        return None
    return str(content)


def _rank(counts: Counter, last_seen: dict[Any, datetime | None]) -> list[Any]:
    """Keys by frequency desc, ties broken by most recent timestamp."""
    return sorted(
        counts,
        key=lambda k: (counts[k], last_seen.get(k) or datetime.min),
        reverse=True,
    )


def _chronological(snapshot: ContextSnapshot) -> list[Interaction]:
    return sorted(snapshot.recent_interactions, key=lambda i: i.timestamp)


def is_system_interaction(interaction: Interaction) -> bool:
    """True for records the core writes about its own activity."""
    if interaction.metadata.get("source") == SOURCE_SYSTEM:
        return True
    content = interaction.content
    return (
        interaction.type == InteractionType.FEATURE_USAGE
        and isinstance(content, dict)
        and content.get("feature") in SYSTEM_FEATURES
    )


def _user_interactions(snapshot: ContextSnapshot) -> list[Interaction]:
    """Chronological interactions with the core's own audit records removed."""
    return [i for i in _chronological(snapshot) if not is_system_interaction(i)]


# ── Time ─────────────────────────────────────────────────────────────


def _active_window(hist: np.ndarray) -> tuple[int, int, float]:
    """Smallest contiguous hour window holding ACTIVE_WINDOW_SHARE of activity.

    Returns:
        (start_hour, end_hour_exclusive, covered_share)
    """
    total = hist.sum()
    cumulative = np.concatenate(([0], np.cumsum(hist)))
    for width in range(1, 25):
        sums = cumulative[width:] - cumulative[:-width]
        best = int(np.argmax(sums))
        if sums[best] >= ACTIVE_WINDOW_SHARE * total:
            return best, best + width, float(sums[best] / total)
    return 0, 24, 1.0


def analyze_time_patterns(
    snapshot: ContextSnapshot,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> dict[str, list[Observation]]:
    """Active-hour window, routine markers and break windows from interaction timestamps."""
    interactions = _user_interactions(snapshot)
    result: dict[str, list[Observation]] = {"active_hours": [], "routine_times": [], "break_times": []}
    if not interactions:
        return result

    samples = len(interactions)
    hours = np.array([i.timestamp.hour for i in interactions])
    hist = np.bincount(hours, minlength=24)

    start, end, share = _active_window(hist)
    width = end - start
    # compact windows are more informative than "active all day"
    window_conf = share * (1.0 - (width - 1) / 24.0)
    result["active_hours"].append(
        Observation(
            label="active_hours",
            value={"start": start, "end": end, "share": round(share, 3)},
            confidence=_cap(window_conf, samples, min_samples, sparse_cap),
            timestamp=interactions[-1].timestamp,
        )
    )

    # routine markers: hours with at least twice the uniform share
    by_hour: dict[int, list[Interaction]] = defaultdict(list)
    for interaction in interactions:
        by_hour[interaction.timestamp.hour].append(interaction)

    routines = []
    for hour in np.flatnonzero(hist >= max(2, 2 * samples / 24)):
        hour = int(hour)
        bucket = by_hour[hour]
        labels = Counter()
        last_seen: dict[str, datetime] = {}
        for interaction in bucket:
            label = content_label(interaction.content)
            if label is None:
                continue
            labels[label] += 1
            last_seen[label] = interaction.timestamp
        if not labels:
            continue
        top = _rank(labels, last_seen)[0]
        count = len(bucket)
        consistency = labels[top] / count
        value: dict[str, Any] = {"hour": hour, "label": top, "count": count}
        minutes = [i.timestamp.minute for i in bucket if content_label(i.content) == top]
        value["minute"] = int(np.median(minutes)) if minutes else 0
        device = _routine_device(bucket, top)
        if device:
            value.update(device)
        routines.append(
            Observation(
                label=top,
                value=value,
                confidence=_cap(consistency * count / (count + 2), samples, min_samples, sparse_cap),
                timestamp=last_seen[top],
            )
        )
    routines.sort(key=lambda o: (o.value["count"], o.timestamp or datetime.min), reverse=True)
    result["routine_times"] = routines[:MAX_RANKED]

    # breaks: gaps inside the active window, same day
    for prev, cur in zip(interactions, interactions[1:]):
        if prev.timestamp.date() != cur.timestamp.date():
            continue
        if not (start <= prev.timestamp.hour < end and start <= cur.timestamp.hour < end):
            continue
        gap = (cur.timestamp - prev.timestamp).total_seconds() / 60.0
        if gap >= MIN_BREAK_MINUTES:
            result["break_times"].append(
                Observation(
                    label="break",
                    value={
                        "start": prev.timestamp.isoformat(),
                        "end": cur.timestamp.isoformat(),
                        "minutes": round(gap),
                    },
                    confidence=_cap(min(1.0, gap / 60.0), samples, min_samples, sparse_cap),
                    timestamp=cur.timestamp,
                )
            )
    return result


def _routine_device(bucket: list[Interaction], label: str) -> dict[str, Any] | None:
    """Most recent device command behind a routine label, if any."""
    for interaction in reversed(bucket):
        if content_label(interaction.content) != label:
            continue
        device_id = interaction.metadata.get("device_id")
        if device_id:
            return {"device_id": device_id, "state": dict(interaction.metadata.get("state") or {})}
    return None


# ── Interactions ─────────────────────────────────────────────────────


def analyze_interaction_patterns(
    snapshot: ContextSnapshot,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> dict[str, list[Observation]]:
    """Frequent commands, common command sequences and preferred devices."""
    interactions = _user_interactions(snapshot)
    result: dict[str, list[Observation]] = {
        "frequent_commands": [],
        "common_sequences": [],
        "preferred_devices": [],
    }

    commands = Counter()
    command_seen: dict[str, datetime] = {}
    devices = Counter()
    device_seen: dict[str, datetime] = {}
    labelled: list[tuple[str, datetime]] = []

    for interaction in interactions:
        label = content_label(interaction.content)
        if interaction.type in COMMAND_TYPES and label:
            commands[label] += 1
            command_seen[label] = interaction.timestamp
            labelled.append((label, interaction.timestamp))
        device_id = interaction.metadata.get("device_id") or interaction.metadata.get("deviceId")
        if device_id:
            devices[device_id] += 1
            device_seen[device_id] = interaction.timestamp

    total = sum(commands.values())
    for label in _rank(commands, command_seen)[:MAX_RANKED]:
        result["frequent_commands"].append(
            Observation(
                label=label,
                value={"command": label, "count": commands[label]},
                confidence=_cap(commands[label] / total, total, min_samples, sparse_cap),
                timestamp=command_seen[label],
            )
        )

    sequences = Counter()
    sequence_seen: dict[tuple[str, ...], datetime] = {}
    for size in (2, 3):
        for i in range(len(labelled) - size + 1):
            window = labelled[i : i + size]
            seq = tuple(label for label, _ in window)
            if len(set(seq)) == 1:
                continue
            sequences[seq] += 1
            sequence_seen[seq] = window[-1][1]
    windows = max(1, len(labelled) - 1)
    for seq in _rank(sequences, sequence_seen):
        if sequences[seq] < 2:
            continue
        result["common_sequences"].append(
            Observation(
                label=" -> ".join(seq),
                value={"sequence": list(seq), "count": sequences[seq]},
                confidence=_cap(sequences[seq] / windows, len(labelled), min_samples, sparse_cap),
                timestamp=sequence_seen[seq],
            )
        )
        if len(result["common_sequences"]) >= MAX_RANKED:
            break

    device_total = sum(devices.values())
    for device_id in _rank(devices, device_seen)[:MAX_RANKED]:
        result["preferred_devices"].append(
            Observation(
                label=device_id,
                value={"device_id": device_id, "count": devices[device_id]},
                confidence=_cap(devices[device_id] / device_total, device_total, min_samples, sparse_cap),
                timestamp=device_seen[device_id],
            )
        )
    return result


# ── Preferences ──────────────────────────────────────────────────────


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("title") or tuple(sorted((k, str(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(value)
    return value


def analyze_preference_patterns(
    snapshot: ContextSnapshot,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> dict[str, list[Observation]]:
    """Temperature, lighting and music preferences, frequency-ranked with recency tie-break.

    Samples come from the stored preference map, preference_update
    interactions and device commands (thermostat temperature, light brightness).
    """
    samples: dict[str, list[tuple[Any, datetime | None]]] = defaultdict(list)

    for category, (keys, _, _) in PREFERENCE_CATEGORIES.items():
        for key in keys:
            if snapshot.user_preferences.get(key) is not None:
                samples[category].append((snapshot.user_preferences[key], None))

    for interaction in _user_interactions(snapshot):
        if interaction.type == InteractionType.PREFERENCE_UPDATE:
            changes = interaction.metadata.get("changes") or {}
            for category, (keys, _, _) in PREFERENCE_CATEGORIES.items():
                for key in keys:
                    if changes.get(key) is not None:
                        samples[category].append((changes[key], interaction.timestamp))
        elif interaction.type in COMMAND_TYPES:
            device_type = interaction.metadata.get("device_type")
            state = interaction.metadata.get("state") or {}
            for category, (_, category_device, state_key) in PREFERENCE_CATEGORIES.items():
                if category_device and device_type == category_device and state.get(state_key) is not None:
                    samples[category].append((state[state_key], interaction.timestamp))

    result: dict[str, list[Observation]] = {}
    for category in PREFERENCE_CATEGORIES:
        values = samples.get(category, [])
        if not values:
            result[category] = []
            continue
        counts = Counter()
        last_seen: dict[Any, datetime | None] = {}
        originals: dict[Any, Any] = {}
        for value, ts in values:
            key = _hashable(value)
            counts[key] += 1
            originals[key] = value
            if ts is not None or key not in last_seen:
                last_seen[key] = ts
        total = len(values)
        result[category] = [
            Observation(
                label=category,
                value=originals[key],
                confidence=_cap(counts[key] / total, total, min_samples, sparse_cap),
                timestamp=last_seen.get(key),
            )
            for key in _rank(counts, last_seen)[:MAX_RANKED]
        ]
    return result


# ── Environment ──────────────────────────────────────────────────────


def _numeric(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def analyze_environment_patterns(
    snapshot: ContextSnapshot,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> dict[str, list[Observation]]:
    """Per-kind trend (least-squares slope per hour) over numeric readings."""
    series: dict[str, list[tuple[datetime, float]]] = defaultdict(list)
    for reading in snapshot.environmental_readings:
        value = _numeric(reading.value)
        if value is not None:
            series[reading.kind].append((reading.timestamp, value))

    result: dict[str, list[Observation]] = {}
    for kind, points in series.items():
        if len(points) < 2:
            continue
        points.sort(key=lambda p: p[0])
        t0 = points[0][0]
        x = np.array([(ts - t0).total_seconds() / 3600.0 for ts, _ in points])
        y = np.array([v for _, v in points])
        if np.ptp(x) == 0:
            continue

        slope, _ = np.polyfit(x, y, 1)
        if np.ptp(y) == 0:
            fit = 1.0
        else:
            fit = float(np.corrcoef(x, y)[0, 1] ** 2)
        if abs(slope) < 0.1:
            direction = "steady"
        else:
            direction = "rising" if slope > 0 else "falling"

        latest = float(y[-1])
        result[kind] = [
            Observation(
                label=f"{kind}_trend",
                value={
                    "direction": direction,
                    "slope_per_hour": round(float(slope), 3),
                    "mean": round(float(y.mean()), 2),
                    "latest": latest,
                    "projected": round(latest + float(slope), 2),
                },
                confidence=_cap(fit, len(points), min_samples, sparse_cap),
                timestamp=points[-1][0],
            )
        ]
    return result


# ── Schedule ─────────────────────────────────────────────────────────


def analyze_schedule_patterns(
    snapshot: ContextSnapshot,
    now: datetime | None = None,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> dict[str, list[Observation]]:
    """Next upcoming appointment, overlapping entries and titles recurring across days."""
    now = now or datetime.now()
    pending = sorted((e for e in snapshot.schedule_entries if not e.completed), key=lambda e: e.start)
    result: dict[str, list[Observation]] = {"next_event": [], "conflicts": [], "recurring": []}

    by_title: dict[str, list[datetime]] = defaultdict(list)
    for entry in snapshot.schedule_entries:
        by_title[entry.title].append(entry.start)
    recurring = []
    for title, starts in by_title.items():
        days = sorted({s.date() for s in starts})
        if len(days) < 2:
            continue
        span = (days[-1] - days[0]).days + 1
        minutes = np.array([s.hour * 60 + s.minute for s in starts])
        typical = int(np.median(minutes))
        recurring.append(
            Observation(
                label=title,
                value={"title": title, "hour": typical // 60, "minute": typical % 60, "days": len(days)},
                confidence=_cap(len(days) / span, len(days), min_samples, sparse_cap),
                timestamp=max(starts),
            )
        )
    recurring.sort(key=lambda o: (o.value["days"], o.timestamp), reverse=True)
    result["recurring"] = recurring[:MAX_RANKED]

    upcoming = [e for e in pending if e.start >= now]
    if upcoming:
        entry = upcoming[0]
        result["next_event"].append(
            Observation(
                label=entry.title,
                value={
                    "title": entry.title,
                    "start": entry.start.isoformat(),
                    "location": entry.location,
                    "minutes_until": round((entry.start - now).total_seconds() / 60.0),
                },
                confidence=1.0,
                timestamp=entry.start,
            )
        )

    for i, first in enumerate(pending):
        first_end = first.end or first.start + timedelta(hours=1)
        for second in pending[i + 1 :]:
            if second.start >= first_end:
                break
            result["conflicts"].append(
                Observation(
                    label=f"{first.title} / {second.title}",
                    value={"first": first.title, "second": second.title, "start": second.start.isoformat()},
                    confidence=1.0,
                    timestamp=second.start,
                )
            )
    return result


def find_patterns(
    snapshot: ContextSnapshot,
    now: datetime | None = None,
    min_samples: int = MIN_SAMPLES,
    sparse_cap: float = SPARSE_CONFIDENCE_CAP,
) -> PatternBundle:
    """Run every analyzer over ``snapshot``."""
    bundle = PatternBundle(
        time_based=analyze_time_patterns(snapshot, min_samples, sparse_cap),
        interaction_based=analyze_interaction_patterns(snapshot, min_samples, sparse_cap),
        preference_based=analyze_preference_patterns(snapshot, min_samples, sparse_cap),
        environment_based=analyze_environment_patterns(snapshot, min_samples, sparse_cap),
        schedule_based=analyze_schedule_patterns(snapshot, now, min_samples, sparse_cap),
    )
    logger.debug(
        "Patterns: %d routines, %d commands, %d preference categories, %d env series",
        len(bundle.time_based.get("routine_times", [])),
        len(bundle.interaction_based.get("frequent_commands", [])),
        sum(1 for obs in bundle.preference_based.values() if obs),
        len(bundle.environment_based),
    )
    return bundle
