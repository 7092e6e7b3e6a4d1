"""Shared data models for the predictive automation core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from aura.errors import ValidationError

if TYPE_CHECKING:
    from aura.automation.triggers import Trigger


class InteractionType(StrEnum):
    CHAT_MESSAGE = "chat_message"
    COMMAND_EXECUTION = "command_execution"
    VOICE_COMMAND = "voice_command"
    PREFERENCE_UPDATE = "preference_update"
    FEATURE_USAGE = "feature_usage"


class PredictionType(StrEnum):
    BEHAVIOR = "behavior"
    PREFERENCE = "preference"
    SCHEDULE = "schedule"
    ENVIRONMENT = "environment"


class DeviceType(StrEnum):
    LIGHT = "light"
    SWITCH = "switch"
    SENSOR = "sensor"
    CAMERA = "camera"
    THERMOSTAT = "thermostat"


class DeviceStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class Mood(StrEnum):
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    TIRED = "tired"
    FOCUSED = "focused"
    CALM = "calm"


class ThemeMood(StrEnum):
    HAPPY = "happy"
    CALM = "calm"
    ENERGETIC = "energetic"
    FOCUSED = "focused"


class Tone(StrEnum):
    CASUAL = "casual"
    FORMAL = "formal"
    SARCASTIC = "sarcastic"
    EMPATHETIC = "empathetic"


def parse_enum(enum_cls: type[StrEnum], value: Any, what: str) -> Any:
    """Coerce ``value`` into ``enum_cls`` or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"invalid {what} {value!r} (expected one of: {allowed})") from None


def local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_timestamp(value: Any) -> datetime:
    """Accept datetime or ISO 8601 string; the result is always naive local time."""
    if isinstance(value, datetime):
        return local_naive(value)
    if isinstance(value, str):
        try:
            return local_naive(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise ValidationError(f"invalid timestamp {value!r}")


# ── Context ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Interaction:
    """One recorded user/system interaction. Immutable, append-only."""

    type: InteractionType
    content: Any
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, "timestamp", local_naive(self.timestamp))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "content": self.content,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Interaction:
        return cls(
            type=parse_enum(InteractionType, data.get("type"), "interaction type"),
            content=data.get("content"),
            metadata=dict(data.get("metadata") or {}),
            timestamp=parse_timestamp(data.get("timestamp") or datetime.now()),
        )


@dataclass(frozen=True)
class Reading:
    """Environmental reading (temperature, humidity, noise, light...)."""

    kind: str
    value: float | str | None
    unit: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = ""

    def __post_init__(self):
        object.__setattr__(self, "timestamp", local_naive(self.timestamp))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reading:
        return cls(
            kind=data["kind"],
            value=data.get("value"),
            unit=data.get("unit") or "",
            timestamp=parse_timestamp(data.get("timestamp") or datetime.now()),
            source=data.get("source") or "",
        )


@dataclass(frozen=True)
class ScheduleEntry:
    """Calendar appointment or task."""

    title: str
    start: datetime
    end: datetime | None = None
    location: str | None = None
    completed: bool = False

    def __post_init__(self):
        object.__setattr__(self, "start", local_naive(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", local_naive(self.end))

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end else None,
            "location": self.location,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleEntry:
        end = data.get("end")
        return cls(
            title=data["title"],
            start=parse_timestamp(data["start"]),
            end=parse_timestamp(end) if end else None,
            location=data.get("location"),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class ContextSnapshot:
    """Rolling window of signals used as analysis input.

    ``recent_interactions`` and ``environmental_readings`` are most-recent-first.
    """

    user_preferences: dict[str, Any] = field(default_factory=dict)
    recent_interactions: list[Interaction] = field(default_factory=list)
    environmental_readings: list[Reading] = field(default_factory=list)
    schedule_entries: list[ScheduleEntry] = field(default_factory=list)

    def copy(self) -> ContextSnapshot:
        return ContextSnapshot(
            user_preferences=dict(self.user_preferences),
            recent_interactions=list(self.recent_interactions),
            environmental_readings=list(self.environmental_readings),
            schedule_entries=list(self.schedule_entries),
        )


# ── Patterns & predictions ────────────────────────────────────────────


@dataclass(frozen=True)
class Observation:
    """A single confidence-scored pattern observation."""

    label: str
    value: Any
    confidence: float
    timestamp: datetime | None = None


@dataclass(frozen=True)
class PatternBundle:
    """Derived patterns for one analysis cycle. Replaced, never mutated."""

    time_based: dict[str, list[Observation]] = field(default_factory=dict)
    interaction_based: dict[str, list[Observation]] = field(default_factory=dict)
    preference_based: dict[str, list[Observation]] = field(default_factory=dict)
    environment_based: dict[str, list[Observation]] = field(default_factory=dict)
    schedule_based: dict[str, list[Observation]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        groups = (
            self.time_based,
            self.interaction_based,
            self.preference_based,
            self.environment_based,
            self.schedule_based,
        )
        return not any(obs for group in groups for obs in group.values())


@dataclass(frozen=True)
class Prediction:
    id: str
    type: PredictionType
    confidence: float
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(f"prediction confidence {self.confidence} outside [0, 1]")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "confidence": self.confidence,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Prediction:
        return cls(
            id=data["id"],
            type=parse_enum(PredictionType, data["type"], "prediction type"),
            confidence=float(data["confidence"]),
            data=dict(data.get("data") or {}),
            timestamp=parse_timestamp(data["timestamp"]),
        )


# ── Devices & automations ─────────────────────────────────────────────


@dataclass
class Device:
    id: str
    name: str
    type: DeviceType
    status: DeviceStatus = DeviceStatus.ONLINE
    state: dict[str, Any] = field(default_factory=dict)
    location: str = ""

    def copy(self) -> Device:
        return replace(self, state=dict(self.state))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "status": self.status.value,
            "state": self.state,
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Device:
        if not data.get("id") or not data.get("name"):
            raise ValidationError("device requires non-empty id and name")
        state = data.get("state") or {}
        if not isinstance(state, dict):
            raise ValidationError("device state must be a mapping")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            type=parse_enum(DeviceType, data.get("type"), "device type"),
            status=parse_enum(DeviceStatus, data.get("status", "online"), "device status"),
            state=dict(state),
            location=data.get("location") or "",
        )


@dataclass(frozen=True)
class Action:
    """One step of an automation: ``action`` applied to ``device_id``."""

    device_id: str
    action: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"deviceId": self.device_id, "action": self.action, "params": self.params}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        device_id = data.get("deviceId", data.get("device_id"))
        if not device_id or not data.get("action"):
            raise ValidationError(f"action requires deviceId and action: {data!r}")
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError("action params must be a mapping")
        return cls(device_id=str(device_id), action=str(data["action"]), params=dict(params))


@dataclass(frozen=True)
class Automation:
    id: str
    name: str
    trigger: Trigger
    actions: tuple[Action, ...]
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        from aura.automation.triggers import trigger_to_dict

        return {
            "id": self.id,
            "name": self.name,
            "trigger": trigger_to_dict(self.trigger),
            "actions": [a.to_dict() for a in self.actions],
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Automation:
        from aura.automation.triggers import parse_trigger

        if not data.get("id") or not data.get("name"):
            raise ValidationError("automation requires non-empty id and name")
        raw_actions = data.get("actions")
        if not isinstance(raw_actions, list) or not raw_actions:
            raise ValidationError(f"automation {data['id']!r} needs at least one action")
        trigger = parse_trigger(data.get("trigger"))
        if trigger.type == "event":
            raise ValidationError("automations support time, device and condition triggers only")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            trigger=trigger,
            actions=tuple(Action.from_dict(a) for a in raw_actions),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class RuleAction:
    """Built-in rule action: a registered action kind plus its parameters."""

    type: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AutomationRule:
    """Scheduler-owned rule with a single action."""

    id: str
    name: str
    trigger: Trigger
    action: RuleAction
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        from aura.automation.triggers import trigger_to_dict

        return {
            "id": self.id,
            "name": self.name,
            "trigger": trigger_to_dict(self.trigger),
            "action": {"type": self.action.type, "params": self.action.params},
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutomationRule:
        from aura.automation.triggers import parse_trigger

        if not data.get("id") or not data.get("name"):
            raise ValidationError("rule requires non-empty id and name")
        action = data.get("action") or {}
        if not isinstance(action, dict) or not action.get("type"):
            raise ValidationError(f"rule {data['id']!r} action requires a type")
        trigger = parse_trigger(data.get("trigger"))
        if trigger.type == "device":
            raise ValidationError("rules support time, event and condition triggers only")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            trigger=trigger,
            action=RuleAction(type=str(action["type"]), params=dict(action.get("params") or {})),
            enabled=bool(data.get("enabled", True)),
        )


# ── Emotional state & personality ─────────────────────────────────────


@dataclass(frozen=True)
class EmotionalState:
    mood: Mood = Mood.CALM
    energy: int = 70
    stress: int = 30
    timestamp: datetime | None = None
    context: str | None = None

    def __post_init__(self):
        for name in ("energy", "stress"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 100:
                raise ValidationError(f"{name} must be an integer in [0, 100], got {value!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "mood": self.mood.value,
            "energy": self.energy,
            "stress": self.stress,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmotionalState:
        ts = data.get("timestamp")
        return cls(
            mood=parse_enum(Mood, data.get("mood", "calm"), "mood"),
            energy=int(data.get("energy", 70)),
            stress=int(data.get("stress", 30)),
            timestamp=parse_timestamp(ts) if ts else None,
            context=data.get("context"),
        )


@dataclass(frozen=True)
class EmotionalResponse:
    message: str
    tone: str  # casual, formal, concerned, excited
    theme_mood: ThemeMood
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PersonalityTraits:
    humor: int = 70
    formality: int = 40
    sarcasm: int = 60
    empathy: int = 80

    def __post_init__(self):
        for name in ("humor", "formality", "sarcasm", "empathy"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 100:
                raise ValidationError(f"trait {name} must be an integer in [0, 100], got {value!r}")

    def to_dict(self) -> dict[str, int]:
        return {"humor": self.humor, "formality": self.formality, "sarcasm": self.sarcasm, "empathy": self.empathy}


@dataclass(frozen=True)
class PersonalityResponse:
    message: str
    tone: Tone
    emoji: str | None = None
