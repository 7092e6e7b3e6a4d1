"""Trigger variants — time, device, condition and event triggers.

Triggers are a closed set of frozen dataclasses discriminated by ``type``.
``parse_trigger`` is the only way external dicts become triggers; it
rejects anything malformed with ValidationError.
"""

import operator
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from aura.errors import ValidationError


OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


def _compare(value: Any, op: str, threshold: float) -> bool:
    """Numeric comparison; missing or non-numeric values never match."""
    if value is None or isinstance(value, bool):
        return False
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return False
    return OPERATORS[op](numeric, threshold)


@dataclass(frozen=True)
class TimeTrigger:
    """Fires when wall-clock hour and minute match exactly."""

    hour: int
    minute: int
    type: Literal["time"] = "time"

    def matches(self, now: datetime) -> bool:
        return now.hour == self.hour and now.minute == self.minute


@dataclass(frozen=True)
class DeviceTrigger:
    """Fires when ``device_id``'s new state satisfies ``metric op threshold``."""

    device_id: str
    metric: str
    op: str
    threshold: float
    type: Literal["device"] = "device"

    def matches(self, device_id: str, state: Mapping[str, Any]) -> bool:
        if device_id != self.device_id:
            return False
        return _compare(state.get(self.metric), self.op, self.threshold)


@dataclass(frozen=True)
class ConditionTrigger:
    """Compares a live metric (stress, energy, temperature...) with a threshold."""

    metric: str
    op: str
    threshold: float
    type: Literal["condition"] = "condition"

    def matches(self, metrics: Mapping[str, Any]) -> bool:
        return _compare(metrics.get(self.metric), self.op, self.threshold)


@dataclass(frozen=True)
class EventTrigger:
    """Fires when a named hub event is published."""

    event: str
    type: Literal["event"] = "event"


Trigger = TimeTrigger | DeviceTrigger | ConditionTrigger | EventTrigger


def _require(value: Mapping[str, Any], key: str, kind: str) -> Any:
    if key not in value or value[key] is None:
        raise ValidationError(f"{kind} trigger missing {key!r}")
    return value[key]


def _number(raw: Any, what: str) -> float:
    if isinstance(raw, bool):
        raise ValidationError(f"{what} must be numeric, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be numeric, got {raw!r}") from None


def _operator(raw: Any) -> str:
    op = str(raw or ">")
    if op not in OPERATORS:
        raise ValidationError(f"unknown operator {op!r} (expected one of {sorted(OPERATORS)})")
    return op


def _parse_time(value: Any) -> TimeTrigger:
    # Prediction-derived automations carry an ISO timestamp; only hour:minute matters.
    if isinstance(value, datetime):
        return TimeTrigger(hour=value.hour, minute=value.minute)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            try:
                parsed = datetime.strptime(value, "%H:%M")
            except ValueError:
                raise ValidationError(f"unparseable time trigger {value!r}") from None
        return TimeTrigger(hour=parsed.hour, minute=parsed.minute)
    if not isinstance(value, Mapping):
        raise ValidationError(f"time trigger value must be a mapping or time string, got {value!r}")

    hour = _require(value, "hour", "time")
    minute = value.get("minute", 0)
    if isinstance(hour, bool) or not isinstance(hour, int) or not 0 <= hour <= 23:
        raise ValidationError(f"time trigger hour must be 0-23, got {hour!r}")
    if isinstance(minute, bool) or not isinstance(minute, int) or not 0 <= minute <= 59:
        raise ValidationError(f"time trigger minute must be 0-59, got {minute!r}")
    return TimeTrigger(hour=hour, minute=minute)


def parse_trigger(raw: Any) -> Trigger:
    """Build a trigger from its ``{"type": ..., "value": ...}`` form.

    Raises:
        ValidationError: unknown type or malformed value.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(f"trigger must be a mapping, got {type(raw).__name__}")
    kind = raw.get("type")
    value = raw.get("value")

    if kind == "time":
        return _parse_time(value)

    if not isinstance(value, Mapping):
        raise ValidationError(f"{kind} trigger value must be a mapping")

    if kind == "device":
        return DeviceTrigger(
            device_id=str(_require(value, "deviceId", "device")),
            metric=str(_require(value, "metric", "device")),
            op=_operator(value.get("op")),
            threshold=_number(_require(value, "threshold", "device"), "device threshold"),
        )
    if kind == "condition":
        return ConditionTrigger(
            metric=str(_require(value, "metric", "condition")),
            op=_operator(value.get("op")),
            threshold=_number(_require(value, "threshold", "condition"), "condition threshold"),
        )
    if kind == "event":
        return EventTrigger(event=str(_require(value, "event", "event")))

    raise ValidationError(f"unknown trigger type {kind!r}")


def trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    """Inverse of parse_trigger."""
    match trigger:
        case TimeTrigger(hour=hour, minute=minute):
            value: dict[str, Any] = {"hour": hour, "minute": minute}
        case DeviceTrigger(device_id=device_id, metric=metric, op=op, threshold=threshold):
            value = {"deviceId": device_id, "metric": metric, "op": op, "threshold": threshold}
        case ConditionTrigger(metric=metric, op=op, threshold=threshold):
            value = {"metric": metric, "op": op, "threshold": threshold}
        case EventTrigger(event=event):
            value = {"event": event}
        case _:
            raise ValidationError(f"not a trigger: {trigger!r}")
    return {"type": trigger.type, "value": value}
