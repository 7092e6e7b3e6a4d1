"""Prediction Generator — typed predictions from patterns, and their application.

``generate_predictions`` is a pure function of a PatternBundle. The
PredictionModule owns the prediction cache (the ``predictions`` table
mirrored in memory), runs the analysis cycle on the hub's bounded work
pool, and applies predictions at or above the automation threshold
through the Device Registry.
"""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from aura.automation.models import (
    DeviceStatus,
    Observation,
    PatternBundle,
    Prediction,
    PredictionType,
    parse_enum,
)
from aura.config import PredictionConfig
from aura.errors import NotInitializedError
from aura.hub.constants import ASSISTANT_TARGET, EVENT_PREDICTIONS_SAVED, MODULE_PREDICTIONS, SOURCE_SYSTEM
from aura.hub.core import AutomationHub, Module
from aura.modules.context_store import ContextStore
from aura.modules.pattern_analyzer import find_patterns
from aura.modules.registry import DeviceRegistry

# Weights per contributing observation; confidence is their weighted mean.
BEHAVIOR_WEIGHTS = {"routine": 0.6, "command": 0.25, "active_hours": 0.15}
PREFERENCE_WEIGHTS = {"temperature": 0.4, "lighting": 0.35, "music": 0.25}
SCHEDULE_WEIGHTS = {"recurring": 0.7, "next_event": 0.3}
ENVIRONMENT_WEIGHTS = {"trend": 0.6, "preference": 0.4}

REMINDER_LEAD = timedelta(minutes=15)
MIN_TEMPERATURE_DRIFT = 1.0


def combine_confidence(contributions: list[tuple[float, float]]) -> float:
    """Weighted mean of ``(weight, confidence)`` pairs, clamped to [0, 1].

    Non-decreasing in every confidence for a fixed set of weights.
    """
    total_weight = sum(weight for weight, _ in contributions if weight > 0)
    if total_weight <= 0:
        return 0.0
    score = sum(weight * conf for weight, conf in contributions if weight > 0) / total_weight
    return min(1.0, max(0.0, score))


def _first(group: dict[str, list[Observation]], key: str) -> Observation | None:
    observations = group.get(key) or []
    return observations[0] if observations else None


def _notify(message: str) -> dict[str, Any]:
    return {"deviceId": ASSISTANT_TARGET, "action": "notify", "params": {"message": message}}


def _behavior(patterns: PatternBundle) -> tuple[float, dict[str, Any]] | None:
    routine = _first(patterns.time_based, "routine_times")
    if routine is None:
        return None
    label = routine.value["label"]
    hour, minute = routine.value["hour"], routine.value.get("minute", 0)

    contributions = [(BEHAVIOR_WEIGHTS["routine"], routine.confidence)]
    command = next((o for o in patterns.interaction_based.get("frequent_commands", []) if o.label == label), None)
    if command is not None:
        contributions.append((BEHAVIOR_WEIGHTS["command"], command.confidence))
    active = _first(patterns.time_based, "active_hours")
    if active is not None:
        contributions.append((BEHAVIOR_WEIGHTS["active_hours"], active.confidence))

    if routine.value.get("device_id"):
        actions = [{"deviceId": routine.value["device_id"], "action": "set_state", "params": routine.value["state"]}]
    else:
        actions = [_notify(f"It's about time for {label}.")]

    return combine_confidence(contributions), {
        "name": f"Routine: {label}",
        "action": label,
        "hour": hour,
        "minute": minute,
        "actions": actions,
    }


def _preference(patterns: PatternBundle) -> tuple[float, dict[str, Any]] | None:
    contributions = []
    preferences: dict[str, Any] = {}
    for category, weight in PREFERENCE_WEIGHTS.items():
        top = _first(patterns.preference_based, category)
        if top is None:
            continue
        preferences[category] = top.value
        contributions.append((weight, top.confidence))
    if not contributions:
        return None

    device_state: dict[str, dict[str, Any]] = {}
    if isinstance(preferences.get("temperature"), (int, float)):
        device_state["thermostat"] = {"temperature": preferences["temperature"]}
    if isinstance(preferences.get("lighting"), (int, float)):
        device_state["light"] = {"brightness": preferences["lighting"]}
    return combine_confidence(contributions), {"preferences": preferences, "device_state": device_state}


def _schedule(patterns: PatternBundle) -> tuple[float, dict[str, Any]] | None:
    recurring = _first(patterns.schedule_based, "recurring")
    upcoming = _first(patterns.schedule_based, "next_event")
    if recurring is None and upcoming is None:
        return None

    # a one-off appointment alone never reaches the automation threshold
    contributions = [
        (SCHEDULE_WEIGHTS["recurring"], recurring.confidence if recurring else 0.0),
        (SCHEDULE_WEIGHTS["next_event"], upcoming.confidence if upcoming else 0.0),
    ]
    if recurring is not None:
        title = recurring.value["title"]
        at = datetime(2000, 1, 1, recurring.value["hour"], recurring.value["minute"])
    else:
        title = upcoming.value["title"]
        at = datetime.fromisoformat(upcoming.value["start"])
    remind = at - REMINDER_LEAD

    data = {
        "name": f"Reminder: {title}",
        "title": title,
        "hour": remind.hour,
        "minute": remind.minute,
        "event_time": f"{at.hour:02d}:{at.minute:02d}",
        "conflicts": [o.label for o in patterns.schedule_based.get("conflicts", [])],
        "actions": [_notify(f"{title} starts at {at.hour:02d}:{at.minute:02d}.")],
    }
    if upcoming is not None:
        data["next_event"] = upcoming.value
    return combine_confidence(contributions), data


def _environment(patterns: PatternBundle) -> tuple[float, dict[str, Any]] | None:
    if not patterns.environment_based:
        return None
    trends = {kind: obs[0] for kind, obs in patterns.environment_based.items() if obs}
    if not trends:
        return None
    primary = trends.get("temperature") or max(trends.values(), key=lambda o: o.confidence)

    contributions = [(ENVIRONMENT_WEIGHTS["trend"], primary.confidence)]
    device_state: dict[str, dict[str, Any]] = {}
    preferred = _first(patterns.preference_based, "temperature")
    if "temperature" in trends and preferred is not None and isinstance(preferred.value, (int, float)):
        contributions.append((ENVIRONMENT_WEIGHTS["preference"], preferred.confidence))
        if abs(trends["temperature"].value["projected"] - preferred.value) >= MIN_TEMPERATURE_DRIFT:
            device_state["thermostat"] = {"temperature": preferred.value}

    return combine_confidence(contributions), {
        "trends": {kind: obs.value for kind, obs in trends.items()},
        "device_state": device_state,
    }


_BUILDERS = {
    PredictionType.BEHAVIOR: _behavior,
    PredictionType.PREFERENCE: _preference,
    PredictionType.SCHEDULE: _schedule,
    PredictionType.ENVIRONMENT: _environment,
}


def generate_predictions(
    prediction_type: PredictionType | str,
    patterns: PatternBundle,
    now: datetime | None = None,
    id_factory: Callable[[], str] | None = None,
) -> list[Prediction]:
    """Build predictions of ``prediction_type`` from ``patterns``.

    Empty or irrelevant patterns yield an empty list.
    """
    kind = parse_enum(PredictionType, prediction_type, "prediction type")
    built = _BUILDERS[kind](patterns)
    if built is None:
        return []
    confidence, data = built
    make_id = id_factory or (lambda: f"pred_{uuid.uuid4().hex}")
    return [
        Prediction(
            id=make_id(),
            type=kind,
            confidence=round(confidence, 4),
            data=data,
            timestamp=now or datetime.now(),
        )
    ]


class PredictionModule(Module):
    """Owns the prediction cache and the periodic analysis cycle."""

    def __init__(
        self,
        hub: AutomationHub,
        context: ContextStore,
        registry: DeviceRegistry,
        config: PredictionConfig | None = None,
        analysis_interval: timedelta | None = timedelta(minutes=5),
    ):
        super().__init__(MODULE_PREDICTIONS, hub)
        self.context = context
        self.registry = registry
        self.config = config or PredictionConfig()
        self.analysis_interval = analysis_interval
        self._cache: dict[str, Prediction] | None = None

    async def initialize(self):
        """Warm the cache from storage and schedule the analysis cycle."""
        self.logger.info("Prediction module initializing...")
        cache = {}
        for raw in await self.hub.store.list_predictions(self.context.user_id):
            prediction = Prediction.from_dict(raw)
            cache[prediction.id] = prediction
        self._cache = cache
        self.logger.info("Loaded %d cached predictions", len(cache))

        if self.analysis_interval:
            await self.hub.schedule_task(
                task_id="prediction_cycle",
                coro=self._submit_cycle,
                interval=self.analysis_interval,
                run_immediately=False,
            )

    async def shutdown(self):
        self._cache = None

    async def _submit_cycle(self):
        # the cycle runs on the work pool so scheduler ticks are never delayed
        self.hub.submit("prediction_cycle", self.run_cycle)

    # ── Cache ───────────────────────────────────────────────────────────

    async def save_predictions(self, predictions: list[Prediction]):
        """Persist ``predictions`` and add them to the cache. Never removes entries."""
        if self._cache is None:
            raise NotInitializedError("Prediction module not initialized")
        if not predictions:
            return
        await self.hub.store.insert_predictions(self.context.user_id, [p.to_dict() for p in predictions])
        for prediction in predictions:
            self._cache[prediction.id] = prediction
        await self.hub.publish(
            EVENT_PREDICTIONS_SAVED,
            {"count": len(predictions), "types": sorted({p.type.value for p in predictions})},
        )

    def get_predictions(self, prediction_type: PredictionType | str | None = None) -> list[Prediction]:
        """Cached predictions, newest first, optionally filtered by type."""
        if self._cache is None:
            raise NotInitializedError("Prediction module not initialized")
        kind = parse_enum(PredictionType, prediction_type, "prediction type") if prediction_type else None
        predictions = [p for p in self._cache.values() if kind is None or p.type == kind]
        return sorted(predictions, key=lambda p: p.timestamp, reverse=True)

    async def prune(self, retention_days: int = 30) -> int:
        """Delete predictions older than ``retention_days`` from storage and cache."""
        if self._cache is None:
            raise NotInitializedError("Prediction module not initialized")
        deleted = await self.hub.store.prune_predictions(retention_days)
        cutoff = datetime.now() - timedelta(days=retention_days)
        self._cache = {pid: p for pid, p in self._cache.items() if p.timestamp >= cutoff}
        return deleted

    # ── Cycle ───────────────────────────────────────────────────────────

    async def run_cycle(self, now: datetime | None = None) -> list[Prediction]:
        """Snapshot → patterns → predictions of every type → save → apply."""
        now = now or datetime.now()
        patterns = find_patterns(
            self.context.snapshot(),
            now,
            min_samples=self.config.min_samples,
            sparse_cap=self.config.sparse_confidence_cap,
        )
        if patterns.is_empty():
            self.logger.debug("No patterns this cycle")
            return []

        predictions: list[Prediction] = []
        for kind in PredictionType:
            predictions.extend(generate_predictions(kind, patterns, now))

        await self.save_predictions(predictions)
        applied = await self.apply_predictions(predictions)
        self.logger.info("Prediction cycle: %d predictions, %d applied", len(predictions), len(applied))
        return predictions

    async def apply_predictions(self, predictions: list[Prediction]) -> list[str]:
        """Turn confident predictions into automations or device state.

        Returns:
            Ids of the predictions that changed something
        """
        applied = []
        for prediction in predictions:
            if prediction.confidence < self.config.automation_threshold:
                continue
            try:
                if prediction.type in (PredictionType.BEHAVIOR, PredictionType.SCHEDULE):
                    changed = await self._apply_as_automation(prediction)
                else:
                    changed = await self._apply_device_state(prediction)
            except Exception as e:
                self.logger.error("Failed to apply prediction %s: %s", prediction.id, e)
                continue
            if changed:
                applied.append(prediction.id)
        return applied

    async def _apply_as_automation(self, prediction: Prediction) -> bool:
        data = prediction.data
        if not data.get("actions"):
            self.logger.info("Prediction %s has no actions, left unapplied", prediction.id)
            return False
        definition = {
            "name": data["name"],
            "trigger": {"type": "time", "value": {"hour": data["hour"], "minute": data["minute"]}},
            "actions": data["actions"],
            "enabled": True,
        }
        existing = self.registry.find_automation_by_name(data["name"])
        if existing is not None:
            await self.registry.replace_automation(existing.id, {**definition, "enabled": existing.enabled})
        else:
            await self.registry.create_automation(definition)
        return True

    async def _apply_device_state(self, prediction: Prediction) -> bool:
        changed = False
        for device_type, state in (prediction.data.get("device_state") or {}).items():
            devices = [d for d in self.registry.get_devices(device_type) if d.status == DeviceStatus.ONLINE]
            if not devices:
                self.logger.info("No online %s for prediction %s, left unapplied", device_type, prediction.id)
                continue
            for device in devices:
                if all(device.state.get(k) == v for k, v in state.items()):
                    continue
                await self.registry.update_device_state(device.id, state, source=SOURCE_SYSTEM)
                changed = True
        return changed
