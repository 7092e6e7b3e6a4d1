"""Tests for aura.modules.predictions: builders, confidence policy and application."""

from datetime import datetime, timedelta

import pytest

from aura.automation.models import (
    Interaction,
    InteractionType,
    Observation,
    PatternBundle,
    Prediction,
    PredictionType,
)
from aura.errors import NotInitializedError, ValidationError
from aura.modules.predictions import PredictionModule, combine_confidence, generate_predictions

MONDAY = datetime(2026, 1, 5)


def _routine(confidence=0.9, **extra):
    value = {"hour": 7, "label": "lights on", "count": 7, "minute": 30, **extra}
    return Observation("lights on", value, confidence)


def _behavior_prediction(pid, confidence):
    return Prediction(
        id=pid,
        type=PredictionType.BEHAVIOR,
        confidence=confidence,
        data={
            "name": "Routine: lights on",
            "hour": 7,
            "minute": 30,
            "actions": [{"deviceId": "assistant", "action": "notify", "params": {"message": "Lights?"}}],
        },
        timestamp=MONDAY,
    )


# ── Confidence ──────────────────────────────────────────────────────────


class TestCombineConfidence:
    def test_empty_is_zero(self):
        assert combine_confidence([]) == 0.0

    def test_weighted_mean(self):
        assert combine_confidence([(0.6, 1.0), (0.4, 0.5)]) == pytest.approx(0.8)

    def test_clamped(self):
        assert combine_confidence([(1.0, 1.7)]) == 1.0
        assert combine_confidence([(1.0, -0.2)]) == 0.0

    def test_monotonic_in_each_confidence(self):
        low = combine_confidence([(0.6, 0.5), (0.4, 0.5)])
        high = combine_confidence([(0.6, 0.5), (0.4, 0.9)])
        assert high >= low


# ── Builders ────────────────────────────────────────────────────────────


class TestGeneratePredictions:
    @pytest.mark.parametrize("kind", list(PredictionType))
    def test_empty_patterns_yield_nothing(self, kind):
        assert generate_predictions(kind, PatternBundle()) == []

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            generate_predictions("astrology", PatternBundle())

    def test_behavior_with_device_sets_state(self):
        patterns = PatternBundle(
            time_based={"routine_times": [_routine(device_id="light-1", state={"on": True})]},
        )
        [prediction] = generate_predictions("behavior", patterns, now=MONDAY, id_factory=lambda: "pred_fixed")
        assert prediction.id == "pred_fixed"
        assert prediction.confidence == pytest.approx(0.9)
        assert prediction.data["name"] == "Routine: lights on"
        assert prediction.data["actions"] == [{"deviceId": "light-1", "action": "set_state", "params": {"on": True}}]

    def test_behavior_combines_command_and_window(self):
        patterns = PatternBundle(
            time_based={
                "routine_times": [_routine(confidence=0.8)],
                "active_hours": [Observation("active_hours", {"start": 7, "end": 8}, 1.0)],
            },
            interaction_based={"frequent_commands": [Observation("lights on", {"count": 7}, 1.0)]},
        )
        [prediction] = generate_predictions(PredictionType.BEHAVIOR, patterns)
        assert prediction.confidence == pytest.approx(0.6 * 0.8 + 0.25 + 0.15)
        assert prediction.data["actions"][0]["deviceId"] == "assistant"

    def test_one_off_appointment_stays_below_threshold(self):
        patterns = PatternBundle(
            schedule_based={
                "next_event": [
                    Observation("Dentist", {"title": "Dentist", "start": "2026-01-05T14:00:00"}, 1.0)
                ]
            }
        )
        [prediction] = generate_predictions("schedule", patterns)
        assert prediction.confidence == pytest.approx(0.3)
        assert (prediction.data["hour"], prediction.data["minute"]) == (13, 45)

    def test_recurring_reminder_fifteen_minutes_early(self):
        patterns = PatternBundle(
            schedule_based={
                "recurring": [Observation("Standup", {"title": "Standup", "hour": 9, "minute": 30, "days": 5}, 1.0)],
                "conflicts": [Observation("Dentist / Call", {}, 1.0)],
            }
        )
        [prediction] = generate_predictions("schedule", patterns)
        assert prediction.confidence == pytest.approx(0.7)
        assert prediction.data["name"] == "Reminder: Standup"
        assert (prediction.data["hour"], prediction.data["minute"]) == (9, 15)
        assert prediction.data["event_time"] == "09:30"
        assert prediction.data["conflicts"] == ["Dentist / Call"]

    def test_preference_device_state(self):
        patterns = PatternBundle(
            preference_based={
                "temperature": [Observation("temperature", 22, 0.8)],
                "lighting": [Observation("lighting", 60, 0.6)],
                "music": [],
            }
        )
        [prediction] = generate_predictions("preference", patterns)
        assert prediction.data["device_state"] == {
            "thermostat": {"temperature": 22},
            "light": {"brightness": 60},
        }
        assert prediction.confidence == pytest.approx((0.4 * 0.8 + 0.35 * 0.6) / 0.75, abs=1e-4)

    def test_environment_drift_targets_preferred_temperature(self):
        trend = {"direction": "rising", "slope_per_hour": 1.0, "mean": 22.5, "latest": 25.0, "projected": 26.0}
        patterns = PatternBundle(
            environment_based={"temperature": [Observation("temperature_trend", trend, 1.0)]},
            preference_based={"temperature": [Observation("temperature", 22, 0.8)]},
        )
        [prediction] = generate_predictions("environment", patterns)
        assert prediction.confidence == pytest.approx(0.6 + 0.4 * 0.8)
        assert prediction.data["device_state"] == {"thermostat": {"temperature": 22}}
        assert prediction.data["trends"]["temperature"]["direction"] == "rising"

    def test_environment_without_preference_changes_nothing(self):
        trend = {"direction": "steady", "slope_per_hour": 0.0, "mean": 50, "latest": 50, "projected": 50}
        patterns = PatternBundle(environment_based={"humidity": [Observation("humidity_trend", trend, 0.5)]})
        [prediction] = generate_predictions("environment", patterns)
        assert prediction.data["device_state"] == {}


# ── Module ──────────────────────────────────────────────────────────────


class TestPredictionCache:
    async def test_not_initialized(self, hub):
        module = PredictionModule(hub, context=None, registry=None)
        with pytest.raises(NotInitializedError):
            module.get_predictions()
        with pytest.raises(NotInitializedError):
            await module.save_predictions([])

    async def test_save_and_get_newest_first(self, components):
        predictions = components.predictions
        older = _behavior_prediction("p1", 0.5)
        newer = Prediction("p2", PredictionType.SCHEDULE, 0.4, {}, MONDAY + timedelta(hours=1))
        await predictions.save_predictions([older, newer])

        assert [p.id for p in predictions.get_predictions()] == ["p2", "p1"]
        assert [p.id for p in predictions.get_predictions("behavior")] == ["p1"]

    async def test_cache_warmed_from_store(self, components):
        await components.predictions.save_predictions([_behavior_prediction("p1", 0.5)])
        await components.predictions.initialize()
        assert [p.id for p in components.predictions.get_predictions()] == ["p1"]

    async def test_prune_drops_old_entries(self, components):
        old = Prediction("old", PredictionType.BEHAVIOR, 0.5, {}, datetime.now() - timedelta(days=60))
        fresh = Prediction("fresh", PredictionType.BEHAVIOR, 0.5, {}, datetime.now())
        await components.predictions.save_predictions([old, fresh])
        assert await components.predictions.prune(retention_days=30) == 1
        assert [p.id for p in components.predictions.get_predictions()] == ["fresh"]


class TestApplyPredictions:
    async def test_below_threshold_not_applied(self, components):
        applied = await components.predictions.apply_predictions([_behavior_prediction("p1", 0.69)])
        assert applied == []
        assert components.registry.get_automations() == []

    async def test_at_threshold_creates_automation(self, components):
        applied = await components.predictions.apply_predictions([_behavior_prediction("p1", 0.71)])
        assert applied == ["p1"]
        [automation] = components.registry.get_automations()
        assert automation.name == "Routine: lights on"
        assert (automation.trigger.hour, automation.trigger.minute) == (7, 30)

    async def test_repeat_prediction_replaces_and_keeps_enabled_flag(self, components):
        """A second prediction for the same routine updates the one automation."""
        await components.predictions.apply_predictions([_behavior_prediction("p1", 0.8)])
        [automation] = components.registry.get_automations()
        await components.registry.toggle_automation(automation.id, False)

        await components.predictions.apply_predictions([_behavior_prediction("p2", 0.9)])
        [replaced] = components.registry.get_automations()
        assert replaced.id == automation.id
        assert not replaced.enabled

    async def test_device_state_applied_once(self, components):
        registry = components.registry
        await registry.add_device({"id": "thermostat-1", "name": "Hall", "type": "thermostat", "state": {"temperature": 19}})

        def preference(pid):
            return Prediction(pid, PredictionType.PREFERENCE, 0.8, {"device_state": {"thermostat": {"temperature": 22}}})

        assert await components.predictions.apply_predictions([preference("p1")]) == ["p1"]
        assert registry.get_device("thermostat-1").state == {"temperature": 22}
        latest = components.context.snapshot().recent_interactions[0]
        assert latest.metadata["source"] == "system"
        assert await components.predictions.apply_predictions([preference("p2")]) == []

    async def test_offline_device_skipped(self, components):
        registry = components.registry
        await registry.add_device(
            {"id": "light-1", "name": "Lamp", "type": "light", "status": "offline", "state": {"brightness": 10}}
        )
        prediction = Prediction("p1", PredictionType.PREFERENCE, 0.9, {"device_state": {"light": {"brightness": 60}}})
        assert await components.predictions.apply_predictions([prediction]) == []
        assert registry.get_device("light-1").state == {"brightness": 10}


class TestRunCycle:
    async def test_empty_context_produces_nothing(self, components):
        assert await components.predictions.run_cycle(MONDAY) == []

    async def test_week_of_routine_becomes_automation(self, components):
        """A consistent 07:30 command over a week yields a confident behavior prediction."""
        for day in range(7):
            await components.context.record_interaction(
                Interaction(
                    InteractionType.COMMAND_EXECUTION,
                    {"command": "lights on"},
                    timestamp=(MONDAY + timedelta(days=day)).replace(hour=7, minute=30),
                )
            )

        predictions = await components.predictions.run_cycle(MONDAY + timedelta(days=7))

        assert all(0.0 <= p.confidence <= 1.0 for p in predictions)
        behavior = [p for p in predictions if p.type is PredictionType.BEHAVIOR]
        assert behavior and behavior[0].confidence >= 0.7
        assert components.registry.find_automation_by_name("Routine: lights on") is not None
        assert components.predictions.get_predictions("behavior")[0].id == behavior[0].id

    async def test_own_execution_records_not_mined(self, components):
        """Daily rule firings and system device writes never become routines."""
        for day in range(7):
            date = MONDAY + timedelta(days=day)
            await components.context.record_interaction(
                Interaction(InteractionType.FEATURE_USAGE, {"feature": "rule_executed"}, timestamp=date.replace(hour=8))
            )
            await components.context.record_interaction(
                Interaction(
                    InteractionType.COMMAND_EXECUTION,
                    {"command": "set heater-1", "device_id": "heater-1"},
                    {"device_id": "heater-1", "source": "system"},
                    timestamp=date.replace(hour=6),
                )
            )

        await components.predictions.run_cycle(MONDAY + timedelta(days=7))

        assert components.registry.find_automation_by_name("Routine: rule_executed") is None
        assert components.registry.find_automation_by_name("Routine: set heater-1") is None
        assert components.registry.get_automations() == []
