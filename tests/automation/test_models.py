"""Tests for aura.automation.models: validation and dict conversion."""

from datetime import datetime, timedelta, timezone

import pytest

from aura.automation.models import (
    Action,
    Automation,
    AutomationRule,
    Device,
    DeviceStatus,
    DeviceType,
    EmotionalState,
    Interaction,
    InteractionType,
    Mood,
    Observation,
    PatternBundle,
    PersonalityTraits,
    Prediction,
    PredictionType,
    ScheduleEntry,
    parse_enum,
    parse_timestamp,
)
from aura.automation.triggers import DeviceTrigger, TimeTrigger
from aura.errors import ValidationError


# ── Enums and primitives ─────────────────────────────────────────────


class TestParseEnum:
    def test_valid_value(self):
        assert parse_enum(DeviceType, "thermostat", "device type") is DeviceType.THERMOSTAT

    def test_invalid_value_lists_allowed(self):
        with pytest.raises(ValidationError, match="light"):
            parse_enum(DeviceType, "toaster", "device type")


class TestParseTimestamp:
    def test_naive_passes_through(self):
        assert parse_timestamp("2026-01-05T08:00:00") == datetime(2026, 1, 5, 8, 0)

    def test_utc_suffix_becomes_naive_local(self):
        parsed = parse_timestamp("2026-01-05T08:00:00+00:00")
        assert parsed.tzinfo is None
        assert parsed == datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            parse_timestamp("yesterday-ish")


class TestInteraction:
    def test_from_dict_parses_timestamp(self):
        interaction = Interaction.from_dict(
            {"type": "chat_message", "content": "hi", "timestamp": "2026-02-01T09:30:00"}
        )
        assert interaction.type is InteractionType.CHAT_MESSAGE
        assert interaction.timestamp == datetime(2026, 2, 1, 9, 30)
        assert interaction.metadata == {}

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            Interaction.from_dict({"type": "telepathy", "content": "?"})

    def test_aware_timestamp_normalized(self):
        aware = datetime(2026, 1, 5, 8, 0, tzinfo=timezone(timedelta(hours=2)))
        interaction = Interaction(InteractionType.CHAT_MESSAGE, "hi", timestamp=aware)
        assert interaction.timestamp.tzinfo is None
        assert interaction.timestamp == aware.astimezone().replace(tzinfo=None)


class TestScheduleEntry:
    def test_optional_end(self):
        entry = ScheduleEntry.from_dict({"title": "Dentist", "start": "2026-02-01T14:00:00"})
        assert entry.end is None
        assert not entry.completed
        assert entry.to_dict()["end"] is None


# ── Patterns and predictions ─────────────────────────────────────────


class TestPatternBundle:
    def test_empty_bundle(self):
        assert PatternBundle().is_empty()
        assert PatternBundle(time_based={"routine_times": []}).is_empty()

    def test_non_empty_bundle(self):
        bundle = PatternBundle(interaction_based={"frequent_commands": [Observation("lights on", 4, 0.8)]})
        assert not bundle.is_empty()


class TestPrediction:
    @pytest.mark.parametrize("confidence", [-0.01, 1.01])
    def test_confidence_outside_unit_interval_rejected(self, confidence):
        with pytest.raises(ValidationError):
            Prediction(id="p", type=PredictionType.BEHAVIOR, confidence=confidence, data={})

    @pytest.mark.parametrize("confidence", [0.0, 1.0])
    def test_bounds_accepted(self, confidence):
        assert Prediction(id="p", type=PredictionType.SCHEDULE, confidence=confidence, data={}).confidence == confidence

    def test_from_dict(self):
        prediction = Prediction.from_dict(
            {
                "id": "pred_1",
                "type": "environment",
                "confidence": "0.8",
                "data": {"kind": "temperature"},
                "timestamp": "2026-02-01T10:00:00",
            }
        )
        assert prediction.type is PredictionType.ENVIRONMENT
        assert prediction.confidence == 0.8


# ── Devices and automations ──────────────────────────────────────────


class TestDevice:
    def test_defaults(self):
        device = Device.from_dict({"id": "light-1", "name": "Desk lamp", "type": "light"})
        assert device.status is DeviceStatus.ONLINE
        assert device.state == {}

    def test_copy_is_independent(self):
        device = Device("light-1", "Desk lamp", DeviceType.LIGHT, state={"on": True})
        clone = device.copy()
        clone.state["on"] = False
        assert device.state == {"on": True}

    @pytest.mark.parametrize(
        "data",
        [
            {"id": "", "name": "x", "type": "light"},
            {"id": "x", "name": "x", "type": "toaster"},
            {"id": "x", "name": "x", "type": "light", "state": ["on"]},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ValidationError):
            Device.from_dict(data)


class TestAutomation:
    def test_from_dict_accepts_snake_case_device_id(self):
        automation = Automation.from_dict(
            {
                "id": "automation_1",
                "name": "Cool down",
                "trigger": {"type": "device", "value": {"deviceId": "thermostat-1", "metric": "temperature", "threshold": 25}},
                "actions": [{"device_id": "fan-1", "action": "turn_on"}],
            }
        )
        assert automation.trigger == DeviceTrigger("thermostat-1", "temperature", ">", 25.0)
        assert automation.actions == (Action("fan-1", "turn_on"),)
        assert automation.enabled

    def test_to_dict_uses_device_id_key(self):
        automation = Automation("a1", "Wake", TimeTrigger(7, 0), (Action("light-1", "turn_on"),))
        assert automation.to_dict()["actions"] == [{"deviceId": "light-1", "action": "turn_on", "params": {}}]

    def test_requires_actions(self):
        with pytest.raises(ValidationError, match="at least one action"):
            Automation.from_dict({"id": "a", "name": "n", "trigger": {"type": "time", "value": "07:00"}, "actions": []})

    def test_event_trigger_rejected(self):
        with pytest.raises(ValidationError):
            Automation.from_dict(
                {
                    "id": "a",
                    "name": "n",
                    "trigger": {"type": "event", "value": {"event": "x"}},
                    "actions": [{"deviceId": "d", "action": "turn_on"}],
                }
            )


class TestAutomationRule:
    def test_round_trip(self):
        raw = {
            "id": "rule_1",
            "name": "Morning",
            "trigger": {"type": "time", "value": {"hour": 8, "minute": 0}},
            "action": {"type": "daily_summary", "params": {}},
            "enabled": False,
        }
        assert AutomationRule.from_dict(raw).to_dict() == raw

    def test_device_trigger_rejected(self):
        with pytest.raises(ValidationError):
            AutomationRule.from_dict(
                {
                    "id": "r",
                    "name": "n",
                    "trigger": {"type": "device", "value": {"deviceId": "d", "metric": "m", "threshold": 1}},
                    "action": {"type": "notify"},
                }
            )

    def test_action_type_required(self):
        with pytest.raises(ValidationError):
            AutomationRule.from_dict({"id": "r", "name": "n", "trigger": {"type": "time", "value": "08:00"}, "action": {}})


# ── Emotional state and personality ──────────────────────────────────


class TestEmotionalState:
    def test_defaults(self):
        state = EmotionalState()
        assert (state.mood, state.energy, state.stress) == (Mood.CALM, 70, 30)

    @pytest.mark.parametrize("field_name,value", [("energy", 101), ("stress", -1), ("energy", 50.5), ("stress", True)])
    def test_out_of_range_rejected(self, field_name, value):
        with pytest.raises(ValidationError):
            EmotionalState(**{field_name: value})


class TestPersonalityTraits:
    def test_defaults(self):
        assert PersonalityTraits().to_dict() == {"humor": 70, "formality": 40, "sarcasm": 60, "empathy": 80}

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            PersonalityTraits(humor=150)
