"""Tests for aura.automation.triggers: parsing, serialization and matching."""

from datetime import datetime

import pytest

from aura.automation.triggers import (
    ConditionTrigger,
    DeviceTrigger,
    EventTrigger,
    TimeTrigger,
    parse_trigger,
    trigger_to_dict,
)
from aura.errors import ValidationError


class TestParseTime:
    def test_hour_minute_mapping(self):
        trigger = parse_trigger({"type": "time", "value": {"hour": 8, "minute": 0}})
        assert trigger == TimeTrigger(hour=8, minute=0)

    def test_hh_mm_string(self):
        assert parse_trigger({"type": "time", "value": "22:15"}) == TimeTrigger(22, 15)

    def test_iso_timestamp_reduced_to_hour_minute(self):
        trigger = parse_trigger({"type": "time", "value": "2026-03-02T07:45:30"})
        assert trigger == TimeTrigger(7, 45)

    def test_datetime_value(self):
        assert parse_trigger({"type": "time", "value": datetime(2026, 1, 1, 6, 5)}) == TimeTrigger(6, 5)

    @pytest.mark.parametrize("value", [{"hour": 24, "minute": 0}, {"hour": 8, "minute": 60}, {"hour": "8"}])
    def test_out_of_range_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_trigger({"type": "time", "value": value})

    def test_garbage_string_rejected(self):
        with pytest.raises(ValidationError):
            parse_trigger({"type": "time", "value": "breakfast"})


class TestParseOther:
    def test_device_trigger(self):
        trigger = parse_trigger(
            {
                "type": "device",
                "value": {"deviceId": "thermostat-1", "metric": "temperature", "op": ">", "threshold": 25},
            }
        )
        assert trigger == DeviceTrigger("thermostat-1", "temperature", ">", 25.0)

    def test_condition_default_operator(self):
        trigger = parse_trigger({"type": "condition", "value": {"metric": "stress", "threshold": 70}})
        assert trigger == ConditionTrigger("stress", ">", 70.0)

    def test_event_trigger(self):
        assert parse_trigger({"type": "event", "value": {"event": "device_state_changed"}}) == EventTrigger(
            "device_state_changed"
        )

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="unknown trigger type"):
            parse_trigger({"type": "moon_phase", "value": {}})

    def test_unknown_operator(self):
        with pytest.raises(ValidationError, match="unknown operator"):
            parse_trigger({"type": "condition", "value": {"metric": "stress", "op": "~", "threshold": 1}})

    def test_non_numeric_threshold(self):
        with pytest.raises(ValidationError):
            parse_trigger({"type": "condition", "value": {"metric": "stress", "threshold": "high"}})

    def test_missing_device_id(self):
        with pytest.raises(ValidationError, match="deviceId"):
            parse_trigger({"type": "device", "value": {"metric": "temperature", "threshold": 1}})

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            parse_trigger("time")


class TestSerialization:
    @pytest.mark.parametrize(
        "trigger",
        [
            TimeTrigger(8, 30),
            DeviceTrigger("light-1", "brightness", "<=", 10.0),
            ConditionTrigger("energy", "<", 30.0),
            EventTrigger("preference_updated"),
        ],
    )
    def test_to_dict_parses_back(self, trigger):
        assert parse_trigger(trigger_to_dict(trigger)) == trigger

    def test_device_dict_uses_device_id_key(self):
        raw = trigger_to_dict(DeviceTrigger("thermostat-1", "temperature", ">", 25.0))
        assert raw == {
            "type": "device",
            "value": {"deviceId": "thermostat-1", "metric": "temperature", "op": ">", "threshold": 25.0},
        }


class TestMatching:
    def test_time_exact_minute_only(self):
        trigger = TimeTrigger(8, 0)
        assert trigger.matches(datetime(2026, 1, 5, 8, 0, 59))
        assert not trigger.matches(datetime(2026, 1, 5, 8, 1))

    def test_device_predicate(self):
        trigger = DeviceTrigger("thermostat-1", "temperature", ">", 25)
        assert trigger.matches("thermostat-1", {"temperature": 26})
        assert not trigger.matches("thermostat-1", {"temperature": 25})
        assert not trigger.matches("thermostat-2", {"temperature": 30})

    def test_missing_or_non_numeric_metric_never_matches(self):
        trigger = ConditionTrigger("stress", ">", 70)
        assert not trigger.matches({})
        assert not trigger.matches({"stress": None})
        assert not trigger.matches({"stress": "very"})
        assert not trigger.matches({"stress": True})

    def test_numeric_strings_are_compared(self):
        assert ConditionTrigger("temperature", ">=", 20).matches({"temperature": "21.5"})
