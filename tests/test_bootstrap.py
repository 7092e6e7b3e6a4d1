"""End-to-end wiring: every module registered, initialized and talking to the others."""

from datetime import datetime

from aura.automation.models import Mood
from aura.hub.constants import (
    MODULE_CONTEXT,
    MODULE_EMOTIONAL,
    MODULE_PERSONALITY,
    MODULE_PREDICTIONS,
    MODULE_REGISTRY,
    MODULE_RULES,
)


class TestBuildHub:
    async def test_all_modules_running_in_order(self, components):
        assert list(components.hub.modules) == [
            MODULE_CONTEXT,
            MODULE_REGISTRY,
            MODULE_EMOTIONAL,
            MODULE_PERSONALITY,
            MODULE_RULES,
            MODULE_PREDICTIONS,
        ]
        health = await components.hub.health_check()
        assert health["status"] == "ok"
        assert set(health["modules"].values()) == {"running"}

    async def test_no_background_tasks(self, components):
        assert components.hub.tasks == set()

    async def test_device_update_reaches_rule_engine(self, components):
        """A committed device update runs device automations through the rule engine."""
        registry = components.registry
        await registry.add_device({"id": "thermostat-1", "name": "Hall", "type": "thermostat", "state": {"temperature": 20}})
        await registry.add_device({"id": "fan-1", "name": "Fan", "type": "switch"})
        await registry.create_automation(
            {
                "name": "Fan when hot",
                "trigger": {"type": "device", "value": {"deviceId": "thermostat-1", "metric": "temperature", "threshold": 25}},
                "actions": [{"deviceId": "fan-1", "action": "turn_on"}],
            }
        )

        await registry.update_device_state("thermostat-1", {"temperature": 27})

        assert registry.get_device("fan-1").state == {"on": True}

    async def test_chat_message_flows_into_rule_metrics(self, components):
        await components.personality.respond("I'm really stressed and angry")
        await components.personality.respond("still frustrated")
        await components.personality.respond("so annoyed")

        assert components.emotional.get_current_state().mood is Mood.ANGRY
        assert components.rules.current_metrics()["stress"] == 90
        assert await components.rules.check_condition_rules(now=datetime(2026, 1, 5, 15)) == ["stress-alert"]
        assert components.rules.messages
