"""Rule Evaluator / Scheduler — fires rules and automations exactly once per trigger.

Three evaluation paths share the rule list and the registry:

- time check (every ``time_tick``): hour/minute match, deduplicated by the
  last-fired minute per rule so a tick period under one minute never fires
  twice in the same minute;
- condition check (every ``condition_tick``): edge-triggered, firing only
  on the transition from failing to passing;
- device check: called synchronously by the registry after a committed
  state update.

Every firing is isolated: a failing action is logged and the remaining
rules in the same tick still run.
"""

import asyncio
import random
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any

from aura.automation.actions import ActionContext, ActionRegistry, ActionResult
from aura.automation.models import Automation, AutomationRule, Device, InteractionType
from aura.automation.triggers import ConditionTrigger, EventTrigger, TimeTrigger
from aura.config import SchedulerConfig
from aura.errors import NotFoundError, ValidationError
from aura.hub.constants import (
    ASSISTANT_TARGET,
    EVENT_AUTOMATION_CHANGED,
    EVENT_AUTOMATION_FIRED,
    EVENT_RULE_FIRED,
    FEATURE_AUTOMATION_EXECUTED,
    FEATURE_RULE_EXECUTED,
    MODULE_RULES,
    SOURCE_SYSTEM,
    USAGE_AUTOMATION_RUN,
)
from aura.hub.core import AutomationHub, Module
from aura.modules.context_store import ContextStore
from aura.modules.daily_summary import build_daily_summary, format_summary, pending_items
from aura.modules.emotional import EmotionalTracker
from aura.modules.personality import PersonalityModule
from aura.modules.registry import DeviceRegistry

DEFAULT_RULES: list[dict[str, Any]] = [
    {
        "id": "morning-summary",
        "name": "Morning summary",
        "trigger": {"type": "time", "value": {"hour": 8, "minute": 0}},
        "action": {"type": "daily_summary"},
        "enabled": True,
    },
    {
        "id": "evening-check",
        "name": "Evening task check",
        "trigger": {"type": "time", "value": {"hour": 22, "minute": 0}},
        "action": {"type": "evening_check"},
        "enabled": True,
    },
    {
        "id": "stress-alert",
        "name": "Stress alert",
        "trigger": {"type": "condition", "value": {"metric": "stress", "op": ">", "threshold": 70}},
        "action": {"type": "suggest_break"},
        "enabled": True,
    },
]

BREAK_SUGGESTIONS = [
    "How about taking a short break?",
    "Take a deep breath and relax for a moment.",
    "Grab a glass of water and stretch a little.",
]

SWITCH_ACTIONS = {"turn_on": True, "turn_off": False}

# events the engine publishes itself; event rules never react to them
_OWN_EVENTS = frozenset({EVENT_RULE_FIRED, EVENT_AUTOMATION_FIRED})


class RuleEngine(Module):
    """Scheduler loop over AutomationRules and registry automations."""

    def __init__(
        self,
        hub: AutomationHub,
        context: ContextStore,
        registry: DeviceRegistry,
        emotional: EmotionalTracker,
        personality: PersonalityModule | None = None,
        config: SchedulerConfig | None = None,
        rng: random.Random | None = None,
    ):
        super().__init__(MODULE_RULES, hub)
        self.context = context
        self.registry = registry
        self.emotional = emotional
        self.personality = personality
        self.config = config or SchedulerConfig()
        self.rng = rng or random.Random()

        self._rules: list[AutomationRule] = []
        self._rule_lock = asyncio.Lock()
        self._last_fired: dict[str, datetime] = {}
        self._condition_state: dict[str, bool] = {}
        self._firing: set[str] = set()
        self.messages: deque[str] = deque(maxlen=50)

        self.actions = ActionRegistry()
        self.actions.register("daily_summary", self._action_daily_summary)
        self.actions.register("evening_check", self._action_evening_check)
        self.actions.register("suggest_break", self._action_suggest_break)
        self.actions.register("device_command", self._action_device_command)
        self.actions.register("notify", self._action_notify)

        registry.add_state_listener(self.on_device_state_changed)

    async def initialize(self):
        """Load rules (seeding defaults when none are stored) and start both loops."""
        self.logger.info("Rule engine initializing...")
        rules = []
        for raw in await self.hub.store.list_rules(self.context.user_id):
            try:
                rules.append(AutomationRule.from_dict(raw))
            except ValidationError as e:
                self.logger.warning("Skipping stored rule %s: %s", raw.get("id"), e)

        if not rules:
            rules = [AutomationRule.from_dict(r) for r in DEFAULT_RULES]
            await self.hub.store.replace_rules(self.context.user_id, [r.to_dict() for r in rules])
            self.logger.info("Seeded %d default rules", len(rules))
        self._rules = rules

        await self.hub.schedule_task(
            task_id="rule_time_check",
            coro=self.check_time_rules,
            interval=timedelta(seconds=self.config.time_tick),
            run_immediately=True,
        )
        await self.hub.schedule_task(
            task_id="rule_condition_check",
            coro=self.check_condition_rules,
            interval=timedelta(seconds=self.config.condition_tick),
            run_immediately=False,
        )

    async def on_event(self, event_type: str, data: dict[str, Any]):
        if event_type in _OWN_EVENTS:
            return
        if event_type == EVENT_AUTOMATION_CHANGED and data.get("change") == "deleted":
            key = f"automation:{data.get('id')}"
            self._last_fired.pop(key, None)
            self._condition_state.pop(key, None)
            return
        for rule in list(self._rules):
            if rule.enabled and isinstance(rule.trigger, EventTrigger) and rule.trigger.event == event_type:
                await self._fire_rule(rule, datetime.now(), extra=data)

    # ── Rule CRUD ───────────────────────────────────────────────────────

    def get_rules(self) -> list[AutomationRule]:
        return list(self._rules)

    def get_rule(self, rule_id: str) -> AutomationRule | None:
        return next((r for r in self._rules if r.id == rule_id), None)

    def _validate_action(self, rule: AutomationRule):
        if not self.actions.has(rule.action.type):
            raise ValidationError(f"rule {rule.id!r} uses unknown action kind {rule.action.type!r}")

    def _new_rule_id(self) -> str:
        stamp = int(time.time() * 1000)
        existing = {r.id for r in self._rules}
        while f"rule_{stamp}" in existing:
            stamp += 1
        return f"rule_{stamp}"

    async def _commit(self, rules: list[AutomationRule]):
        await self.hub.store.replace_rules(self.context.user_id, [r.to_dict() for r in rules])
        self._rules = rules

    async def add_rule(self, data: dict[str, Any]) -> AutomationRule:
        """Append a rule; a missing id is generated as ``rule_<epoch ms>``.

        Raises:
            ValidationError: malformed rule, unknown action kind or duplicate id
        """
        async with self._rule_lock:
            data = dict(data)
            if not data.get("id"):
                data["id"] = self._new_rule_id()
            rule = AutomationRule.from_dict(data)
            self._validate_action(rule)
            if any(r.id == rule.id for r in self._rules):
                raise ValidationError(f"rule id {rule.id!r} already exists")
            await self._commit([*self._rules, rule])
        self.logger.info("Added rule %s (%s)", rule.id, rule.name)
        return rule

    async def update_rule(self, rule_id: str, updates: dict[str, Any]) -> AutomationRule:
        """Merge ``updates`` into an existing rule (id is immutable).

        Raises:
            NotFoundError: unknown rule id
        """
        async with self._rule_lock:
            index = next((i for i, r in enumerate(self._rules) if r.id == rule_id), None)
            if index is None:
                raise NotFoundError(f"unknown rule {rule_id!r}")
            rule = AutomationRule.from_dict({**self._rules[index].to_dict(), **updates, "id": rule_id})
            self._validate_action(rule)
            rules = list(self._rules)
            rules[index] = rule
            await self._commit(rules)
            self._condition_state.pop(rule_id, None)
            self._last_fired.pop(rule_id, None)
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        """Remove a rule. Returns False when the id is unknown."""
        async with self._rule_lock:
            rules = [r for r in self._rules if r.id != rule_id]
            if len(rules) == len(self._rules):
                return False
            await self._commit(rules)
            self._condition_state.pop(rule_id, None)
            self._last_fired.pop(rule_id, None)
        return True

    # ── Evaluation ──────────────────────────────────────────────────────

    async def check_time_rules(self, now: datetime | None = None) -> list[str]:
        """Fire enabled time rules and automations matching ``now``'s hour:minute.

        Returns:
            Ids of rules/automations that fired
        """
        now = now or datetime.now()
        minute = now.replace(second=0, microsecond=0)
        fired = []

        for rule in list(self._rules):
            if not (rule.enabled and isinstance(rule.trigger, TimeTrigger) and rule.trigger.matches(now)):
                continue
            if self._last_fired.get(rule.id) == minute:
                continue
            self._last_fired[rule.id] = minute
            if await self._fire_rule(rule, now):
                fired.append(rule.id)

        for automation in self.registry.get_automations():
            if not (automation.enabled and isinstance(automation.trigger, TimeTrigger)):
                continue
            if not automation.trigger.matches(now):
                continue
            key = f"automation:{automation.id}"
            if self._last_fired.get(key) == minute:
                continue
            self._last_fired[key] = minute
            if await self._run_automation(automation, now):
                fired.append(automation.id)
        return fired

    def current_metrics(self) -> dict[str, Any]:
        """Live metrics for condition triggers: latest readings plus stress/energy."""
        metrics: dict[str, Any] = {kind: r.value for kind, r in self.context.latest_readings().items()}
        metrics.update(self.emotional.metrics())
        return metrics

    async def check_condition_rules(
        self, metrics: dict[str, Any] | None = None, now: datetime | None = None
    ) -> list[str]:
        """Edge-triggered evaluation of condition rules and automations.

        A trigger fires when it passes now and did not pass at its previous
        evaluation (the first evaluation counts as not passing before).
        """
        now = now or datetime.now()
        metrics = self.current_metrics() if metrics is None else metrics
        fired = []

        for rule in list(self._rules):
            if not (rule.enabled and isinstance(rule.trigger, ConditionTrigger)):
                continue
            if self._crossed(rule.id, rule.trigger.matches(metrics)):
                if await self._fire_rule(rule, now, extra={"metrics": metrics}):
                    fired.append(rule.id)

        for automation in self.registry.get_automations():
            if not (automation.enabled and isinstance(automation.trigger, ConditionTrigger)):
                continue
            if self._crossed(f"automation:{automation.id}", automation.trigger.matches(metrics)):
                if await self._run_automation(automation, now):
                    fired.append(automation.id)
        return fired

    def _crossed(self, key: str, passed: bool) -> bool:
        previous = self._condition_state.get(key, False)
        self._condition_state[key] = passed
        return passed and not previous

    async def on_device_state_changed(self, device: Device) -> list[str]:
        """Run enabled device-triggered automations whose predicate the new state satisfies."""
        fired = []
        now = datetime.now()
        for automation in self.registry.device_automations(device.id):
            if automation.trigger.matches(device.id, device.state):
                if await self._run_automation(automation, now, device_id=device.id):
                    fired.append(automation.id)
        return fired

    # ── Firing ──────────────────────────────────────────────────────────

    async def _fire_rule(self, rule: AutomationRule, now: datetime, extra: dict[str, Any] | None = None) -> bool:
        key = f"rule:{rule.id}"
        if key in self._firing:
            self.logger.debug("Rule %s already firing, skipping re-entrant trigger", rule.id)
            return False
        self._firing.add(key)
        try:
            context = ActionContext(source_id=rule.id, source_name=rule.name, fired_at=now, extra=extra or {})
            try:
                result = await self.actions.execute(rule.action.type, rule.action.params, context)
            except Exception as e:
                self.logger.error("Rule %s (%s) failed: %s", rule.id, rule.action.type, e)
                return False

            self.logger.info("Rule fired: %s (%s)", rule.id, rule.action.type)
            await self._record_execution(FEATURE_RULE_EXECUTED, rule.name, {"rule_id": rule.id, "rule_name": rule.name})
            await self.hub.publish(
                EVENT_RULE_FIRED,
                {"rule_id": rule.id, "name": rule.name, "success": result.success, "message": result.message},
            )
            return result.success
        finally:
            self._firing.discard(key)

    async def _run_automation(self, automation: Automation, now: datetime, device_id: str | None = None) -> bool:
        key = f"automation:{automation.id}"
        if key in self._firing:
            self.logger.debug("Automation %s already firing, skipping re-entrant trigger", automation.id)
            return False
        self._firing.add(key)
        try:
            succeeded = 0
            for action in automation.actions:
                kind = action.action if self.actions.has(action.action) else "device_command"
                if kind == "device_command":
                    params = {"device_id": action.device_id, "action": action.action, "state": action.params}
                else:
                    params = dict(action.params)
                context = ActionContext(
                    source_id=automation.id,
                    source_name=automation.name,
                    fired_at=now,
                    device_id=device_id,
                    extra={"target": action.device_id},
                )
                try:
                    result = await self.actions.execute(kind, params, context)
                except Exception as e:
                    self.logger.error(
                        "Automation %s action %s on %s failed: %s", automation.id, action.action, action.device_id, e
                    )
                    continue
                if result.success:
                    succeeded += 1

            self.logger.info("Automation fired: %s (%d/%d actions)", automation.id, succeeded, len(automation.actions))
            await self._record_execution(
                FEATURE_AUTOMATION_EXECUTED,
                automation.name,
                {"automation_id": automation.id, "automation_name": automation.name},
            )
            await self.hub.publish(
                EVENT_AUTOMATION_FIRED,
                {"automation_id": automation.id, "name": automation.name, "succeeded": succeeded},
            )
            return succeeded > 0
        finally:
            self._firing.discard(key)

    async def _record_execution(self, feature: str, name: str, metadata: dict[str, Any]):
        try:
            await self.context.record(
                InteractionType.FEATURE_USAGE, {"feature": feature}, {**metadata, "source": SOURCE_SYSTEM}
            )
            await self.context.record_usage(USAGE_AUTOMATION_RUN, {"name": name})
        except Exception as e:
            self.logger.warning("Execution not recorded (%s): %s", feature, e)

    def _say(self, text: str, now: datetime) -> str:
        """Compose ``text`` through the personality adapter and keep it."""
        message = self.personality.generate_response(text, now).message if self.personality else text
        self.messages.append(message)
        return message

    # ── Action handlers ─────────────────────────────────────────────────

    async def _action_daily_summary(self, params: dict[str, Any], ctx: ActionContext) -> ActionResult:
        summary = build_daily_summary(self.context.snapshot(), ctx.fired_at)
        message = self._say(format_summary(summary), ctx.fired_at)
        return ActionResult(
            success=True,
            message=message,
            data={
                "date": summary.date.isoformat(),
                "appointments": summary.appointments,
                "tasks": summary.tasks,
                "weather": summary.weather,
            },
        )

    async def _action_evening_check(self, params: dict[str, Any], ctx: ActionContext) -> ActionResult:
        pending = pending_items(self.context.snapshot(), ctx.fired_at)
        text = f"You have {len(pending)} pending task(s) for today."
        if pending:
            text += " " + ", ".join(pending) + "."
        return ActionResult(success=True, message=self._say(text, ctx.fired_at), data={"pending": pending})

    async def _action_suggest_break(self, params: dict[str, Any], ctx: ActionContext) -> ActionResult:
        suggestion = self.rng.choice(BREAK_SUGGESTIONS)
        return ActionResult(success=True, message=self._say(suggestion, ctx.fired_at), data={"suggestion": suggestion})

    async def _action_notify(self, params: dict[str, Any], ctx: ActionContext) -> ActionResult:
        text = params.get("message")
        if not text:
            raise ValidationError("notify action requires a message")
        return ActionResult(success=True, message=self._say(str(text), ctx.fired_at))

    async def _action_device_command(self, params: dict[str, Any], ctx: ActionContext) -> ActionResult:
        """Set device state through the registry.

        ``turn_on``/``turn_off`` without explicit state map to ``{"on": bool}``.
        """
        device_id = params.get("device_id") or params.get("deviceId") or ctx.device_id
        if not device_id or device_id == ASSISTANT_TARGET:
            raise ValidationError("device_command requires a device id")
        state = dict(params.get("state") or {})
        if not state:
            action = params.get("action")
            if action in SWITCH_ACTIONS:
                state = {"on": SWITCH_ACTIONS[action]}
            elif action == "toggle":
                device = self.registry.get_device(device_id)
                if device is None:
                    raise NotFoundError(f"unknown device {device_id!r}")
                state = {"on": not device.state.get("on", False)}
            else:
                raise ValidationError(f"device_command {action!r} carries no state")
        device = await self.registry.update_device_state(device_id, state, source=SOURCE_SYSTEM)
        return ActionResult(success=True, data={"device_id": device.id, "state": device.state})
