"""Process wiring: construct every component once and pass references explicitly."""

import random
from dataclasses import dataclass
from datetime import timedelta

from aura.config import AuraConfig
from aura.hub.core import AutomationHub
from aura.hub.store import Store
from aura.modules.context_store import ContextStore
from aura.modules.emotional import EmotionalTracker
from aura.modules.personality import PersonalityModule
from aura.modules.predictions import PredictionModule
from aura.modules.registry import DeviceRegistry
from aura.modules.rule_engine import RuleEngine
from aura.shared.providers import CalendarProvider, MusicProvider, Providers, WeatherProvider


@dataclass
class Components:
    """Handles to the wired modules (the hub owns their lifecycle)."""

    hub: AutomationHub
    context: ContextStore
    registry: DeviceRegistry
    emotional: EmotionalTracker
    personality: PersonalityModule
    rules: RuleEngine
    predictions: PredictionModule


def default_providers(config: AuraConfig) -> Providers:
    timeout = config.scheduler.provider_timeout
    return Providers(
        weather=WeatherProvider(config.weather, timeout=timeout),
        calendar=CalendarProvider(config.ha, timeout=timeout),
        music=MusicProvider(config.ha, timeout=timeout),
    )


def build_hub(
    config: AuraConfig,
    store: Store | None = None,
    providers: Providers | None = None,
    rng: random.Random | None = None,
) -> Components:
    """Wire the hub and register modules in dependency order.

    Modules initialize in registration order: the context store first so
    the user session and preferences are loaded before anything reads them.
    """
    hub = AutomationHub(config, store=store)
    rng = rng or random.Random(config.personality.seed)

    context = ContextStore(
        hub,
        config.context,
        providers if providers is not None else default_providers(config),
    )
    registry = DeviceRegistry(hub, context)
    emotional = EmotionalTracker(hub, context)
    personality = PersonalityModule(hub, context, emotional, config.personality, rng=rng)
    rules = RuleEngine(hub, context, registry, emotional, personality, config.scheduler, rng=rng)
    predictions = PredictionModule(
        hub,
        context,
        registry,
        config.prediction,
        analysis_interval=timedelta(seconds=config.scheduler.analysis_interval),
    )

    for module in (context, registry, emotional, personality, rules, predictions):
        hub.register_module(module)

    return Components(
        hub=hub,
        context=context,
        registry=registry,
        emotional=emotional,
        personality=personality,
        rules=rules,
        predictions=predictions,
    )
