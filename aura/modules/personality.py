"""Personality Adapter — tone, greeting and emoji for user-facing messages.

``PersonalityAdapter.compose`` is a pure transform of
(message, EmotionalState, time) given the trait values and an injected
``random.Random``. It has no automation authority. ``PersonalityModule``
owns the persisted traits and the front-end ``respond`` entry point.
"""

import random
from dataclasses import replace
from datetime import datetime
from typing import Any

from aura.automation.models import (
    EmotionalState,
    InteractionType,
    Mood,
    PersonalityResponse,
    PersonalityTraits,
    Tone,
)
from aura.config import PersonalityConfig
from aura.errors import ValidationError
from aura.hub.constants import MODULE_PERSONALITY, PREF_PERSONALITY_TRAITS, USAGE_FEATURE
from aura.hub.core import AutomationHub, Module
from aura.modules.context_store import ContextStore
from aura.modules.emotional import EmotionalTracker

TRAIT_CUTOFF = 70
STRESS_CUTOFF = 50
WEEKEND_EMOJI = "🎉"

MOOD_EMOJIS: dict[Mood, list[str]] = {
    Mood.HAPPY: ["😊", "😄", "🌟"],
    Mood.TIRED: ["😴", "💤", "🌙"],
    Mood.FOCUSED: ["🎯", "💡", "⚡"],
    Mood.CALM: ["😌", "🌿", "✨"],
    Mood.ANGRY: ["😤", "💢", "🔥"],
    Mood.SAD: ["😔", "🌧️", "💫"],
}

TIME_EMOJIS = {
    "morning": ["🌅", "☀️", "🌞"],
    "afternoon": ["🌤️", "☀️", "🌻"],
    "evening": ["🌙", "✨", "🌠"],
}

GREETINGS = {
    "morning": ["Good morning", "Hello, lovely morning", "Rise and shine"],
    "afternoon": ["Good afternoon", "Hello, lovely afternoon", "Productive afternoon"],
    "evening": ["Good evening", "Hello, starry night", "Time to unwind"],
}

APOLOGY = "Sorry, I couldn't complete that right now. Please try again in a moment."
CHAT_FEATURE = "assistant_chat"


def part_of_day(now: datetime) -> str:
    if now.hour < 12:
        return "morning"
    if now.hour < 18:
        return "afternoon"
    return "evening"


class PersonalityAdapter:
    """Composes messages according to personality traits."""

    def __init__(self, traits: PersonalityTraits | None = None, rng: random.Random | None = None):
        self.traits = traits or PersonalityTraits()
        self.rng = rng or random.Random()

    def select_tone(self, state: EmotionalState) -> Tone:
        tone = Tone.CASUAL
        if self.traits.formality > TRAIT_CUTOFF:
            tone = Tone.FORMAL
        if self.traits.sarcasm > TRAIT_CUTOFF and self.rng.random() > 0.5:
            tone = Tone.SARCASTIC
        if self.traits.empathy > TRAIT_CUTOFF and state.stress > STRESS_CUTOFF:
            tone = Tone.EMPATHETIC
        return tone

    def select_emoji(self, state: EmotionalState, now: datetime) -> str:
        if now.weekday() >= 5:
            return WEEKEND_EMOJI
        if self.rng.random() > 0.5:
            return self.rng.choice(MOOD_EMOJIS.get(state.mood, MOOD_EMOJIS[Mood.CALM]))
        return self.rng.choice(TIME_EMOJIS[part_of_day(now)])

    def compose(self, message: str, state: EmotionalState, now: datetime | None = None) -> PersonalityResponse:
        """Wrap ``message`` with a greeting and tone marker for ``state`` at ``now``."""
        now = now or datetime.now()
        tone = self.select_tone(state)
        emoji = self.select_emoji(state, now)
        greeting = self.rng.choice(GREETINGS[part_of_day(now)])

        match tone:
            case Tone.FORMAL:
                text = f"{greeting}, sir. {message}"
            case Tone.SARCASTIC:
                text = f"{greeting}! {message} (but you already knew that, right?)"
            case Tone.EMPATHETIC:
                text = f"{greeting}! {message} (and I'm here to help)"
            case _:
                text = f"{greeting}! {message}"
        return PersonalityResponse(message=text, tone=tone, emoji=emoji)

    def apology(self, state: EmotionalState | None = None, now: datetime | None = None) -> PersonalityResponse:
        """Generic failure message; never exposes the underlying error."""
        return self.compose(APOLOGY, state or EmotionalState(), now)


class PersonalityModule(Module):
    """Owns the persisted traits and the front-end response path."""

    def __init__(
        self,
        hub: AutomationHub,
        context: ContextStore,
        emotional: EmotionalTracker,
        config: PersonalityConfig | None = None,
        rng: random.Random | None = None,
    ):
        super().__init__(MODULE_PERSONALITY, hub)
        self.context = context
        self.emotional = emotional
        config = config or PersonalityConfig()
        traits = PersonalityTraits(
            humor=config.humor, formality=config.formality, sarcasm=config.sarcasm, empathy=config.empathy
        )
        self.adapter = PersonalityAdapter(traits, rng or random.Random(config.seed))

    async def initialize(self):
        saved = self.context.get_preference(PREF_PERSONALITY_TRAITS)
        if saved:
            try:
                self.adapter.traits = PersonalityTraits(**saved)
            except (ValidationError, TypeError) as e:
                self.logger.warning("Ignoring malformed saved personality traits: %s", e)

    def get_traits(self) -> PersonalityTraits:
        return self.adapter.traits

    async def update_traits(self, **changes: int) -> PersonalityTraits:
        """Validate, persist and apply trait changes."""
        try:
            traits = replace(self.adapter.traits, **changes)
        except TypeError as e:
            raise ValidationError(f"unknown personality trait: {e}") from None
        await self.context.update_preference(PREF_PERSONALITY_TRAITS, traits.to_dict())
        self.adapter.traits = traits
        return traits

    def generate_response(self, message: str, now: datetime | None = None) -> PersonalityResponse:
        return self.adapter.compose(message, self.emotional.get_current_state(), now)

    def apology(self, now: datetime | None = None) -> PersonalityResponse:
        return self.adapter.apology(self.emotional.get_current_state(), now)

    async def respond(self, text: str, metadata: dict[str, Any] | None = None) -> PersonalityResponse:
        """Front-end entry: record the message, read the mood, compose a reply.

        Any failure becomes the apology response; callers never see a raw error.
        """
        try:
            await self.context.record(InteractionType.CHAT_MESSAGE, text, metadata)
            await self.context.record_usage(USAGE_FEATURE, {"feature": CHAT_FEATURE})
            feedback = await self.emotional.analyze_user_state(text)
            return self.generate_response(feedback.message)
        except Exception as e:
            self.logger.error("Failed to respond to user message: %s", e)
            return self.apology()
