"""Emotional state tracker — mood/energy/stress plus the derived theme signal.

The state is a single value per user stored under the ``emotional_state``
preference; the derived ``theme_mood`` is written in the same preference
update so the two never disagree.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any

from aura.automation.models import (
    EmotionalResponse,
    EmotionalState,
    InteractionType,
    Mood,
    ThemeMood,
    parse_enum,
)
from aura.errors import ValidationError
from aura.hub.constants import (
    EVENT_EMOTIONAL_STATE_CHANGED,
    FEATURE_EMOTIONAL_FEEDBACK,
    MODULE_EMOTIONAL,
    PREF_EMOTIONAL_STATE,
    PREF_THEME_MOOD,
    SOURCE_SYSTEM,
)
from aura.hub.core import AutomationHub, Module
from aura.modules.context_store import ContextStore

FEEDBACK_FEATURE = FEATURE_EMOTIONAL_FEEDBACK

# keyword -> (mood, response tone); first match wins
MOOD_KEYWORDS: list[tuple[tuple[str, ...], Mood, str]] = [
    (("tired", "exhausted", "sleepy", "worn out"), Mood.TIRED, "concerned"),
    (("happy", "great", "awesome", "excited"), Mood.HAPPY, "excited"),
    (("stressed", "annoyed", "angry", "irritated", "frustrated"), Mood.ANGRY, "concerned"),
    (("focused", "concentrating", "in the zone"), Mood.FOCUSED, "formal"),
    (("sad", "down", "lonely", "upset"), Mood.SAD, "concerned"),
]

# energy/stress nudges applied when a mood is detected from text
MOOD_ADJUSTMENTS: dict[Mood, dict[str, int]] = {
    Mood.TIRED: {"energy": -20},
    Mood.HAPPY: {"energy": 10, "stress": -10},
    Mood.ANGRY: {"stress": 20},
    Mood.FOCUSED: {"energy": 5},
    Mood.SAD: {"energy": -10, "stress": 10},
}

RESPONSES: dict[Mood, dict[str, str]] = {
    Mood.TIRED: {
        "casual": "Looks like you're tired. Want me to make the room more comfortable?",
        "formal": "You may be tired. Shall I adjust the environment for you?",
        "concerned": "You seem tired. Is everything okay? Can I help with anything?",
        "excited": "Tired or not, let's get something done! How about a brighter setting?",
    },
    Mood.HAPPY: {
        "casual": "Glad you're in a good mood! Let's make the most of it.",
        "formal": "It is good to see you in high spirits. How can I help?",
        "concerned": "Happy to hear you're doing well! Want to share what made your day?",
        "excited": "What great energy! Let's do something awesome!",
    },
    Mood.ANGRY: {
        "casual": "Something seems to be bothering you. Want to talk about it?",
        "formal": "You may be under some stress. Can I help resolve something?",
        "concerned": "Is everything alright? Something seems to have upset you.",
        "excited": "Let's turn that energy into something positive!",
    },
    Mood.FOCUSED: {
        "casual": "You're really focused! Let's keep the pace.",
        "formal": "Excellent concentration. How can I help you keep it?",
        "concerned": "That's a lot of focus. Don't forget to take a break.",
        "excited": "Great momentum! Let's make the most of this focus!",
    },
    Mood.SAD: {
        "casual": "You seem a bit down. Want to talk?",
        "formal": "You may be feeling low. Is there anything I can do?",
        "concerned": "Are you okay? Do you want to talk about what's bothering you?",
        "excited": "Let's turn the day around! How about something you enjoy?",
    },
    Mood.CALM: {
        "casual": "Nice and calm in here. All good?",
        "formal": "You appear calm. How may I assist?",
        "concerned": "All quiet. Would you like something more energetic?",
        "excited": "Such a peaceful moment! Let's enjoy it.",
    },
}

SUGGESTIONS: dict[Mood, list[str]] = {
    Mood.TIRED: ["Take a short break and rest", "How about some relaxing music?", "Dim the lights to a softer tone"],
    Mood.HAPPY: ["Enjoy the moment!", "Share the good news with someone", "Write this moment down in your journal"],
    Mood.ANGRY: ["Take a deep breath", "Pause and drink some water", "Try to pin down what is causing the stress"],
    Mood.FOCUSED: ["Keep this level of focus!", "Take short breaks to stay sharp", "Order your tasks by priority"],
    Mood.SAD: ["Talk to someone you trust", "Do something you enjoy", "A short walk outside can help"],
    Mood.CALM: ["Good time to plan the day", "Try some meditation", "Enjoy a book or some music"],
}


def derive_theme_mood(state: EmotionalState) -> ThemeMood:
    """Theme signal for the front end, derived from mood, energy and stress."""
    if state.mood == Mood.HAPPY or (state.energy > 70 and state.stress < 30):
        return ThemeMood.HAPPY
    if state.mood == Mood.TIRED or state.energy < 30:
        return ThemeMood.CALM
    if state.mood == Mood.FOCUSED or (state.energy > 50 and state.stress < 50):
        return ThemeMood.FOCUSED
    return ThemeMood.ENERGETIC


def detect_mood(text: str) -> tuple[Mood, str]:
    """Keyword mood detection; returns (mood, response tone)."""
    lowered = text.lower()
    for keywords, mood, tone in MOOD_KEYWORDS:
        if any(k in lowered for k in keywords):
            return mood, tone
    return Mood.CALM, "casual"


def _clamp(value: int) -> int:
    return max(0, min(100, value))


class EmotionalTracker(Module):
    """Current EmotionalState for the bound user."""

    def __init__(self, hub: AutomationHub, context: ContextStore):
        super().__init__(MODULE_EMOTIONAL, hub)
        self.context = context
        self._state = EmotionalState()

    async def initialize(self):
        """Restore the saved state; a malformed record falls back to the default."""
        saved = self.context.get_preference(PREF_EMOTIONAL_STATE)
        if saved:
            try:
                self._state = EmotionalState.from_dict(saved)
            except (ValidationError, TypeError, ValueError) as e:
                self.logger.warning("Ignoring malformed saved emotional state: %s", e)
        self.logger.info(
            "Emotional state: mood=%s energy=%d stress=%d", self._state.mood, self._state.energy, self._state.stress
        )

    def get_current_state(self) -> EmotionalState:
        return self._state

    def metrics(self) -> dict[str, int]:
        """Numeric metrics for condition rules."""
        return {"stress": self._state.stress, "energy": self._state.energy}

    async def update_emotional_state(self, **changes: Any) -> EmotionalState:
        """Apply ``changes`` (mood, energy, stress, context) and persist with the theme.

        Raises:
            ValidationError: unknown field, unknown mood or value outside [0, 100]
        """
        allowed = {"mood", "energy", "stress", "context", "timestamp"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"unknown emotional state fields: {sorted(unknown)}")
        if "mood" in changes:
            changes["mood"] = parse_enum(Mood, changes["mood"], "mood")
        changes.setdefault("timestamp", datetime.now())

        new_state = replace(self._state, **changes)
        theme = derive_theme_mood(new_state)
        await self.context.update_preferences({PREF_EMOTIONAL_STATE: new_state.to_dict(), PREF_THEME_MOOD: theme.value})

        previous = self._state
        self._state = new_state
        await self.hub.publish(
            EVENT_EMOTIONAL_STATE_CHANGED,
            {
                "mood": new_state.mood.value,
                "energy": new_state.energy,
                "stress": new_state.stress,
                "previous_stress": previous.stress,
                "theme_mood": theme.value,
            },
        )
        return new_state

    async def analyze_user_state(self, text: str) -> EmotionalResponse:
        """Detect mood from ``text``, update the state and build a response."""
        mood, tone = detect_mood(text)
        changes: dict[str, Any] = {"mood": mood, "context": text}
        for field_name, delta in MOOD_ADJUSTMENTS.get(mood, {}).items():
            changes[field_name] = _clamp(getattr(self._state, field_name) + delta)

        state = await self.update_emotional_state(**changes)
        response = EmotionalResponse(
            message=RESPONSES[mood][tone],
            tone=tone,
            theme_mood=derive_theme_mood(state),
            suggestions=list(SUGGESTIONS[mood]),
        )

        try:
            await self.context.record(
                InteractionType.FEATURE_USAGE,
                {"feature": FEEDBACK_FEATURE},
                {
                    "state": state.to_dict(),
                    "response": {"message": response.message, "tone": response.tone},
                    "source": SOURCE_SYSTEM,
                },
            )
        except Exception as e:
            self.logger.warning("Emotional feedback not recorded: %s", e)
        return response

    async def get_recent_feedbacks(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent emotional feedback interactions, newest first."""
        rows = await self.hub.store.list_interactions(
            self.context.user_id, limit=limit * 5, interaction_type=InteractionType.FEATURE_USAGE.value
        )
        feedbacks = [
            r for r in rows if isinstance(r["content"], dict) and r["content"].get("feature") == FEEDBACK_FEATURE
        ]
        return feedbacks[:limit]
