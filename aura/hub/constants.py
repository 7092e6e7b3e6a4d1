"""Shared constants for hub modules.

Table, preference-key and event names are defined here to prevent implicit
coupling between modules that read and write the same records.
"""

# Store table names
TABLE_INTERACTIONS = "interactions"
TABLE_PREFERENCES = "preferences"
TABLE_DEVICES = "devices"
TABLE_AUTOMATIONS = "automations"
TABLE_RULES = "automation_rules"
TABLE_PREDICTIONS = "predictions"
TABLE_READINGS = "environmental_readings"
TABLE_SCHEDULE = "schedule_entries"
TABLE_USAGE = "usage_patterns"
TABLE_EVENTS = "events"

# Preference keys
PREF_EMOTIONAL_STATE = "emotional_state"
PREF_THEME_MOOD = "theme_mood"
PREF_PERSONALITY_TRAITS = "personality_traits"
PREF_NOW_PLAYING = "now_playing"

# Hub event types
EVENT_DEVICE_STATE_CHANGED = "device_state_changed"
EVENT_AUTOMATION_CHANGED = "automation_changed"
EVENT_RULE_FIRED = "rule_fired"
EVENT_AUTOMATION_FIRED = "automation_fired"
EVENT_PREDICTIONS_SAVED = "predictions_saved"
EVENT_EMOTIONAL_STATE_CHANGED = "emotional_state_changed"
EVENT_PREFERENCE_UPDATED = "preference_updated"

# Module ids
MODULE_CONTEXT = "context_store"
MODULE_REGISTRY = "device_registry"
MODULE_RULES = "rule_engine"
MODULE_PREDICTIONS = "predictions"
MODULE_EMOTIONAL = "emotional"
MODULE_PERSONALITY = "personality"

# Automation action target that routes to the user instead of a device
ASSISTANT_TARGET = "assistant"

# Interactions the core records about its own activity; pattern mining skips them
SOURCE_SYSTEM = "system"
FEATURE_RULE_EXECUTED = "rule_executed"
FEATURE_AUTOMATION_EXECUTED = "automation_executed"
FEATURE_EMOTIONAL_FEEDBACK = "emotional_feedback"
SYSTEM_FEATURES = frozenset({FEATURE_RULE_EXECUTED, FEATURE_AUTOMATION_EXECUTED, FEATURE_EMOTIONAL_FEEDBACK})

# Usage pattern types counted by the context store
USAGE_COMMAND = "command_execution"
USAGE_FEATURE = "feature_usage"
USAGE_AUTOMATION_RUN = "automation_run"
USAGE_WEATHER = "weather_api"
USAGE_CALENDAR = "calendar_api"
USAGE_MUSIC = "music_api"
