"""Configuration dataclasses for AURA.

Every component receives its config object explicitly; nothing reads
module-level globals or the environment after startup.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass
class HAConfig:
    """Home Assistant connection settings (calendar and media providers)."""
    url: str = ""
    token: str = ""
    calendar_entity: str = "calendar.personal"
    media_player_entity: str = "media_player.living_room"

    @classmethod
    def from_env(cls):
        return cls(
            url=os.environ.get("HA_URL", cls.url),
            token=os.environ.get("HA_TOKEN", ""),
            calendar_entity=os.environ.get("AURA_CALENDAR_ENTITY", cls.calendar_entity),
            media_player_entity=os.environ.get("AURA_MEDIA_PLAYER", cls.media_player_entity),
        )


@dataclass
class WeatherConfig:
    """Weather API settings."""
    location: str = "Lisbon"
    units: str = "m"  # wttr.in: m = metric, u = USCS


@dataclass
class StorageConfig:
    """Durable storage location and per-call deadline."""
    db_path: Path = field(default_factory=lambda: Path.home() / ".aura" / "aura.db")
    timeout: float = 5.0
    prediction_retention_days: int = 30
    interaction_retention_days: int = 90


@dataclass
class SchedulerConfig:
    """Scheduler loop intervals (seconds)."""
    time_tick: float = 60.0
    condition_tick: float = 300.0
    analysis_interval: float = 300.0
    shutdown_grace: float = 10.0
    worker_concurrency: int = 2
    provider_timeout: float = 10.0


@dataclass
class ContextConfig:
    """Rolling window capacities."""
    interaction_capacity: int = 50
    reading_capacity: int = 24


@dataclass
class PredictionConfig:
    """Prediction confidence policy."""
    automation_threshold: float = 0.7
    min_samples: int = 5
    sparse_confidence_cap: float = 0.5


@dataclass
class PersonalityConfig:
    """Default personality traits (0-100)."""
    humor: int = 70
    formality: int = 40
    sarcasm: int = 60
    empathy: int = 80
    seed: int | None = None


@dataclass
class AuraConfig:
    """Top-level config composing all sub-configs."""
    user_id: str = "default"
    ha: HAConfig = field(default_factory=HAConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    prediction: PredictionConfig = field(default_factory=PredictionConfig)
    personality: PersonalityConfig = field(default_factory=PersonalityConfig)

    @classmethod
    def from_env(cls):
        """Create config from environment variables."""
        storage = StorageConfig(timeout=_env_float("AURA_STORAGE_TIMEOUT", StorageConfig.timeout))
        db_path = os.environ.get("AURA_DB_PATH")
        if db_path:
            storage.db_path = Path(db_path).expanduser()

        scheduler = SchedulerConfig(
            time_tick=_env_float("AURA_TIME_TICK", SchedulerConfig.time_tick),
            condition_tick=_env_float("AURA_CONDITION_TICK", SchedulerConfig.condition_tick),
            analysis_interval=_env_float("AURA_ANALYSIS_INTERVAL", SchedulerConfig.analysis_interval),
            shutdown_grace=_env_float("AURA_SHUTDOWN_GRACE", SchedulerConfig.shutdown_grace),
        )

        return cls(
            user_id=os.environ.get("AURA_USER_ID", cls.user_id),
            ha=HAConfig.from_env(),
            weather=WeatherConfig(location=os.environ.get("AURA_WEATHER_LOCATION", WeatherConfig.location)),
            storage=storage,
            scheduler=scheduler,
            context=ContextConfig(),
            prediction=PredictionConfig(
                automation_threshold=_env_float("AURA_AUTOMATION_THRESHOLD", PredictionConfig.automation_threshold),
            ),
            personality=PersonalityConfig(),
        )
