"""Configuration settings for the scheduler."""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Time constants (in seconds)
SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///supercards.db")
    echo: bool = _env_bool("DATABASE_ECHO", "false")


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class MemoryModelSettings:
    """Parameters handed to the FSRS scheduler."""
    desired_retention: float = float(os.getenv("DESIRED_RETENTION", "0.9"))
    maximum_interval_days: int = int(os.getenv("MAXIMUM_INTERVAL_DAYS", "36500"))  # ~100 years
    enable_fuzzing: bool = _env_bool("ENABLE_FUZZING", "true")


@dataclass
class SchedulingSettings:
    """Selection and anti-limbo settings."""
    limbo_threshold_days: float = float(os.getenv("LIMBO_THRESHOLD_DAYS", "14"))
    limbo_boost_multiplier: float = float(os.getenv("LIMBO_BOOST_MULTIPLIER", "50"))
    max_limbo_boost: float = float(os.getenv("MAX_LIMBO_BOOST", "500"))
    never_shown_days: float = 9999.0  # sentinel instead of infinity
    max_consecutive_review: int = int(os.getenv("MAX_CONSECUTIVE_REVIEW", "10"))
    max_consecutive_new: int = int(os.getenv("MAX_CONSECUTIVE_NEW", "5"))
    variety_interval: int = int(os.getenv("VARIETY_INTERVAL", "15"))
    small_list_min_candidates: int = 3
    last_entry_penalty: float = 200.0
    top_candidates_max: int = 5
    top_candidates_min: int = 2
    top_candidates_fraction: float = 0.3
    score_tolerance: float = 0.001
    min_new_ratio: float = 0.05
    max_new_ratio: float = 0.5
    due_window_days: float = 0.5
    very_overdue_days: float = 30.0


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    port: Optional[int] = int(os.getenv("METRICS_PORT")) if os.getenv("METRICS_PORT") else None


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_memory_model_settings() -> MemoryModelSettings:
    """Get memory model settings."""
    return MemoryModelSettings()


def get_scheduling_settings() -> SchedulingSettings:
    """Get scheduling settings."""
    return SchedulingSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    memory_model: MemoryModelSettings = field(default_factory=get_memory_model_settings)
    scheduling: SchedulingSettings = field(default_factory=get_scheduling_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not 0 < self.memory_model.desired_retention < 1:
            raise ValueError("DESIRED_RETENTION must be between 0 and 1")

        if self.memory_model.maximum_interval_days < 1:
            raise ValueError("MAXIMUM_INTERVAL_DAYS must be positive")

        scheduling = self.scheduling
        if scheduling.limbo_threshold_days <= 0:
            raise ValueError("LIMBO_THRESHOLD_DAYS must be positive")

        if scheduling.max_limbo_boost < 0 or scheduling.limbo_boost_multiplier < 0:
            raise ValueError("Limbo boost values cannot be negative")

        if scheduling.max_consecutive_review < 1 or scheduling.max_consecutive_new < 1:
            raise ValueError("Consecutive pick caps must be positive")

        if scheduling.variety_interval < 1:
            raise ValueError("VARIETY_INTERVAL must be positive")

        if scheduling.min_new_ratio > scheduling.max_new_ratio:
            raise ValueError("Minimum new-card ratio cannot exceed the maximum")

        if scheduling.top_candidates_min > scheduling.top_candidates_max:
            raise ValueError("Top candidate floor cannot exceed the cap")


# Create global settings instance
settings = Settings()
settings.validate()
