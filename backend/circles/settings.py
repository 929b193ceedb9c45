"""Settings for the Circles backend."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")

    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    service_name: str = _env_field("circles-api", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
    obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
    obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")

    # Optimistic concurrency: attempts per read-decide-write cycle and the base
    # backoff between attempts (jittered).
    cas_max_attempts: int = _env_field(3, "CAS_MAX_ATTEMPTS")
    cas_backoff_seconds: float = _env_field(0.01, "CAS_BACKOFF_SECONDS")

    # Asymmetric friend edges younger than this are treated as in-flight and
    # left alone by read-repair.
    relationship_repair_grace_seconds: float = _env_field(5.0, "RELATIONSHIP_REPAIR_GRACE_SECONDS")
    member_count_tolerance: int = _env_field(0, "MEMBER_COUNT_TOLERANCE")
    # A report slot whose report was never written is treated as an in-flight
    # submission until it is this old.
    report_slot_grace_seconds: float = _env_field(30.0, "REPORT_SLOT_GRACE_SECONDS")

    notifications_stream: str = _env_field("x:notifications.events", "NOTIFICATIONS_STREAM")
    notifications_stream_maxlen: int = _env_field(10_000, "NOTIFICATIONS_STREAM_MAXLEN")

    list_default_limit: int = _env_field(50, "LIST_DEFAULT_LIMIT")
    list_max_limit: int = _env_field(200, "LIST_MAX_LIMIT")

    # Environment helpers
    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development", "test")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        populate_by_name=True,
    )


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)
