from functools import lru_cache
from typing import ClassVar

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from TASK_ORCHESTRATOR_* environment variables."""

    # Change feed (None disables MQTT)
    mqtt_url: str | None = None
    mqtt_topic_prefix: str = "task_orchestrator"

    # AI generation endpoint
    generation_url: str = "http://localhost:3000/api/chatgpt"
    generation_api_key: str | None = None
    generation_model: str = "gpt-4o"
    generation_timeout: float = Field(default=120.0, gt=0)

    # Read-side retention for the recent tasks subscription
    recent_window_hours: int = Field(default=24, gt=0)

    resume_on_start: bool = True

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="TASK_ORCHESTRATOR_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
