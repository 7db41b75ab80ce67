"""Configuration for roadmap change tracking."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RoadmapConfig(BaseSettings):
    """Settings for the roadmap client and ingestion engine."""

    model_config = SettingsConfigDict(
        env_prefix="ROADMAP_",
        case_sensitive=False,
        extra="ignore",
    )

    url: str | None = Field(
        default=None,
        description="Roadmap page embedding the portal data",
    )
    fetch_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for the roadmap page request",
    )
    app_base_url: str = Field(
        default="http://localhost:10000",
        description="Base URL used to link to a roadmap activity in notifications",
    )
    user_agent: str = Field(default="changewatch/0.1 (roadmap watcher)")

    def activity_url(self, activity_id: int) -> str:
        """Link to the change page of one roadmap activity."""
        return f"{self.app_base_url.rstrip('/')}/roadmap/{activity_id}"
