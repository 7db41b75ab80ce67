"""Configuration for feed source polling."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourcesConfig(BaseSettings):
    """Settings for the source ingestion engine and its health tracking."""

    model_config = SettingsConfigDict(
        env_prefix="SOURCES_",
        case_sensitive=False,
        extra="ignore",
    )

    disable_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive failed checks after which a source is disabled",
    )
    updated_tolerance_minutes: int = Field(
        default=5,
        ge=0,
        description=(
            "A feed whose own 'updated' time is older than last_checked by more "
            "than this is treated as unchanged without scanning its entries"
        ),
    )
    fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single feed request",
    )
    user_agent: str = Field(default="changewatch/0.1 (feed reader)")
