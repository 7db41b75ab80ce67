"""Notification configuration.

The ``enabled`` flag is the feature gate: when it is off, engines still
build their notifications but the notifier only logs them. All settings
can be overridden via ``NOTIFICATIONS_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationConfig(BaseSettings):
    """Configuration for notification delivery through a transactional mail API."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = Field(
        default=False,
        description="Send notifications; when false they are only logged",
    )
    mail_url: str | None = Field(
        default=None,
        description="Endpoint of the mail API accepting JSON send requests",
    )
    mail_token: str | None = Field(
        default=None,
        description="Bearer token for the mail API",
    )
    from_email: str = Field(default="changewatch@localhost")
    from_name: str = Field(default="changewatch")
    to_email: str = Field(default="root@localhost")
    to_name: str = Field(default="")
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single mail API request",
    )

    @property
    def mail_configured(self) -> bool:
        """Check if the mail API endpoint and token are both set."""
        return self.mail_url is not None and self.mail_token is not None
