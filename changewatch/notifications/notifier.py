"""Notifier: the single ``notify(subject, text, html)`` entry point used by engines.

Delivery failures are logged and reported as ``False``; they are never
retried and never raised, so a broken mail API cannot undo or interrupt
work that has already been persisted.
"""

import logging

from changewatch.notifications.channels import (
    LogChannel,
    MailChannel,
    NotificationChannel,
)
from changewatch.notifications.config import NotificationConfig
from changewatch.notifications.schemas import Notification

logger = logging.getLogger(__name__)


class Notifier:
    """Fans a notification out to the configured channels."""

    def __init__(
        self,
        config: NotificationConfig | None = None,
        channels: list[NotificationChannel] | None = None,
    ) -> None:
        self._config = config or NotificationConfig()
        if channels is not None:
            self._channels = channels
        else:
            self._channels = self._create_channels(self._config)

    @staticmethod
    def _create_channels(config: NotificationConfig) -> list[NotificationChannel]:
        if not config.enabled:
            logger.warning("Notifications disabled, messages will only be logged")
            return [LogChannel()]
        if not config.mail_configured:
            logger.warning("Notifications enabled but mail API not configured, logging only")
            return [LogChannel()]
        return [MailChannel(config)]

    @property
    def channels(self) -> list[NotificationChannel]:
        """Access the channels (for inspection/testing)."""
        return self._channels

    async def notify(self, subject: str, text: str, html: str) -> bool:
        """Send one notification to every channel.

        Returns:
            True only if every channel accepted the notification.
        """
        notification = Notification(subject=subject, text=text, html=html)
        delivered = True

        for channel in self._channels:
            try:
                ok = await channel.send(notification)
            except Exception as e:
                logger.error(
                    "Channel %s raised while sending %r: %s", channel.name, subject, e
                )
                ok = False
            if not ok:
                logger.error("Notification %r not delivered via %s", subject, channel.name)
            delivered = delivered and ok

        return delivered
