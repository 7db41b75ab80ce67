"""Notification channel implementations.

Provides an ABC for notification channels plus a mail API channel and a
log-only channel. Channels never raise on delivery problems: they log
and report failure through their return value.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from changewatch.notifications.config import NotificationConfig
from changewatch.notifications.schemas import Notification

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (e.g. 'mail', 'log')."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver a notification through this channel.

        Returns:
            True if delivery succeeded, False otherwise.
        """


class MailChannel(NotificationChannel):
    """Delivers notifications as a JSON POST to a transactional mail API.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling);
    notifications are rare enough that connection reuse does not matter.
    """

    def __init__(self, config: NotificationConfig) -> None:
        if not config.mail_configured:
            raise ValueError("MailChannel requires mail_url and mail_token")
        self._config = config

    @property
    def name(self) -> str:
        return "mail"

    def _build_payload(self, notification: Notification) -> dict:
        return {
            "from": {
                "email": self._config.from_email,
                "name": self._config.from_name,
            },
            "to": [
                {
                    "email": self._config.to_email,
                    "name": self._config.to_name,
                }
            ],
            "subject": notification.subject,
            "text": notification.text,
            "html": notification.html,
        }

    async def send(self, notification: Notification) -> bool:
        payload = self._build_payload(notification)
        headers = {"Authorization": f"Bearer {self._config.mail_token}"}
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(self._config.mail_url, json=payload, headers=headers)
                if resp.is_success:
                    return True
                logger.error(
                    "Mail API returned %d for %r: %s",
                    resp.status_code, notification.subject, resp.text,
                )
                return False
        except httpx.TimeoutException:
            logger.error("Mail API timed out for %r", notification.subject)
            return False
        except httpx.HTTPError as e:
            logger.error("Mail API request failed for %r: %s", notification.subject, e)
            return False


class LogChannel(NotificationChannel):
    """Writes notifications to the log instead of delivering them."""

    @property
    def name(self) -> str:
        return "log"

    async def send(self, notification: Notification) -> bool:
        logger.info("Notification: %s\n%s", notification.subject, notification.text)
        return True
