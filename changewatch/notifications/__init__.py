"""Notifications: outbound delivery of change and health messages."""

from changewatch.notifications.channels import LogChannel, MailChannel, NotificationChannel
from changewatch.notifications.config import NotificationConfig
from changewatch.notifications.notifier import Notifier
from changewatch.notifications.schemas import Notification

__all__ = [
    "LogChannel",
    "MailChannel",
    "Notification",
    "NotificationChannel",
    "NotificationConfig",
    "Notifier",
]
