"""Schema for an outbound notification."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Notification:
    """A single message: plain-text and HTML renderings of the same content."""

    subject: str
    text: str
    html: str
