"""Outbound notifications (SMS / e-mail receipts).

Delivery is a collaborator behind the ``Notifier`` protocol. ``LogNotifier``
records the message in the log instead of contacting a provider.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


@dataclass
class NotificationResult:
    success: bool
    message: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error:
            result["error"] = self.error
        return result


class Notifier(Protocol):
    async def send(self, channel: Channel, target: str, message: str) -> NotificationResult: ...


class LogNotifier:
    """Notifier that only logs; delivery providers plug in behind ``Notifier``."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="log_notifier")
        self.sent: list[tuple[Channel, str, str]] = []

    async def send(self, channel: Channel, target: str, message: str) -> NotificationResult:
        try:
            channel = Channel(channel)
        except ValueError:
            self._logger.error("notification_channel_unknown", channel=str(channel))
            return NotificationResult(success=False, error=f"Unknown channel: {channel}")

        self.sent.append((channel, target, message))
        self._logger.info(
            "notification_sent", channel=channel.value, target=target, message=message
        )
        return NotificationResult(success=True, message=f"{channel.value} sent")
