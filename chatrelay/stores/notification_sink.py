from abc import ABC, abstractmethod
from typing import Any, Dict

from ..core.logging import logger


class NotificationSink(ABC):
    """Fire-and-forget per-user event delivery to connected clients."""

    @abstractmethod
    async def notify(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        pass


class LoggingNotificationSink(NotificationSink):

    async def notify(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Notification: {event}", user_id=user_id, notification=payload)
