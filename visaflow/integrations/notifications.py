"""
Notification collaborator.

Notifications are fire-and-forget: a failing notifier is logged and
never interrupts a workflow transition.
"""

from typing import Any, Dict, List, Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
import logging

from visaflow.engine.models import new_id, utc_now


logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """A user-facing notification."""
    title: str
    message: str
    type: str = "info"  # info, success, warning, error
    document_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None
    user_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "document_id": self.document_id,
            "workflow_instance_id": self.workflow_instance_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }


class Notifier(ABC):
    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        ...


class LoggingNotifier(Notifier):
    """Writes notifications to the application log."""

    async def notify(self, notification: Notification) -> None:
        logger.info(f"[{notification.type}] {notification.title}: {notification.message}")


class InMemoryNotifier(Notifier):
    """Keeps notifications in a list, newest last."""

    def __init__(self):
        self.notifications: List[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]


async def notify_safely(notifier: Optional[Notifier], notification: Notification) -> None:
    """Send a notification, logging instead of raising on failure."""
    if notifier is None:
        return
    try:
        await notifier.notify(notification)
    except Exception as e:
        logger.warning(f"Notification '{notification.title}' failed: {e}")
