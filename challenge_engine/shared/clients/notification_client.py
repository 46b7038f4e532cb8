"""Notification dispatch for challenge lifecycle events.

Each lifecycle event is mapped to a template that produces a title, a
notification type and a priority. Delivery belongs to an external
dispatcher; the engine only hands over rendered notifications.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Template registry
# ---------------------------------------------------------------------------
# event_type -> (title_template, notification_type, priority)
# Title templates use str.format_map() with keys taken from the event data.

NOTIFICATION_TEMPLATES: dict[str, tuple[str, str, str]] = {
    "challenge_started": (
        "Challenge started: {challenge_title}",
        "challenge",
        "normal",
    ),
    "challenge_progress": (
        "Progress on {challenge_title}: {progress}/{max_progress}",
        "challenge",
        "low",
    ),
    "challenge_submitted": (
        "Submission received for {challenge_title}",
        "challenge",
        "normal",
    ),
    "challenge_completed": (
        "Challenge completed: {challenge_title} (+{xp} XP)",
        "reward",
        "high",
    ),
    "challenge_failed": (
        "Challenge not completed: {challenge_title}",
        "challenge",
        "normal",
    ),
    "new_challenge_available": (
        "New challenge available: {challenge_title}",
        "challenge",
        "low",
    ),
}


class _SafeFormatDict(dict):
    """Leaves unknown placeholders in place instead of raising."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class Notification:
    """A rendered notification ready for delivery."""

    user_id: str
    event_type: str
    title: str
    notification_type: str
    priority: str
    data: dict[str, Any] = field(default_factory=dict)


def render_notification(user_id: str, event_type: str, data: dict[str, Any]) -> Notification:
    """Render ``event_type`` for ``user_id``.

    Raises:
        KeyError: If no template is registered for ``event_type``
    """
    title_template, notification_type, priority = NOTIFICATION_TEMPLATES[event_type]
    return Notification(
        user_id=user_id,
        event_type=event_type,
        title=title_template.format_map(_SafeFormatDict(data)),
        notification_type=notification_type,
        priority=priority,
        data=data,
    )


class NotificationDispatcher(ABC):
    """Delivers notifications to users."""

    async def notify(self, user_id: str, event_type: str, data: dict[str, Any]) -> None:
        """Render and deliver one notification."""
        await self.deliver(render_notification(user_id, event_type, data))

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Hand a rendered notification to the delivery channel."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that records notifications in the log and in memory."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def deliver(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "notification_dispatched",
            user_id=notification.user_id,
            event_type=notification.event_type,
            title=notification.title,
            priority=notification.priority,
        )
