"""
University Assessment Engine - Notifications
Fire-and-forget delivery of domain events to a pluggable sink
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import aiohttp

from assessment.core.config import settings
from assessment.core.database import utcnow
from assessment.models.attempt import StudentAttempt
from assessment.models.test import SubjectTest
from assessment.services.exceptions import DependencyFailure

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Events other systems may want to hear about."""
    TEST_PUBLISHED = "test_published"
    ATTEMPT_GRADED = "attempt_graded"


@dataclass
class Notification:
    event: NotificationEvent
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event"] = self.event.value
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


def published_event(test: SubjectTest) -> Notification:
    return Notification(
        event=NotificationEvent.TEST_PUBLISHED,
        payload={
            "test_id": test.id,
            "subject_id": test.subject_id,
            "group_id": test.group_id,
            "instructor_id": test.instructor_id,
            "title": test.title,
        },
    )


def graded_event(attempt: StudentAttempt) -> Notification:
    return Notification(
        event=NotificationEvent.ATTEMPT_GRADED,
        payload={
            "attempt_id": attempt.id,
            "test_id": attempt.test_id,
            "student_id": attempt.student_id,
            "total_score": attempt.total_score,
            "max_score": attempt.max_score,
            "percentage": attempt.percentage,
            "passed": attempt.passed,
            "letter_grade": attempt.letter_grade,
        },
    )


class NotificationSink(Protocol):
    async def send(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: writes every event to the application log."""

    async def send(self, notification: Notification) -> None:
        logger.info(f"Notification {notification.event.value}: {notification.payload}")


class WebhookNotificationSink:
    """POSTs each event as JSON to a configured URL."""

    def __init__(self, url: str, timeout_seconds: float = 5):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def send(self, notification: Notification) -> None:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=notification.to_dict()) as response:
                    if response.status >= 400:
                        raise DependencyFailure(
                            f"Webhook answered {response.status} for {notification.event.value}"
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DependencyFailure(
                f"Webhook delivery of {notification.event.value} failed: {e}"
            ) from e


def build_notification_sink() -> NotificationSink:
    """Webhook sink when a URL is configured, logging sink otherwise."""
    if settings.NOTIFICATION_WEBHOOK_URL:
        return WebhookNotificationSink(
            settings.NOTIFICATION_WEBHOOK_URL,
            timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationSink()


async def dispatch_notification(sink: NotificationSink, notification: Notification) -> bool:
    """
    Deliver one notification. Delivery failures are logged and never
    propagate, so they cannot undo the state change that caused them.

    Returns:
        True if the sink accepted the notification
    """
    try:
        await sink.send(notification)
    except DependencyFailure as e:
        logger.warning(f"[{e.code}] {e.message}")
        return False
    return True
