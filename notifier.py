"""Outbox for templated email notifications.

Services call ``Notifier.enqueue`` after their transaction has committed;
``enqueue`` only appends to an in-memory outbox and never blocks or raises
for delivery problems. ``Notifier.drain`` runs as a FastAPI background task
after the response is sent and hands each message to a ``Mailer``. A failed
delivery is logged and retried on a later drain, up to ``max_attempts``.
Rendering and transport belong to the ``Mailer`` implementation.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from observability import metric_scope
from settings import get_settings

logger = structlog.get_logger(__name__)

NEW_APPLICATION = "new_application"
APPLICATION_RECEIVED = "application_received"
APPLICATION_ACCEPTED = "application_accepted"
APPLICATION_REJECTED = "application_rejected"


class Notification(BaseModel):
    template: str
    recipient: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0


class Mailer(ABC):
    """Delivery transport for notifications."""

    @abstractmethod
    async def send(self, notification: Notification, sender: str) -> None:
        """Deliver one notification; raise on failure."""


class LogMailer(Mailer):
    """Mailer that only records the message in the log."""

    async def send(self, notification: Notification, sender: str) -> None:
        logger.info(
            "Email dispatched",
            template=notification.template,
            recipient=notification.recipient,
            sender=sender,
            payload=notification.payload,
        )


class Notifier:
    def __init__(self, mailer: Optional[Mailer] = None, max_attempts: int = 3) -> None:
        self.mailer = mailer or LogMailer()
        self.max_attempts = max_attempts
        # deque append/popleft are thread-safe; enqueue runs on threadpool workers
        self._outbox: Deque[Notification] = deque()

    def enqueue(self, template: str, recipient: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._outbox.append(Notification(template=template, recipient=recipient, payload=payload or {}))
        logger.info("Notification queued", template=template, recipient=recipient)

    def pending(self) -> List[Notification]:
        return list(self._outbox)

    async def drain(self) -> int:
        """Deliver everything currently queued. Returns the number delivered."""
        delivered = 0
        for _ in range(len(self._outbox)):
            try:
                notification = self._outbox.popleft()
            except IndexError:
                break  # another drain got there first
            if await self._deliver(notification):
                delivered += 1
            elif notification.attempts < self.max_attempts:
                self._outbox.append(notification)
            else:
                logger.error(
                    "Dropping notification after repeated failures",
                    template=notification.template,
                    recipient=notification.recipient,
                    attempts=notification.attempts,
                )
        return delivered

    @metric_scope
    async def _deliver(self, notification: Notification, metrics=None) -> bool:
        metrics.set_namespace("JobBoard")
        metrics.set_property("template", notification.template)
        notification.attempts += 1
        try:
            await self.mailer.send(notification, get_settings().mail_from)
        except Exception as exc:
            metrics.put_metric("notifications_failed", 1, "Count")
            logger.error(
                "Notification delivery failed",
                template=notification.template,
                recipient=notification.recipient,
                attempt=notification.attempts,
                exc_info=exc,
            )
            return False
        metrics.put_metric("notifications_sent", 1, "Count")
        return True


notifier = Notifier()


def get_notifier() -> Notifier:
    return notifier
