"""Consent lifecycle event publishing.

Events are fire-and-forget notifications for downstream delivery
(email/SMS). Delivery is at-least-once; a failing sink never rolls back
the consent change that produced the event.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from hospital_service.core.config import settings

logger = logging.getLogger(__name__)


class ConsentEvent(str, Enum):
    """Consent lifecycle events published to the notification sink."""

    REQUESTED = "requested"
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"

    @property
    def topic(self) -> str:
        return f"{settings.event_topic_prefix}.{self.value}"


class EventPublisher(ABC):
    """Abstract base class for event sinks."""

    @abstractmethod
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Publish one event.

        Raises any transport error; callers decide whether to propagate.
        """
        pass


class LoggingEventPublisher(EventPublisher):
    """Sink that writes events to the application log.

    Used until a message broker is wired in.
    """

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        logger.info(f"Event published: topic={topic} payload={payload}")


async def publish_safely(
    publisher: EventPublisher,
    event: ConsentEvent,
    payload: dict[str, Any],
) -> bool:
    """Publish an event, logging instead of raising on sink failure.

    Returns:
        True if the sink accepted the event
    """
    try:
        await publisher.publish(event.topic, payload)
        return True
    except Exception as e:
        logger.error(f"Failed to publish {event.topic}: {e}")
        return False


_default_publisher: EventPublisher = LoggingEventPublisher()


def get_event_publisher() -> EventPublisher:
    """Get the process-wide event publisher."""
    return _default_publisher
