# services/notification_service.py
import logging
from collections import deque
from typing import List

from config.settings import settings
from infra.rabbitmq_client import rabbitmq_client
from models.events import TransportEvent

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Post-commit dispatch of transport events.

    - Preferred: publish to RabbitMQ (the messaging component delivers SMS/e-mail)
    - Always: log the event and keep it in a bounded recent-events buffer

    publish() never raises: a delivery problem must not undo a committed approval.
    """
    def __init__(self, publisher=None, enabled: bool = False, limit: int = 50):
        self.publisher = publisher
        self.enabled = enabled
        self.sent_events = deque(maxlen=limit)

    async def publish(self, event: TransportEvent) -> bool:
        logger.info(
            "[NotificationService] %s student=%s request=%s subscription=%s outcome=%s",
            event.event_type, event.student_id, event.request_id, event.subscription_id, event.outcome,
        )
        published = False
        if self.enabled and self.publisher is not None:
            try:
                published = await self.publisher.publish_event(
                    event.model_dump_json().encode("utf-8"), event.event_type
                )
            except Exception as e:
                logger.error("RabbitMQ publish failed for %s: %s", event.event_type, e)
        self.sent_events.append({"event": event.model_dump(mode="json"), "published": published})
        return published

    async def publish_all(self, events: List[TransportEvent]) -> None:
        for event in events:
            await self.publish(event)

    def recent_events(self):
        """Most recent events, oldest first."""
        return list(self.sent_events)

    def clear(self):
        self.sent_events.clear()

# singleton
notification_service = NotificationService(
    publisher=rabbitmq_client,
    enabled=settings.RABBITMQ_ENABLED,
    limit=settings.RECENT_EVENTS_LIMIT,
)
