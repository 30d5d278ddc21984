"""
RabbitMQ client for transport domain events.

Purpose:
- Publish committed transport events (approvals, rejections, cancellations) so the
  school messaging component can notify students and guardians
- Keep delivery out of the database transaction: publishing happens after commit

Production notes:
- Use durable queues and persistent messages
- Implement dead-letter queues (DLQ) on the consumer side for failed deliveries
- Monitor queue depth and consumer lag
"""
import logging
from typing import Optional

import aio_pika  # async RabbitMQ client

from config.settings import settings

logger = logging.getLogger(__name__)


class RabbitMQClient:
    """
    Simple async RabbitMQ publisher client.

    Queue used:
      - transport_events (configurable): one JSON message per TransportEvent
    """
    def __init__(self, url: str, queue_name: str):
        self.url = url
        self.queue_name = queue_name
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None

    async def _ensure_connection(self):
        """
        Lazily connect to RabbitMQ and open a channel.
        """
        if self._connection and not self._connection.is_closed:
            return
        logger.info("[RabbitMQClient] Connecting to %s", self.url)
        self._connection = await aio_pika.connect_robust(self.url)
        self._channel = await self._connection.channel()
        # Ensure queue exists (idempotent)
        await self._channel.declare_queue(self.queue_name, durable=True)
        logger.info("[RabbitMQClient] Connected and queue %s declared", self.queue_name)

    async def publish_event(self, body: bytes, event_type: str) -> bool:
        """
        Publish a serialized TransportEvent to the events queue.
        """
        await self._ensure_connection()
        assert self._channel is not None
        logger.debug("[RabbitMQClient] Publishing %s", event_type)
        await self._channel.default_exchange.publish(
            aio_pika.Message(
                body=body,
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                type=event_type,
            ),
            routing_key=self.queue_name,
        )
        return True

    async def close(self):
        if self._connection and not self._connection.is_closed:
            await self._connection.close()

# Singleton instance, used by the notification service
rabbitmq_client = RabbitMQClient(settings.RABBITMQ_URL, settings.TRANSPORT_EVENTS_QUEUE)
