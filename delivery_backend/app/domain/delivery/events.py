"""
Delivery lifecycle events.

Publication is best-effort: each event is sent from a detached task with its
own timeout, guarded by a circuit breaker. Failures are logged and never
reach the request that caused them.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Set

from pydantic import BaseModel, Field

from delivery_backend.app.core.config import settings
from delivery_backend.app.core.redis_client import redis_client
from delivery_backend.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

# Subjects
SUBJECT_REQUESTED = "deliveries.requested"
SUBJECT_ACCEPTED = "deliveries.accepted"
SUBJECT_PICKED_UP = "deliveries.picked_up"
SUBJECT_COMPLETED = "deliveries.completed"
SUBJECT_CANCELLED = "deliveries.cancelled"

# Event types
EVENT_REQUESTED = "delivery.requested"
EVENT_ACCEPTED = "delivery.accepted"
EVENT_PICKED_UP = "delivery.picked_up"
EVENT_COMPLETED = "delivery.completed"
EVENT_CANCELLED = "delivery.cancelled"


class DeliveryEvent(BaseModel):
    """Envelope for every message put on the bus."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    source: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    data: Dict[str, Any]


class EventBus(Protocol):
    async def publish(self, subject: str, message: str) -> Any:
        ...


class RedisEventBus:
    """Publishes on the Redis pub/sub channel named by the subject."""

    def __init__(self, client=None):
        self.client = client or redis_client

    async def publish(self, subject: str, message: str) -> Any:
        return await self.client.publish(subject, message)


class DeliveryEventPublisher:
    """
    Fire-and-forget publisher.

    publish() returns immediately; the send runs in its own task so request
    cancellation never aborts it. drain() waits for pending sends.
    """

    def __init__(
        self,
        bus: Optional[EventBus],
        source: str = None,
        timeout: float = None,
        breaker: Optional[CircuitBreaker] = None,
        enabled: bool = True
    ):
        self.bus = bus
        self.source = source or settings.event_source
        self.timeout = timeout if timeout is not None else settings.event_publish_timeout_seconds
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.event_bus_failure_threshold,
            reset_timeout=settings.event_bus_reset_timeout
        )
        self.enabled = enabled
        self._tasks: Set[asyncio.Task] = set()

    def publish(self, subject: str, event_type: str, data: Dict[str, Any]) -> Optional[asyncio.Task]:
        """
        Schedule an event for publication.

        Args:
            subject: Bus subject (e.g. deliveries.accepted)
            event_type: Envelope type (e.g. delivery.accepted)
            data: Event payload

        Returns:
            The background task, or None when publishing is disabled
        """
        if not self.enabled or self.bus is None:
            return None

        event = DeliveryEvent(type=event_type, source=self.source, data=data)
        task = asyncio.create_task(self._send(subject, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _publish_with_timeout(self, subject: str, message: str):
        return await asyncio.wait_for(self.bus.publish(subject, message), timeout=self.timeout)

    async def _send(self, subject: str, event: DeliveryEvent) -> bool:
        try:
            await self.breaker.call(self._publish_with_timeout, subject, event.model_dump_json())
        except CircuitOpenError:
            logger.warning("Event bus circuit open, dropped %s for %s", event.type, subject)
            return False
        except asyncio.TimeoutError:
            logger.warning("Timed out publishing %s after %.1fs", event.type, self.timeout)
            return False
        except Exception as exc:
            logger.warning("Failed to publish %s: %s", event.type, exc)
            return False
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for all in-flight publications to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


event_publisher = DeliveryEventPublisher(
    RedisEventBus(),
    enabled=settings.event_bus_enabled
)


def get_event_publisher() -> DeliveryEventPublisher:
    """Dependency returning the process-wide publisher."""
    return event_publisher
