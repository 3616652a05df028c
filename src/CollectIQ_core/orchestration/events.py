"""Message bus façade and CloudEvent construction for workflow events.

Two topics matter to the workflow: completion events for finished card
records and the dead-letter channel for executions that failed outright.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from cloudevents.http import CloudEvent

from CollectIQ_core.models import CompletionEvent
from CollectIQ_core.utils.time import utc_now

COMPLETION_TOPIC = "cards.valuation.completed.v1"
DEAD_LETTER_TOPIC = "cards.workflow.deadletter.v1"
COMPLETION_EVENT_TYPE = "collectiq.card.valuation.completed"
DEAD_LETTER_EVENT_TYPE = "collectiq.card.workflow.failed"


@dataclass
class BusMessage:
    topic: str
    value: dict[str, object]
    key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class MessageBus(Protocol):
    async def publish(
        self,
        topic: str,
        value: dict[str, object],
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> BusMessage:
        ...


class InMemoryMessageBus:
    """Small in-memory topic bus suitable for tests and single-process runs."""

    def __init__(self, topics: Iterable[str] = (COMPLETION_TOPIC, DEAD_LETTER_TOPIC)) -> None:
        self._topics: dict[str, deque[BusMessage]] = defaultdict(deque)
        self.create_topics(topics)

    def create_topics(self, topics: Iterable[str]) -> None:
        for topic in topics:
            if topic not in self._topics:
                self._topics[topic] = deque()

    async def publish(
        self,
        topic: str,
        value: dict[str, object],
        *,
        key: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> BusMessage:
        if topic not in self._topics:
            raise ValueError(f"Topic '{topic}' has not been created")
        message = BusMessage(topic=topic, value=value, key=key, headers=dict(headers or {}))
        self._topics[topic].append(message)
        return message

    def consume(self, topic: str, *, max_messages: int | None = None) -> Iterator[BusMessage]:
        if topic not in self._topics:
            raise ValueError(f"Topic '{topic}' has not been created")
        queue = self._topics[topic]
        consumed = 0
        while queue and (max_messages is None or consumed < max_messages):
            consumed += 1
            yield queue.popleft()

    def pending(self, topic: str) -> int:
        if topic not in self._topics:
            raise ValueError(f"Topic '{topic}' has not been created")
        return len(self._topics[topic])

    def peek(self, topic: str) -> BusMessage | None:
        if topic not in self._topics:
            raise ValueError(f"Topic '{topic}' has not been created")
        queue = self._topics[topic]
        return queue[0] if queue else None

    def messages(self, topic: str) -> list[BusMessage]:
        """Return queued messages for ``topic`` without consuming them."""
        return list(self._topics.get(topic, ()))


def _iso(value: datetime) -> str:
    return value.isoformat()


@dataclass(slots=True)
class CloudEventFactory:
    """Create CloudEvents for workflow completions and dead letters."""

    source: str = "collectiq.backend"

    def completion(self, event: CompletionEvent) -> CloudEvent:
        attributes = {
            # Stable per execution; repeated publishes share one id.
            "id": f"{event.execution_id}:completed",
            "type": COMPLETION_EVENT_TYPE,
            "source": self.source,
            "subject": event.card_id,
            "time": _iso(event.completed_at),
            "datacontenttype": "application/json",
        }
        return CloudEvent(attributes, event.model_dump(mode="json", by_alias=True))

    def dead_letter(
        self,
        *,
        execution_id: str,
        card_id: str,
        step: str,
        error: dict[str, Any],
        context: dict[str, Any],
    ) -> CloudEvent:
        attributes = {
            "id": f"{execution_id}:failed",
            "type": DEAD_LETTER_EVENT_TYPE,
            "source": self.source,
            "subject": card_id,
            "time": _iso(utc_now()),
            "datacontenttype": "application/json",
        }
        payload = {
            "executionId": execution_id,
            "cardId": card_id,
            "step": step,
            "error": error,
            "context": context,
        }
        return CloudEvent(attributes, payload)


def event_to_message(event: CloudEvent) -> dict[str, object]:
    """Flatten a CloudEvent into a bus payload (attributes plus ``data``)."""
    payload: dict[str, object] = {key: value for key, value in event.get_attributes().items()}
    payload["data"] = event.get_data()
    return payload


__all__ = [
    "BusMessage",
    "COMPLETION_EVENT_TYPE",
    "COMPLETION_TOPIC",
    "CloudEventFactory",
    "DEAD_LETTER_EVENT_TYPE",
    "DEAD_LETTER_TOPIC",
    "InMemoryMessageBus",
    "MessageBus",
    "event_to_message",
]
