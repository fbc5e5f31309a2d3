"""In-process publish/subscribe event bus."""

import inspect
from collections import defaultdict

import structlog

from workflowfsm.domain.interfaces.event_bus import EventBus, EventHandler
from workflowfsm.domain.models.transition_event import TransitionEvent, TransitionTopic

logger = structlog.get_logger(__name__)


class InMemoryEventBus(EventBus):
    """Delivers events to subscribers in subscription order.

    Subscribers run inline, one after the other, in the publishing task. A
    subscriber that raises is logged and skipped; the remaining subscribers
    still run and ``publish`` returns normally, so a broken listener can
    never change a transition's outcome.

    Attributes:
        published: Every (topic, event) pair delivered, oldest first. Useful
            for assertions; cleared with ``clear_published``.
    """

    def __init__(self, record: bool = False) -> None:
        """Initialize InMemoryEventBus.

        Args:
            record: Keep a list of published events in ``published``.
        """
        self._handlers: dict[TransitionTopic, list[EventHandler]] = defaultdict(list)
        self._record = record
        self.published: list[tuple[TransitionTopic, TransitionEvent]] = []

    def subscribe(self, topic: TransitionTopic, handler: EventHandler) -> None:
        self._handlers[TransitionTopic(topic)].append(handler)

    def unsubscribe(self, topic: TransitionTopic, handler: EventHandler) -> bool:
        handlers = self._handlers.get(TransitionTopic(topic), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def subscriber_count(self, topic: TransitionTopic) -> int:
        return len(self._handlers.get(TransitionTopic(topic), []))

    async def publish(self, topic: TransitionTopic, event: TransitionEvent) -> None:
        topic = TransitionTopic(topic)
        if self._record:
            self.published.append((topic, event))

        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "event_subscriber_failed",
                    topic=topic.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    error=str(e),
                )

    def clear_published(self) -> None:
        self.published.clear()
