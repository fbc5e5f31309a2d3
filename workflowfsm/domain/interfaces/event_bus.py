"""EventBus interface for transition notifications."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Union

from workflowfsm.domain.models.transition_event import TransitionEvent, TransitionTopic

EventHandler = Callable[[TransitionEvent], Union[Awaitable[None], None]]


class EventBus(ABC):
    """Publish/subscribe port for ``before_transition``, ``after_transition``
    and ``transition_failed``.

    Example:
        ```python
        async def notify(event: AfterTransitionEvent) -> None:
            await mailer.send(f"Order {event.entity_id} is now {event.to_state.slug}")

        bus.subscribe(TransitionTopic.AfterTransition, notify)
        ```
    """

    @abstractmethod
    async def publish(self, topic: TransitionTopic, event: TransitionEvent) -> None:
        """Deliver an event to every subscriber of a topic.

        Raises:
            EventBusError: If delivery itself fails. Subscriber exceptions
                are not delivery failures.
        """
        pass

    @abstractmethod
    def subscribe(self, topic: TransitionTopic, handler: EventHandler) -> None:
        """Register a handler (sync or async) for a topic."""
        pass

    @abstractmethod
    def unsubscribe(self, topic: TransitionTopic, handler: EventHandler) -> bool:
        """Remove a handler. Returns True if it was registered."""
        pass


class EventBusError(Exception):
    """Raised when event delivery fails."""

    pass
