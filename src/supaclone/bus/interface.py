"""Event bus interface definitions.

This module contains the EventBus abstract base class and the handler
protocols used to subscribe to job events.

The bus decouples the orchestrator, the recovery engine and the monitoring
system from their consumers (status streams, audit trails, dashboards).
Publishers never wait on slow consumers when publishing in background mode.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from supaclone.events.base import JobEvent

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[JobEvent], Awaitable[None] | None]


@runtime_checkable
class EventHandler(Protocol):
    """Object with a sync or async handle(event) method."""

    def handle(self, event: JobEvent) -> Any: ...


class EventBus(ABC):
    """
    Abstract event bus for publishing and subscribing to job events.

    Implementations must support both synchronous and asynchronous handlers
    and must isolate handler failures from the publisher.

    Tracing Support:
        Implementations SHOULD inject a ``Tracer`` from
        ``supaclone.observability`` and use the span names
        ``supaclone.event_bus.dispatch`` and ``supaclone.event_bus.handle``.

    Example:
        >>> event_bus = InMemoryEventBus()
        >>> event_bus.subscribe(JobCompleted, notify_owner)
        >>> event_bus.subscribe_to_all_events(audit_trail)
        >>> await event_bus.publish([JobCompleted(...)])
    """

    @abstractmethod
    async def publish(
        self,
        events: list[JobEvent],
        background: bool = False,
    ) -> None:
        """
        Publish events to all registered subscribers.

        Events are processed in order, and all handlers for each event
        are invoked before moving to the next event.

        Args:
            events: List of events to publish
            background: If True, return immediately and dispatch on a
                       background task.

        Note:
            Handler errors are caught and logged but don't prevent other
            handlers from executing.
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        event_type: type[JobEvent],
        handler: EventHandler | EventHandlerFunc,
    ) -> None:
        """
        Subscribe a handler to a specific event type.

        Args:
            event_type: The event class to subscribe to
            handler: Object with handle() method or callable
        """
        pass

    @abstractmethod
    def unsubscribe(
        self,
        event_type: type[JobEvent],
        handler: EventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        pass

    @abstractmethod
    def subscribe_to_all_events(
        self,
        handler: EventHandler | EventHandlerFunc,
    ) -> None:
        """
        Subscribe a handler to all event types (wildcard subscription).

        Args:
            handler: Handler that will receive all events
        """
        pass

    @abstractmethod
    def unsubscribe_from_all_events(
        self,
        handler: EventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from the wildcard subscription.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        pass


__all__ = [
    "EventBus",
    "EventHandler",
    "EventHandlerFunc",
]
