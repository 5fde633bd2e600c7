"""In-memory event bus implementation.

This module provides an in-memory event bus for distributing job events
to registered subscribers within the same process.
"""

import asyncio
import logging
import threading
from collections import defaultdict

from supaclone.bus.adapter import HandlerAdapter
from supaclone.bus.interface import (
    EventBus,
    EventHandler,
    EventHandlerFunc,
)
from supaclone.events.base import JobEvent
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import (
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_JOB_ID,
)

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):
    """
    In-memory event bus for job event distribution.

    Supports both synchronous (blocking) and background (fire-and-forget)
    publishing. Background publishes are chained: each background task
    waits for the previous one, so subscribers see events in publish order
    while the publisher never waits on them.

    Features:
    - Thread-safe subscription management
    - Support for sync and async handlers
    - Wildcard subscriptions (receive all events)
    - Error isolation (handler failures don't stop other handlers)
    - OpenTelemetry tracing through an injected Tracer
    - Background task management with proper cleanup

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(JobFailed, page_operator)
        >>> await bus.publish([JobFailed(...)], background=True)
        >>> await bus.shutdown()

    Thread Safety:
        - Subscription methods (subscribe, unsubscribe) are thread-safe
        - Publishing should only be called from async context
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the event bus with empty subscriber registry.

        Args:
            tracer: Optional custom Tracer instance. If not provided, one is
                   created based on enable_tracing setting.
            enable_tracing: If True, emit traces. Ignored if tracer is provided.
        """
        self._subscribers: dict[type[JobEvent], list[HandlerAdapter]] = defaultdict(list)
        self._all_event_handlers: list[HandlerAdapter] = []
        self._lock = threading.RLock()
        self._background_tasks: set[asyncio.Task[None]] = set()
        self._last_background_task: asyncio.Task[None] | None = None
        self._stats = {
            "events_published": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
            "background_tasks_created": 0,
            "background_tasks_completed": 0,
        }

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def publish(
        self,
        events: list[JobEvent],
        background: bool = False,
    ) -> None:
        """
        Publish events to all registered subscribers.

        Args:
            events: Events to publish
            background: If True, dispatch events in background without blocking
        """
        if not events:
            return

        if background:
            task = asyncio.create_task(
                self._publish_after(self._last_background_task, list(events))
            )
            task.add_done_callback(self._on_background_task_done)
            self._background_tasks.add(task)
            self._last_background_task = task
            self._stats["background_tasks_created"] += 1
            logger.debug(
                f"Scheduled background publishing of {len(events)} event(s)",
                extra={"event_count": len(events)},
            )
        else:
            await self._publish_all(events)

    async def _publish_after(
        self,
        previous: asyncio.Task[None] | None,
        events: list[JobEvent],
    ) -> None:
        if previous is not None and not previous.done():
            # Only ordering matters here; the previous task logs its own failure
            await asyncio.wait([previous])
        await self._publish_all(events)

    def _on_background_task_done(self, task: asyncio.Task[None]) -> None:
        """Callback when a background task completes."""
        self._background_tasks.discard(task)
        self._stats["background_tasks_completed"] += 1
        if self._last_background_task is task:
            self._last_background_task = None

        if not task.cancelled():
            exc = task.exception()
            if exc:
                logger.error(
                    f"Background publishing task failed: {exc}",
                    exc_info=exc,
                )

    async def _publish_all(self, events: list[JobEvent]) -> None:
        for event in events:
            await self._dispatch_event(event)
            self._stats["events_published"] += 1

    async def _dispatch_event(self, event: JobEvent) -> None:
        """
        Dispatch a single event to all matching handlers.

        Handlers subscribed to a base class also receive its subclasses.
        """
        event_type = type(event)

        with self._lock:
            specific_handlers = [
                adapter
                for subscribed_type, adapters in self._subscribers.items()
                if issubclass(event_type, subscribed_type)
                for adapter in adapters
            ]
            wildcard_handlers = list(self._all_event_handlers)

        handlers = specific_handlers + wildcard_handlers

        if not handlers:
            logger.debug(
                f"No handlers registered for event type: {event_type.__name__}",
                extra={"event_type": event_type.__name__},
            )
            return

        logger.debug(
            f"Dispatching {event_type.__name__} to {len(handlers)} handler(s)",
            extra={
                "event_type": event_type.__name__,
                "event_id": str(event.event_id),
                "job_id": str(event.job_id) if event.job_id else None,
                "handler_count": len(handlers),
            },
        )

        with self._tracer.span(
            "supaclone.event_bus.dispatch",
            {
                ATTR_EVENT_TYPE: event_type.__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_JOB_ID: str(event.job_id) if event.job_id else "",
                ATTR_HANDLER_COUNT: len(handlers),
            },
        ):
            await asyncio.gather(
                *(self._safe_handle(adapter, event) for adapter in handlers),
                return_exceptions=True,
            )

    async def _safe_handle(self, adapter: HandlerAdapter, event: JobEvent) -> None:
        """Execute a handler, catching and logging exceptions."""
        with self._tracer.span(
            "supaclone.event_bus.handle",
            {
                ATTR_EVENT_TYPE: type(event).__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_HANDLER_NAME: adapter.name,
            },
        ) as span:
            try:
                await adapter.handle(event)
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, True)
                self._stats["handlers_invoked"] += 1
            except Exception as e:
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                    span.record_exception(e)
                self._stats["handler_errors"] += 1
                logger.error(
                    f"Handler {adapter.name} failed processing {type(event).__name__}: {e}",
                    exc_info=True,
                    extra={
                        "handler": adapter.name,
                        "event_type": type(event).__name__,
                        "event_id": str(event.event_id),
                        "error": str(e),
                    },
                )

    def subscribe(
        self,
        event_type: type[JobEvent],
        handler: EventHandler | EventHandlerFunc,
    ) -> None:
        """
        Subscribe a handler to a specific event type.

        Thread-safe: Can be called from any thread.
        """
        adapter = HandlerAdapter(handler)

        with self._lock:
            self._subscribers[event_type].append(adapter)

        logger.debug(
            f"Registered handler {adapter.name} for {event_type.__name__}",
            extra={"handler": adapter.name, "event_type": event_type.__name__},
        )

    def unsubscribe(
        self,
        event_type: type[JobEvent],
        handler: EventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Thread-safe: Can be called from any thread.
        """
        with self._lock:
            adapters = self._subscribers.get(event_type, [])
            for i, adapter in enumerate(adapters):
                if adapter == handler:
                    adapters.pop(i)
                    return True
        return False

    def subscribe_to_all_events(
        self,
        handler: EventHandler | EventHandlerFunc,
    ) -> None:
        """
        Subscribe a handler to all event types (wildcard subscription).

        Thread-safe: Can be called from any thread.
        """
        adapter = HandlerAdapter(handler)

        with self._lock:
            self._all_event_handlers.append(adapter)

        logger.debug(
            f"Registered wildcard handler {adapter.name}",
            extra={"handler": adapter.name},
        )

    def unsubscribe_from_all_events(
        self,
        handler: EventHandler | EventHandlerFunc,
    ) -> bool:
        """
        Unsubscribe a handler from the wildcard subscription.

        Thread-safe: Can be called from any thread.
        """
        with self._lock:
            for i, adapter in enumerate(self._all_event_handlers):
                if adapter == handler:
                    self._all_event_handlers.pop(i)
                    return True
        return False

    def clear_subscribers(self) -> None:
        """Clear all subscribers."""
        with self._lock:
            self._subscribers.clear()
            self._all_event_handlers.clear()

        logger.info("All event subscribers cleared")

    def get_subscriber_count(self, event_type: type[JobEvent] | None = None) -> int:
        """
        Get the number of registered subscribers.

        Args:
            event_type: If provided, count subscribers for this event type only.
                       Does not include wildcard subscribers.
        """
        with self._lock:
            if event_type is None:
                return sum(len(handlers) for handlers in self._subscribers.values())
            return len(self._subscribers.get(event_type, []))

    def get_wildcard_subscriber_count(self) -> int:
        """Get the number of wildcard subscribers."""
        with self._lock:
            return len(self._all_event_handlers)

    def get_stats(self) -> dict[str, int]:
        """
        Get statistics about event bus operation.

        Returns:
            Dictionary with counts:
            - events_published: Total events published
            - handlers_invoked: Total successful handler invocations
            - handler_errors: Total handler errors
            - background_tasks_created: Background tasks started
            - background_tasks_completed: Background tasks finished
        """
        return dict(self._stats)

    def get_background_task_count(self) -> int:
        """Get the number of currently active background tasks."""
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait until every background dispatch scheduled so far has finished."""
        while self._background_tasks:
            await asyncio.wait(list(self._background_tasks))

    async def shutdown(self, timeout: float = 30.0) -> None:
        """
        Shutdown the event bus and wait for background tasks to complete.

        Args:
            timeout: Maximum time to wait for tasks to complete in seconds
        """
        logger.info(
            f"Shutting down event bus, waiting for {len(self._background_tasks)} background task(s)"
        )

        if not self._background_tasks:
            return

        pending = list(self._background_tasks)
        done, remaining = await asyncio.wait(
            pending,
            timeout=timeout,
            return_when=asyncio.ALL_COMPLETED,
        )
        if remaining:
            logger.warning(
                f"Event bus shutdown: {len(remaining)} task(s) did not complete within timeout",
                extra={"remaining_tasks": len(remaining)},
            )
            for task in remaining:
                task.cancel()

        logger.info("Event bus shutdown complete")


__all__ = ["InMemoryEventBus"]
