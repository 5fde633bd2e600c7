"""
JobEventStreamer - real-time event streaming for one clone job.

Wraps the event bus in an async iterator so a client (an API endpoint, a
CLI progress bar) can follow a single job. Each call to stream_events()
registers its own queue; the streamer holds one wildcard subscription on
the bus while at least one subscriber is active.

A stream ends when:
    - a terminal event (JobCompleted, JobFailed, JobCancelled) was yielded
    - the subscriber breaks from the loop
    - the streamer is closed
    - no event arrives within ``idle_timeout`` seconds (if given)

Usage:
    >>> streamer = JobEventStreamer(orchestrator.event_bus, job_id)
    >>> async for event in streamer.stream_events():
    ...     if isinstance(event, ProgressUpdated):
    ...         print(f"{event.phase}: {event.overall_percentage:.1f}%")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from uuid import UUID

from supaclone.bus import EventBus
from supaclone.events import JobCancelled, JobCompleted, JobEvent, JobFailed
from supaclone.observability import Tracer, create_tracer
from supaclone.observability.attributes import ATTR_JOB_ID

logger = logging.getLogger(__name__)

TERMINAL_EVENTS: tuple[type[JobEvent], ...] = (JobCompleted, JobFailed, JobCancelled)

DEFAULT_QUEUE_SIZE = 1000


def is_terminal_event(event: JobEvent) -> bool:
    """Whether an event ends a job's stream."""
    return isinstance(event, TERMINAL_EVENTS)


class JobEventStreamer:
    """
    Async-iterator view of the events of one job.

    Designed for asyncio and not thread-safe. Events published before a
    subscriber registered are not replayed.

    Attributes:
        _event_bus: Bus the job's events are published on.
        _job_id: Job whose events are streamed.
        _subscribers: Queues of active subscribers by subscriber id.
    """

    def __init__(
        self,
        event_bus: EventBus,
        job_id: UUID,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._event_bus = event_bus
        self._job_id = job_id
        self._queue_size = queue_size
        self._subscribers: dict[int, asyncio.Queue[JobEvent | None]] = {}
        self._next_subscriber_id = 0
        self._subscribed = False
        self._closed = False
        # One bound method so unsubscribe matches by identity
        self._handler = self._on_event

    @property
    def job_id(self) -> UUID:
        return self._job_id

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def stream_events(
        self,
        *,
        idle_timeout: float | None = None,
    ) -> AsyncIterator[JobEvent]:
        """
        Stream the job's events as they are published.

        The subscriber is registered when this is called, not on the first
        iteration, so events published in between are not lost.

        Args:
            idle_timeout: Seconds to wait for the next event before the
                stream ends; None waits indefinitely.

        Yields:
            JobEvent: Every event of the job, in publication order.

        Raises:
            ValueError: If idle_timeout is <= 0.
            RuntimeError: If the streamer has been closed.
        """
        if idle_timeout is not None and idle_timeout <= 0:
            raise ValueError(f"idle_timeout must be > 0, got {idle_timeout}")
        if self._closed:
            raise RuntimeError("JobEventStreamer has been closed")

        subscriber_id, queue = self._register_subscriber()
        return self._iterate(subscriber_id, queue, idle_timeout)

    async def _iterate(
        self,
        subscriber_id: int,
        queue: asyncio.Queue[JobEvent | None],
        idle_timeout: float | None,
    ) -> AsyncIterator[JobEvent]:
        with self._tracer.span(
            "supaclone.status_streamer.stream_events",
            {ATTR_JOB_ID: str(self._job_id)},
        ):
            try:
                while not (self._closed and queue.empty()):
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=idle_timeout)
                    except TimeoutError:
                        logger.debug(
                            "No events for job %s within %.1fs, ending stream",
                            self._job_id,
                            idle_timeout,
                        )
                        return

                    if event is None:
                        return

                    yield event

                    if is_terminal_event(event):
                        logger.info(
                            "Job %s reached %s, stopping stream",
                            self._job_id,
                            event.event_type,
                            extra={"job_id": str(self._job_id)},
                        )
                        return
            finally:
                self._unregister_subscriber(subscriber_id)

    async def close(self) -> None:
        """
        Close the streamer.

        Every active stream_events() iterator ends after the events already
        queued for it.
        """
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers.values():
            self._offer(queue, None)
        self._detach()
        logger.debug("Event streamer closed for job %s", self._job_id)

    async def _on_event(self, event: JobEvent) -> None:
        if event.job_id != self._job_id:
            return
        for queue in list(self._subscribers.values()):
            self._offer(queue, event)

    def _offer(self, queue: asyncio.Queue[JobEvent | None], event: JobEvent | None) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Dropping event for job %s: subscriber queue is full",
                self._job_id,
                extra={"job_id": str(self._job_id)},
            )

    def _register_subscriber(self) -> tuple[int, asyncio.Queue[JobEvent | None]]:
        subscriber_id = self._next_subscriber_id
        self._next_subscriber_id += 1
        queue: asyncio.Queue[JobEvent | None] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue

        if not self._subscribed:
            self._event_bus.subscribe_to_all_events(self._handler)
            self._subscribed = True

        logger.debug(
            "Registered subscriber %d for job %s (total: %d)",
            subscriber_id,
            self._job_id,
            len(self._subscribers),
        )
        return subscriber_id, queue

    def _unregister_subscriber(self, subscriber_id: int) -> None:
        self._subscribers.pop(subscriber_id, None)
        if not self._subscribers:
            self._detach()

    def _detach(self) -> None:
        if self._subscribed:
            self._event_bus.unsubscribe_from_all_events(self._handler)
            self._subscribed = False


__all__ = [
    "JobEventStreamer",
    "TERMINAL_EVENTS",
    "is_terminal_event",
]
