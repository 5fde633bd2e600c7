"""
Unit tests for InMemoryEventBus and HandlerAdapter.
"""

import asyncio
from uuid import uuid4

import pytest

from supaclone.bus import HandlerAdapter, InMemoryEventBus, get_handler_name
from supaclone.events import JobEvent, JobFailed, PhaseStarted

# =============================================================================
# Test Event Classes
# =============================================================================


class SampleEvent(JobEvent):
    """Test event for bus tests."""

    value: int = 0


class DerivedEvent(SampleEvent):
    """Subclass of SampleEvent for subtype dispatch tests."""


class RecordingHandler:
    """Object-style handler with an async handle() method."""

    def __init__(self) -> None:
        self.events: list[JobEvent] = []

    async def handle(self, event: JobEvent) -> None:
        self.events.append(event)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def bus() -> InMemoryEventBus:
    """Create a fresh event bus for testing."""
    return InMemoryEventBus(enable_tracing=False)


# =============================================================================
# HandlerAdapter
# =============================================================================


class TestHandlerAdapter:
    """Tests for HandlerAdapter."""

    @pytest.mark.asyncio
    async def test_sync_function(self) -> None:
        received: list[JobEvent] = []
        event = SampleEvent()

        await HandlerAdapter(received.append).handle(event)

        assert received == [event]

    @pytest.mark.asyncio
    async def test_object_with_handle(self) -> None:
        handler = RecordingHandler()
        event = SampleEvent()

        await HandlerAdapter(handler).handle(event)

        assert handler.events == [event]

    @pytest.mark.asyncio
    async def test_sync_callable_returning_coroutine(self) -> None:
        handler = RecordingHandler()
        event = SampleEvent()

        await HandlerAdapter(lambda e: handler.handle(e)).handle(event)

        assert handler.events == [event]

    def test_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError, match="handle\\(\\) method or be callable"):
            HandlerAdapter(42)

    def test_equality_uses_original_identity(self) -> None:
        handler = RecordingHandler()
        adapter = HandlerAdapter(handler)

        assert adapter == handler
        assert adapter == HandlerAdapter(handler)
        assert adapter != RecordingHandler()
        assert hash(adapter) == hash(HandlerAdapter(handler))

    def test_handler_names(self) -> None:
        def on_event(event: JobEvent) -> None:
            pass

        assert get_handler_name(on_event) == "on_event"
        assert get_handler_name(RecordingHandler()) == "RecordingHandler"
        assert get_handler_name(RecordingHandler().handle) == "handle"
        assert repr(HandlerAdapter(on_event)) == "HandlerAdapter(on_event)"


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscriptions:
    """Tests for subscribe/unsubscribe."""

    def test_counts(self, bus: InMemoryEventBus) -> None:
        bus.subscribe(SampleEvent, lambda e: None)
        bus.subscribe(SampleEvent, lambda e: None)
        bus.subscribe(JobFailed, lambda e: None)
        bus.subscribe_to_all_events(lambda e: None)

        assert bus.get_subscriber_count() == 3
        assert bus.get_subscriber_count(SampleEvent) == 2
        assert bus.get_subscriber_count(PhaseStarted) == 0
        assert bus.get_wildcard_subscriber_count() == 1

    def test_unsubscribe(self, bus: InMemoryEventBus) -> None:
        handler = RecordingHandler()
        bus.subscribe(SampleEvent, handler)

        assert bus.unsubscribe(SampleEvent, handler)
        assert not bus.unsubscribe(SampleEvent, handler)
        assert bus.get_subscriber_count(SampleEvent) == 0

    def test_unsubscribe_from_all_events(self, bus: InMemoryEventBus) -> None:
        handler = RecordingHandler()
        bus.subscribe_to_all_events(handler)

        assert bus.unsubscribe_from_all_events(handler)
        assert not bus.unsubscribe_from_all_events(handler)
        assert bus.get_wildcard_subscriber_count() == 0

    def test_clear_subscribers(self, bus: InMemoryEventBus) -> None:
        bus.subscribe(SampleEvent, lambda e: None)
        bus.subscribe_to_all_events(lambda e: None)

        bus.clear_subscribers()

        assert bus.get_subscriber_count() == 0
        assert bus.get_wildcard_subscriber_count() == 0


# =============================================================================
# Publishing
# =============================================================================


class TestPublish:
    """Tests for publish()."""

    @pytest.mark.asyncio
    async def test_dispatch_by_type(self, bus: InMemoryEventBus) -> None:
        sample = RecordingHandler()
        failed = RecordingHandler()
        bus.subscribe(SampleEvent, sample)
        bus.subscribe(JobFailed, failed)

        event = SampleEvent(job_id=uuid4(), value=1)
        await bus.publish([event])

        assert sample.events == [event]
        assert failed.events == []

    @pytest.mark.asyncio
    async def test_subclass_reaches_base_subscribers(self, bus: InMemoryEventBus) -> None:
        handler = RecordingHandler()
        bus.subscribe(SampleEvent, handler)

        await bus.publish([DerivedEvent(value=2)])

        assert [type(e) for e in handler.events] == [DerivedEvent]

    @pytest.mark.asyncio
    async def test_wildcard_receives_everything(self, bus: InMemoryEventBus) -> None:
        handler = RecordingHandler()
        bus.subscribe_to_all_events(handler)

        await bus.publish([SampleEvent(), PhaseStarted(phase="preparation")])

        assert [type(e) for e in handler.events] == [SampleEvent, PhaseStarted]

    @pytest.mark.asyncio
    async def test_empty_publish_is_noop(self, bus: InMemoryEventBus) -> None:
        await bus.publish([])

        assert bus.get_stats()["events_published"] == 0

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(
        self, bus: InMemoryEventBus, caplog: pytest.LogCaptureFixture
    ) -> None:
        def broken(event: JobEvent) -> None:
            raise RuntimeError("handler exploded")

        handler = RecordingHandler()
        bus.subscribe(SampleEvent, broken)
        bus.subscribe(SampleEvent, handler)

        await bus.publish([SampleEvent()])

        assert len(handler.events) == 1
        stats = bus.get_stats()
        assert stats["handler_errors"] == 1
        assert stats["handlers_invoked"] == 1
        assert "handler exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_stats(self, bus: InMemoryEventBus) -> None:
        bus.subscribe_to_all_events(lambda e: None)

        await bus.publish([SampleEvent(), SampleEvent()])

        assert bus.get_stats() == {
            "events_published": 2,
            "handlers_invoked": 2,
            "handler_errors": 0,
            "background_tasks_created": 0,
            "background_tasks_completed": 0,
        }


class TestBackgroundPublish:
    """Tests for publish(background=True), drain() and shutdown()."""

    @pytest.mark.asyncio
    async def test_background_publishes_keep_order(self, bus: InMemoryEventBus) -> None:
        received: list[int] = []

        async def slow_first(event: JobEvent) -> None:
            if isinstance(event, SampleEvent) and event.value == 0:
                await asyncio.sleep(0.02)
            received.append(event.value)  # type: ignore[attr-defined]

        bus.subscribe(SampleEvent, slow_first)

        for value in range(3):
            await bus.publish([SampleEvent(value=value)], background=True)
        await bus.drain()

        assert received == [0, 1, 2]
        assert bus.get_background_task_count() == 0
        stats = bus.get_stats()
        assert stats["background_tasks_created"] == 3
        assert stats["background_tasks_completed"] == 3

    @pytest.mark.asyncio
    async def test_publisher_does_not_wait(self, bus: InMemoryEventBus) -> None:
        release = asyncio.Event()
        handler = RecordingHandler()

        async def blocked(event: JobEvent) -> None:
            await release.wait()
            await handler.handle(event)

        bus.subscribe(SampleEvent, blocked)

        await bus.publish([SampleEvent()], background=True)
        assert bus.get_background_task_count() == 1
        assert handler.events == []

        release.set()
        await bus.drain()
        assert len(handler.events) == 1

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_tasks(self, bus: InMemoryEventBus) -> None:
        handler = RecordingHandler()
        bus.subscribe(SampleEvent, handler)

        await bus.publish([SampleEvent()], background=True)
        await bus.shutdown(timeout=1.0)

        assert len(handler.events) == 1
        assert bus.get_background_task_count() == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stuck_tasks(self, bus: InMemoryEventBus) -> None:
        async def stuck(event: JobEvent) -> None:
            await asyncio.Event().wait()

        bus.subscribe(SampleEvent, stuck)
        await bus.publish([SampleEvent()], background=True)

        await bus.shutdown(timeout=0.01)
        await asyncio.sleep(0.05)

        assert bus.get_background_task_count() == 0
