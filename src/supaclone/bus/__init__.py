"""
Event bus for supaclone job events.

Example:
    >>> from supaclone.bus import InMemoryEventBus
    >>> from supaclone.events import JobFailed
    >>>
    >>> bus = InMemoryEventBus()
    >>> bus.subscribe(JobFailed, page_operator)
"""

from supaclone.bus.adapter import HandlerAdapter, get_handler_name
from supaclone.bus.interface import EventBus, EventHandler, EventHandlerFunc
from supaclone.bus.memory import InMemoryEventBus

__all__ = [
    "EventBus",
    "EventHandler",
    "EventHandlerFunc",
    "HandlerAdapter",
    "InMemoryEventBus",
    "get_handler_name",
]
