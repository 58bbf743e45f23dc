from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

from .events import ClientEvent
from .logger import engine_logger

EventSink = Callable[[ClientEvent], Union[Awaitable[Any], Any]]


class ClientEventPublisher:
    """Best-effort ordered push of client events.

    The first failed write closes the publisher and sets ``cancel_event`` so
    the loop stops before its next backend round-trip. Later events are
    dropped silently.
    """

    def __init__(self, sink: EventSink, cancel_event: asyncio.Event | None = None) -> None:
        self._sink = sink
        self.cancel_event = cancel_event or asyncio.Event()
        self.closed = False
        self.published = 0
        self.dropped = 0

    async def publish(self, event: ClientEvent) -> bool:
        if self.closed:
            self.dropped += 1
            return False
        try:
            outcome = self._sink(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            self.closed = True
            self.dropped += 1
            self.cancel_event.set()
            engine_logger.warning("Client stream write failed; closing publisher", event_type=event.type.value, error=str(exc))
            return False
        self.published += 1
        return True
