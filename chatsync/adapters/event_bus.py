"""Async event bus bridging session actor callbacks to UI consumers.

Publishing never blocks: the engine publishes from synchronous
subscription callbacks, so a full queue drops the event with an error
log instead of applying backpressure.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from chatsync.adapters.events import SessionEvent

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging engine events to UI event consumers."""

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue(
            maxsize=maxsize
        )
        self._closed = False

    def publish(self, event: SessionEvent) -> None:
        """Queue an event without waiting."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "EventBus queue full, dropping: %s (queue size: %d)",
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[SessionEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(
                    self._queue.get(), timeout=0.5
                )
                yield event
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    def drain(self) -> list[SessionEvent]:
        """Remove and return every queued event."""
        events: list[SessionEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
