"""Caller-facing output channel for one chat session.

The orchestrator emits events; the transport consumes them through
``StreamSession.events()``. Ordering is the order of ``emit`` calls, ``end``
is always the last event delivered, and nothing is accepted after it.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import AsyncIterator

from loguru import logger

from billbot.config import settings
from billbot.models.events import StreamEvent
from billbot.services import logger as log_service

_CLOSED = object()


class StreamSession:
    def __init__(self, connection_id: str, *, buffer_size: int | None = None):
        self.connection_id = connection_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size or settings.stream_buffer_size)
        self._open = True
        self._ended = False
        self._disconnected = False
        self._last_timestamp = 0
        self.created_at = time.monotonic()
        self.last_activity = self.created_at
        self.events_count = 0
        self.dropped_count = 0
        log_service.log_stream_event(connection_id, "connection_created")

    def is_open(self) -> bool:
        return self._open

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def _next_timestamp(self) -> int:
        ts = max(int(time.time() * 1000), self._last_timestamp + 1)
        self._last_timestamp = ts
        return ts

    def emit(self, event: StreamEvent) -> bool:
        """Queue ``event`` for the consumer. Returns False when it was dropped."""
        if not self._open or self._ended:
            self.dropped_count += 1
            logger.warning(
                f"Dropping {event.event.value} event for {'ended' if self._ended else 'closed'} "
                f"connection {self.connection_id}"
            )
            return False

        stamped = replace(event, timestamp=self._next_timestamp())
        try:
            self._queue.put_nowait(stamped)
        except asyncio.QueueFull:
            self.dropped_count += 1
            logger.warning(
                f"Consumer for connection {self.connection_id} stopped draining; closing stream"
            )
            self.mark_disconnected()
            return False

        self.events_count += 1
        self.last_activity = time.monotonic()
        if stamped.is_terminal:
            self._ended = True
        log_service.log_stream_event(self.connection_id, "event_sent", type=stamped.event.value)
        return True

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # The consumer still has items to drain and stops once the queue is empty.
            pass
        log_service.log_stream_event(
            self.connection_id,
            "connection_closed",
            events_count=self.events_count,
            dropped_count=self.dropped_count,
        )

    def mark_disconnected(self) -> None:
        """Transport-side close: the consumer is gone, pending events are discarded."""
        if self._disconnected:
            return
        self._disconnected = True
        while not self._queue.empty():
            self._queue.get_nowait()
        log_service.log_stream_event(self.connection_id, "client_disconnected")
        self.close()

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            if not self._open and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if item.is_terminal:
                return
