from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from billbot.config import settings
from billbot.errors import ValidationError
from billbot.models.session import SearchSession
from billbot.services.stream_session import StreamSession

FINISHED_HISTORY = 200


@dataclass
class SessionHandle:
    session_id: str
    connection_id: str
    stream: StreamSession
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    created_at: float = field(default_factory=time.monotonic)
    stop_reason: str | None = None
    search_session: SearchSession | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def request_stop(self, reason: str = "user_abort") -> None:
        if self.stop_reason is None:
            self.stop_reason = reason
        self.cancel_event.set()


class SessionRegistry:
    """Active sessions by id. Mutations happen under one lock."""

    def __init__(
        self,
        *,
        sweep_interval: float | None = None,
        stale_after: float | None = None,
        buffer_size: int | None = None,
    ):
        self.sweep_interval = sweep_interval or settings.stream_sweep_interval_seconds
        self.stale_after = stale_after or settings.stream_stale_after_seconds
        self.buffer_size = buffer_size
        self._sessions: dict[str, SessionHandle] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None
        self._finished: OrderedDict[str, SearchSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> SessionHandle | None:
        return self._sessions.get(session_id)

    def find_connection(self, connection_id: str) -> SessionHandle | None:
        for handle in self._sessions.values():
            if handle.connection_id == connection_id:
                return handle
        return None

    def active_session_ids(self) -> list[str]:
        return [sid for sid, h in self._sessions.items() if h.stream.is_open()]

    async def create(self, session_id: str, connection_id: str) -> SessionHandle:
        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None and existing.stream.is_open():
                raise ValidationError(f"Session {session_id} is already active", field="session_id")

            # A reconnect on the same connection id replaces the old stream.
            for sid, handle in list(self._sessions.items()):
                if handle.connection_id == connection_id:
                    handle.request_stop("disconnected")
                    handle.stream.close()
                    del self._sessions[sid]

            handle = SessionHandle(
                session_id=session_id,
                connection_id=connection_id,
                stream=StreamSession(connection_id, buffer_size=self.buffer_size),
            )
            self._sessions[session_id] = handle
            return handle

    def finished(self, session_id: str) -> SearchSession | None:
        """Record of a recently finished session, if still remembered."""
        return self._finished.get(session_id)

    async def remove(self, session_id: str, handle: SessionHandle | None = None) -> None:
        """Drop a session. With ``handle``, only that exact session is dropped.

        A reconnect may reuse the session id; the finished run must not evict its successor.
        """
        async with self._lock:
            current = self._sessions.get(session_id)
            if current is not None and (handle is None or current is handle):
                del self._sessions[session_id]
                handle = current
            if handle is not None and handle.search_session is not None:
                self._finished[session_id] = handle.search_session
                while len(self._finished) > FINISHED_HISTORY:
                    self._finished.popitem(last=False)
        if handle is not None:
            handle.stream.close()

    async def request_stop(self, session_id: str | None, connection_id: str | None = None) -> bool:
        """Signal cancellation. Unknown or finished sessions are not an error."""
        async with self._lock:
            handle = self._sessions.get(session_id) if session_id else None
            if handle is None and connection_id:
                handle = self.find_connection(connection_id)
            if handle is None:
                return False
            if connection_id and handle.connection_id != connection_id:
                return False
            handle.request_stop("user_abort")
        logger.info(f"Stop requested for session {handle.session_id}")
        return True

    async def sweep_stale(self, now: float | None = None) -> list[str]:
        now = now if now is not None else time.monotonic()
        async with self._lock:
            stale = [
                handle
                for handle in self._sessions.values()
                if handle.stream.idle_seconds(now) > self.stale_after
            ]
            for handle in stale:
                del self._sessions[handle.session_id]
        for handle in stale:
            logger.warning(
                f"Cleaning up stale session {handle.session_id} "
                f"(connection {handle.connection_id}, {handle.stream.events_count} events)"
            )
            handle.request_stop("disconnected")
            handle.stream.close()
        return [h.session_id for h in stale]

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_stale()
            except Exception as exc:
                logger.exception(f"Stale session sweep failed: {exc}")

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def close_all(self) -> None:
        async with self._lock:
            handles = list(self._sessions.values())
            self._sessions.clear()
        for handle in handles:
            handle.request_stop("disconnected")
            handle.stream.close()

    def stats(self, now: float | None = None) -> dict[str, Any]:
        now = now if now is not None else time.monotonic()
        by_age = {"under_1min": 0, "1_5min": 0, "5_10min": 0, "over_10min": 0}
        for handle in self._sessions.values():
            age_minutes = (now - handle.stream.created_at) / 60
            if age_minutes < 1:
                by_age["under_1min"] += 1
            elif age_minutes < 5:
                by_age["1_5min"] += 1
            elif age_minutes < 10:
                by_age["5_10min"] += 1
            else:
                by_age["over_10min"] += 1
        return {
            "active_connections": len(self.active_session_ids()),
            "total_events_streamed": sum(h.stream.events_count for h in self._sessions.values()),
            "connections_by_age": by_age,
        }
