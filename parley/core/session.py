"""Long-running event session.

Consumes the transport's live event stream, drops stale and already-seen
events, and hands each qualifying message to the handler as its own task.
When the stream ends it either reconnects after a fixed delay or, on an
authentication failure, clears the resumption cursor and stops.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from parley.core.models import Event, Identity, SessionState
from parley.core.ports import CursorStorePort, TransportPort
from parley.errors import AuthenticationError, is_auth_failure

log = logging.getLogger("session")

EventHandler = Callable[[Event], Awaitable[None]]

RECONNECT_DELAY_S = 5.0


class SessionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    STREAMING = "streaming"
    RECONNECT_BACKOFF = "reconnect-backoff"
    TERMINAL = "terminal"


class SessionLoop:
    """Stream-consumption loop with a single writer for ``SessionState``."""

    def __init__(
        self,
        transport: TransportPort,
        cursor_store: CursorStorePort,
        handler: EventHandler,
        *,
        state: SessionState | None = None,
        reconnect_delay_s: float = RECONNECT_DELAY_S,
        max_concurrent_handlers: int | None = None,
    ):
        self.transport = transport
        self.cursor_store = cursor_store
        self.handler = handler
        self.reconnect_delay_s = reconnect_delay_s
        self.state = state or SessionState()
        self.status = SessionStatus.DISCONNECTED

        self._stopping = asyncio.Event()
        self._tasks: set[asyncio.Task] = set()
        self._limit = (
            asyncio.Semaphore(max_concurrent_handlers)
            if max_concurrent_handlers
            else None
        )

    @property
    def identity(self) -> Identity:
        return self.transport.identity

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the loop to finish before its next reconnect attempt."""
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self) -> None:
        """Run until stopped; raise ``AuthenticationError`` on bad credentials."""
        if not self.state.cursor:
            self.state.cursor = self.cursor_store.load()
            if self.state.cursor:
                log.info("Loaded resumption cursor: %s", self.state.cursor)

        self.status = SessionStatus.AUTHENTICATING
        try:
            await self.transport.connect()
        except Exception as exc:
            if is_auth_failure(exc):
                self._fail_auth(exc)
            self.status = SessionStatus.DISCONNECTED
            raise

        while not self.stopping:
            self.status = SessionStatus.STREAMING
            log.info("Starting event stream")
            error: Exception | None = None
            try:
                async for event in self.transport.stream_events(self.state.cursor or None):
                    self.on_event(event)
            except asyncio.CancelledError:
                self.status = SessionStatus.DISCONNECTED
                raise
            except Exception as exc:
                error = exc

            if error is not None and is_auth_failure(error):
                self._fail_auth(error)

            self._persist_cursor()

            if self.stopping:
                break

            if error is not None:
                log.warning(
                    "Stream error: %s - retrying in %ss", error, self.reconnect_delay_s
                )
            else:
                log.warning(
                    "Stream ended without error - retrying in %ss",
                    self.reconnect_delay_s,
                )

            self.status = SessionStatus.RECONNECT_BACKOFF
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self.reconnect_delay_s
                )
            except asyncio.TimeoutError:
                pass

        self.status = SessionStatus.DISCONNECTED
        log.info("Event stream stopped")

    async def drain(self) -> None:
        """Wait for in-flight handler tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_handlers(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    # -------------------------------------------------------------------------
    # Event path
    # -------------------------------------------------------------------------

    def admit(self, event: Event) -> bool:
        """Apply the startup and watermark filters, advancing the watermark."""
        ts = event.timestamp
        if ts > 0 and ts < self.state.startup_time:
            return False
        if ts > 0 and ts <= self.state.last_processed_time:
            return False
        if ts > 0:
            self.state.last_processed_time = ts
        return True

    def on_event(self, event: Event) -> None:
        if not self.admit(event):
            return

        user_id = self.identity.user_id
        if event.is_invite_for(user_id):
            log.info("Invite to %s from %s", event.room_id, event.sender_id)
            self._spawn(self._accept_invite(event.room_id), context="invite")

        if not event.is_message:
            return
        if event.sender_id == user_id:
            return

        log.info(
            "Processing message from %s in %s (timestamp: %d)",
            event.sender_id,
            event.room_id,
            event.timestamp,
        )
        self._spawn(self._dispatch(event), context="message")

    async def _accept_invite(self, room_id: str) -> None:
        try:
            await self.transport.join(room_id)
        except Exception as exc:
            log.warning("Failed to join %s: %s", room_id, exc)
            return
        log.info("Joined %s", room_id)

    async def _dispatch(self, event: Event) -> None:
        if self._limit is None:
            await self.handler(event)
            return
        async with self._limit:
            await self.handler(event)

    async def _guard(self, coro: Awaitable[None], *, context: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Unhandled error (%s)", context)

    def _spawn(self, coro: Awaitable[None], *, context: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(coro, context=context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -------------------------------------------------------------------------
    # Cursor
    # -------------------------------------------------------------------------

    def _persist_cursor(self) -> None:
        token = self.transport.resume_token()
        if not token:
            return
        self.state.cursor = token
        log.info("Saving resumption cursor: %s", token)
        try:
            self.cursor_store.save(token)
        except OSError as exc:
            log.warning("Failed to save resumption cursor: %s", exc)

    def _fail_auth(self, error: Exception) -> None:
        log.error("Authentication error: %s - clearing resumption cursor", error)
        self._clear_cursor()
        self.status = SessionStatus.TERMINAL
        if isinstance(error, AuthenticationError):
            raise error
        raise AuthenticationError(str(error)) from error

    def _clear_cursor(self) -> None:
        self.state.cursor = ""
        try:
            self.cursor_store.clear()
        except OSError as exc:
            log.warning("Failed to clear resumption cursor: %s", exc)
