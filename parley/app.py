"""Application wiring: builds the relay components and runs them."""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import suppress

from parley.config import RelayConfig
from parley.core.orchestrator import ReplyOrchestrator
from parley.core.session import SessionLoop
from parley.cursor import CursorStore
from parley.errors import TransportConnectionError
from parley.generation import AnthropicGenerator
from parley.rooms import invite_user, join_room
from parley.watcher import RoomWatcher
from parley.xmpp import XMPPTransport

log = logging.getLogger("app")

SHUTDOWN_TIMEOUT_S = 10.0
READY_TIMEOUT_S = 30.0


class RelayApp:
    """Owns the transport, generator, cursor store, session loop and watcher."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        transport=None,
        generator=None,
        cursor_store=None,
    ):
        self.config = config
        self._transport = transport
        self.generator = generator or AnthropicGenerator(
            config.api_key, model=config.model, max_tokens=config.max_tokens
        )
        self.cursor_store = cursor_store or CursorStore(config.cursor_file)
        self.session: SessionLoop | None = None
        self.watcher: RoomWatcher | None = None
        self._shutdown = asyncio.Event()

    @property
    def transport(self):
        # slixmpp clients bind to the running loop, so build lazily.
        if self._transport is None:
            cfg = self.config
            self._transport = XMPPTransport(
                cfg.jid,
                cfg.password,
                server=cfg.server,
                port=cfg.port,
                plaintext=cfg.plaintext,
                muc_service=cfg.muc_service,
            )
        return self._transport

    def request_shutdown(self) -> None:
        if not self._shutdown.is_set():
            log.info("Shutting down gracefully...")
        self._shutdown.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_shutdown)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)

    # -------------------------------------------------------------------------
    # Normal mode
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Run until a shutdown signal or a terminal authentication error."""
        cfg = self.config
        transport = self.transport
        orchestrator = ReplyOrchestrator(
            transport,
            self.generator,
            allowed_domain=cfg.allowed_domain,
            window_size=cfg.context_message_count,
        )
        self.session = SessionLoop(
            transport,
            self.cursor_store,
            orchestrator.on_event,
            max_concurrent_handlers=cfg.max_concurrent_handlers or None,
        )
        self.watcher = RoomWatcher(transport, owner_id=cfg.owner_jid)

        self._install_signal_handlers()
        session_task = asyncio.create_task(self.session.run())
        watcher_task = asyncio.create_task(self.watcher.run())
        stop_task = asyncio.create_task(self._shutdown.wait())
        log.info(
            "Assistant is running as %s and will accept room invitations. "
            "Press Ctrl+C to exit.",
            transport.identity.user_id,
        )

        try:
            await asyncio.wait(
                {session_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_task.cancel()
            self._remove_signal_handlers()
            await self._stop(session_task, watcher_task)

        if session_task.done() and not session_task.cancelled():
            # Re-raises a terminal error such as AuthenticationError.
            session_task.result()

    async def _stop(self, session_task: asyncio.Task, watcher_task: asyncio.Task) -> None:
        assert self.session is not None and self.watcher is not None
        self.session.stop()
        self.watcher.stop()
        if not session_task.done():
            session_task.cancel()
        self.session.cancel_handlers()

        async def _cleanup() -> None:
            await asyncio.gather(session_task, watcher_task, return_exceptions=True)
            await self.session.drain()
            try:
                await self.transport.disconnect()
            except TransportConnectionError as e:
                log.warning("Error during disconnect: %s", e)

        try:
            await asyncio.wait_for(_cleanup(), timeout=SHUTDOWN_TIMEOUT_S)
        except asyncio.TimeoutError:
            log.warning("Shutdown timed out, forcing exit")
            return
        log.info("Relay stopped")

    # -------------------------------------------------------------------------
    # One-shot commands
    # -------------------------------------------------------------------------

    async def _connect(self) -> None:
        transport = self.transport
        await transport.connect()
        if not await transport.wait_ready(READY_TIMEOUT_S):
            raise TransportConnectionError(
                f"timed out connecting to {self.config.server}:{self.config.port}"
            )

    async def join_room(self, room_id: str) -> None:
        await self._connect()
        try:
            await join_room(self.transport, room_id)
        finally:
            await self.transport.disconnect()

    async def invite_user(
        self, user_id: str, room_id: str | None = None, create_room: bool = False
    ) -> str:
        await self._connect()
        try:
            return await invite_user(
                self.transport, user_id, room_id=room_id, create_room=create_room
            )
        finally:
            await self.transport.disconnect()

    async def run_debug(self) -> None:
        cfg = self.config
        log.info("Relay diagnostic information:")
        log.info("  Configuration:")
        log.info("    XMPP server: %s:%s", cfg.server, cfg.port)
        log.info("    XMPP JID: %s", cfg.jid)
        log.info("    TLS: %s", "disabled" if cfg.plaintext else "enabled")
        log.info("    MUC service: %s", cfg.muc_service)
        log.info("    Allowed domain: %s", cfg.allowed_domain)
        log.info("    Context message count: %d", cfg.context_message_count)
        log.info("    Model: %s", cfg.model)
        log.info("    API key: %s", cfg.masked_api_key)

        log.info("Attempting to connect to %s...", cfg.server)
        try:
            await self._connect()
        except Exception as e:
            log.error("Failed to connect: %s", e)
            raise
        log.info("Successfully connected")
        try:
            log.info("Assistant JID: %s", self.transport.identity.user_id)
            rooms = await self.transport.joined_rooms()
            log.info("Joined rooms: %d", len(rooms))
            for room in rooms:
                log.info("  %s", room)
        finally:
            log.info("Disconnecting...")
            try:
                await self.transport.disconnect()
            except TransportConnectionError as e:
                log.warning("Error during disconnect: %s", e)
            else:
                log.info("Successfully disconnected")

        log.info("Debugging complete. If you're still having issues:")
        log.info("1. Try joining a room directly with: parley join room@%s", cfg.muc_service)
        log.info("2. Try inviting a user with: parley invite user@%s --create", cfg.domain)
        log.info("3. Check the XMPP server logs if possible")
        log.info("4. Make sure the server has MUC and message archiving enabled")
        log.info(
            "5. Group rooms must expose real JIDs to the assistant (non-anonymous);"
            " occupants seen only by nickname are never answered"
        )
