"""Per-message reply flow: filter, build context, generate, reply."""

from __future__ import annotations

import logging
import time
from typing import Callable

from parley.core.history import build_context
from parley.core.mentions import is_addressed, strip_mentions
from parley.core.models import (
    ConversationMessage,
    Event,
    Role,
    RoomType,
    is_from_allowed_domain,
    now_ms,
)
from parley.core.ports import GeneratorPort, TransportPort
from parley.errors import HandlerError

log = logging.getLogger("orchestrator")

APOLOGY = "Sorry, I'm having trouble thinking right now."
TYPING_TIMEOUT_MS = 30000


class ReplyOrchestrator:
    def __init__(
        self,
        transport: TransportPort,
        generator: GeneratorPort,
        *,
        allowed_domain: str,
        window_size: int = 10,
        typing_timeout_ms: int = TYPING_TIMEOUT_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.transport = transport
        self.generator = generator
        self.allowed_domain = allowed_domain
        self.window_size = window_size
        self.typing_timeout_ms = typing_timeout_ms
        self._clock = clock

    async def on_event(self, event: Event) -> None:
        """Session-loop handler entry point."""
        await self.handle_message(event.sender_id, event.room_id, event.body)

    async def handle_message(self, sender_id: str, room_id: str, content: str) -> None:
        if not content:
            return

        if not is_from_allowed_domain(sender_id, self.allowed_domain):
            log.info("Ignoring message from non-allowed domain: %s", sender_id)
            return

        try:
            joined = await self.transport.fetch_membership(room_id)
        except Exception as exc:
            raise HandlerError(f"error determining room type for {room_id}: {exc}") from exc
        room_type = RoomType.from_member_count(joined)

        identity = self.transport.identity
        if not is_addressed(content, room_type, identity):
            return

        text = content
        if room_type is RoomType.GROUP:
            text = strip_mentions(content, identity)
        if not text:
            return

        timestamp = self._clock()
        try:
            context = await build_context(
                room_id,
                sender_id,
                text,
                timestamp,
                self.transport.fetch_history,
                self.window_size,
                identity=identity,
                room_type=room_type,
            )
        except Exception as exc:
            log.warning("Error getting conversation context: %s", exc)
            context = [
                ConversationMessage(
                    role=Role.USER,
                    content=text,
                    timestamp=timestamp,
                    sender_id=sender_id,
                )
            ]

        await self._set_typing(room_id, True)
        log.info("Generating response for message in %s", room_id)
        started = time.monotonic()
        try:
            reply = await self.generator.generate(context)
        except Exception as exc:
            log.error("Error generating response: %s", exc)
            await self._set_typing(room_id, False)
            try:
                await self.transport.send(room_id, APOLOGY)
            except Exception as send_exc:
                log.error("Error sending apology: %s", send_exc)
            raise HandlerError(f"error generating response: {exc}") from exc

        log.info(
            "Generated response for %s in %.1fs", room_id, time.monotonic() - started
        )
        await self._set_typing(room_id, False)

        try:
            await self.transport.send(room_id, reply)
        except Exception as exc:
            raise HandlerError(f"error sending response to {room_id}: {exc}") from exc
        log.info("Response sent to %s", room_id)

    async def _set_typing(self, room_id: str, typing: bool) -> None:
        timeout = self.typing_timeout_ms if typing else 0
        try:
            await self.transport.set_typing(room_id, typing, timeout)
        except Exception as exc:
            log.warning("Error updating typing notification in %s: %s", room_id, exc)
