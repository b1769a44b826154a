"""Ports for the relay core.

These interfaces keep the core independent of the transport (XMPP), the
language-model backend, and cursor persistence.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol, Sequence

from parley.core.models import ConversationMessage, Event, Identity


class TransportPort(Protocol):
    identity: Identity

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def stream_events(self, cursor: str | None = None) -> AsyncIterator[Event]:
        """Yield live events until the stream ends by raising."""
        ...

    def resume_token(self) -> str: ...

    async def send(self, room_id: str, text: str) -> None: ...

    async def set_typing(self, room_id: str, typing: bool, timeout_ms: int) -> None: ...

    async def join(self, room_id: str) -> None: ...

    async def invite(self, room_id: str, user_id: str) -> None: ...

    async def create_room(
        self,
        name: str,
        topic: str,
        invitees: Sequence[str],
        is_direct: bool,
    ) -> str: ...

    async def fetch_history(self, room_id: str, count: int) -> list[Event]:
        """Return up to ``count`` message events, newest first."""
        ...

    async def fetch_membership(self, room_id: str) -> int: ...

    async def joined_rooms(self) -> list[str]: ...


class GeneratorPort(Protocol):
    async def generate(self, context: Sequence[ConversationMessage]) -> str: ...


class CursorStorePort(Protocol):
    def load(self) -> str: ...

    def save(self, token: str) -> None: ...

    def clear(self) -> None: ...
