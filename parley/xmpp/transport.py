"""XMPP implementation of the relay transport.

Room ids are bare JIDs: a MUC room's address for group chats, and the
peer's address for one-to-one chats.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from typing import AsyncIterator, Sequence

from slixmpp import JID
from slixmpp.exceptions import IqError, IqTimeout

from parley.core.models import Event, EventKind, Identity
from parley.errors import (
    AuthenticationError,
    CreateError,
    FetchError,
    InviteError,
    JoinError,
    SendError,
    StreamError,
    TransportConnectionError,
)
from parley.xmpp.bot import RelayBot, stamp_to_ms
from parley.xmpp.typing import TypingIndicator

log = logging.getLogger("transport")

CONNECT_PROBE_S = 5.0
RECONNECT_TIMEOUT_S = 30.0
JOIN_TIMEOUT_S = 30.0
DISCONNECT_TIMEOUT_S = 5.0
HISTORY_OVERFETCH = 10


def _room_slug(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "room"


class XMPPTransport:
    def __init__(
        self,
        jid: str,
        password: str,
        *,
        server: str,
        port: int = 5222,
        plaintext: bool = False,
        muc_service: str,
        nick: str | None = None,
    ):
        self.identity = Identity.parse(jid)
        self.server = server
        self.port = port
        self.plaintext = plaintext
        self.muc_service = muc_service
        self.bot = RelayBot(
            self.identity.user_id, password, nick=nick or self.identity.localpart
        )
        self._cursor = ""
        self._typing: dict[str, TypingIndicator] = {}
        self._typing_holders: dict[str, int] = {}  # room -> handlers still typing

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start connecting and wait briefly for the session to come up."""
        self.bot.closing = False
        try:
            self.bot.connect_to_server(self.server, self.port, plaintext=self.plaintext)
        except OSError as e:
            raise TransportConnectionError(f"failed to connect to {self.server}: {e}") from e
        ready = await self.bot.wait_ready(CONNECT_PROBE_S)
        if self.bot.auth_failed:
            raise AuthenticationError("not-authorized")
        if not ready:
            log.warning(
                "Connection to %s:%s still pending after %.0fs; continuing in background",
                self.server,
                self.port,
                CONNECT_PROBE_S,
            )

    async def wait_ready(self, timeout: float = RECONNECT_TIMEOUT_S) -> bool:
        ready = await self.bot.wait_ready(timeout)
        if self.bot.auth_failed:
            raise AuthenticationError("not-authorized")
        return ready

    async def disconnect(self) -> None:
        self.bot.closing = True
        for indicator in self._typing.values():
            indicator.stop(notify=False)
        self._typing.clear()
        self._typing_holders.clear()
        if self.bot.is_disconnected():
            return
        try:
            self.bot.disconnect()
        except Exception as e:
            raise TransportConnectionError(f"error disconnecting: {e}") from e
        if not await self.bot.wait_disconnected(DISCONNECT_TIMEOUT_S):
            log.warning("Timed out waiting for disconnect")

    async def _ensure_session(self) -> None:
        if self.bot.is_connected():
            return
        if self.bot.auth_failed:
            raise AuthenticationError("not-authorized")
        if self.bot.closing:
            raise StreamError("transport is closed")
        if self.bot.is_disconnected():
            log.info("Reconnecting to %s:%s", self.server, self.port)
            try:
                self.bot.connect_to_server(
                    self.server, self.port, plaintext=self.plaintext
                )
            except OSError as e:
                raise StreamError(f"reconnect failed: {e}") from e
        if not await self.bot.wait_ready(RECONNECT_TIMEOUT_S):
            if self.bot.auth_failed:
                raise AuthenticationError("not-authorized")
            raise StreamError("timed out waiting for session start")

    # -------------------------------------------------------------------------
    # Event stream
    # -------------------------------------------------------------------------

    def resume_token(self) -> str:
        return self.bot.last_stanza_id or self._cursor

    async def stream_events(self, cursor: str | None = None) -> AsyncIterator[Event]:
        """Yield events until the connection drops or credentials fail."""
        if cursor:
            self._cursor = cursor
        self._drop_stale_failures()
        await self._ensure_session()

        if cursor:
            await self._replay_after(cursor)

        while True:
            item = await self.bot.inbox.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    def _drop_stale_failures(self) -> None:
        # Failures queued while nobody was streaming belong to an older session.
        kept: list[Event | BaseException] = []
        while not self.bot.inbox.empty():
            item = self.bot.inbox.get_nowait()
            if isinstance(item, BaseException) and not isinstance(item, AuthenticationError):
                continue
            kept.append(item)
        for item in kept:
            self.bot.inbox.put_nowait(item)

    async def _replay_after(self, cursor: str) -> None:
        """Queue one-to-one messages archived after ``cursor``."""
        count = 0
        try:
            async for result in self.bot.mam.iterate(rsm={"after": cursor}):
                event = self._archived_event(result, room_id=None)
                if event is None:
                    continue
                archive_id = str(result["mam_result"]["id"] or "")
                if archive_id:
                    self.bot.last_stanza_id = archive_id
                self.bot.inbox.put_nowait(event)
                count += 1
        except (IqError, IqTimeout) as e:
            log.warning("Archive catch-up after %s failed: %s", cursor, e)
            return
        if count:
            log.info("Replayed %d archived message(s) after %s", count, cursor)

    def _archived_event(self, result, *, room_id: str | None) -> Event | None:
        forwarded = result["mam_result"]["forwarded"]
        inner = forwarded["stanza"]
        body = inner["body"] or ""
        if not body:
            return None

        sender = inner["from"]
        own = self.identity.user_id
        if room_id and self._is_group(room_id):
            nick = sender.resource
            if not nick:
                return None
            sender_id = self.bot.occupant_jid(room_id, nick)
        else:
            sender_id = sender.bare
            if room_id is None:
                # Outgoing messages belong to the chat with their recipient.
                room_id = inner["to"].bare if sender_id == own else sender_id
        if not room_id:
            return None

        timestamp = stamp_to_ms(forwarded["delay"]["stamp"]) or self.bot.message_time(inner)
        return Event(
            id=str(result["mam_result"]["id"] or inner["id"] or ""),
            room_id=room_id,
            sender_id=sender_id,
            kind=EventKind.MESSAGE,
            timestamp=timestamp,
            body=body,
        )

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _is_group(self, room_id: str) -> bool:
        return room_id in self.bot.rooms or JID(room_id).domain == self.muc_service

    async def send(self, room_id: str, text: str) -> None:
        try:
            self.bot.send_reply(text, room_id, groupchat=self._is_group(room_id))
        except Exception as e:
            raise SendError(f"failed to send to {room_id}: {e}") from e

    async def set_typing(self, room_id: str, typing: bool, timeout_ms: int) -> None:
        groupchat = self._is_group(room_id)
        indicator = self._typing.get(room_id)
        if not typing:
            holders = self._typing_holders.get(room_id, 0) - 1
            if holders > 0:
                self._typing_holders[room_id] = holders
                return
            self._typing_holders.pop(room_id, None)
            if indicator is not None:
                indicator.stop()
                del self._typing[room_id]
            return
        self._typing_holders[room_id] = self._typing_holders.get(room_id, 0) + 1
        if indicator is None:
            indicator = TypingIndicator(
                send_typing=lambda: self.bot.send_chat_state(
                    room_id, "composing", groupchat=groupchat
                ),
                send_paused=lambda: self.bot.send_chat_state(
                    room_id, "paused", groupchat=groupchat
                ),
                is_shutting_down=lambda: self.bot.closing,
            )
            self._typing[room_id] = indicator
        try:
            indicator.start(timeout_ms / 1000.0)
        except Exception as e:
            raise SendError(f"failed to set typing in {room_id}: {e}") from e

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    async def join(self, room_id: str) -> None:
        room = JID(room_id).bare
        if not self._is_group(room):
            self.bot.chats.add(room)
            return
        nick = self.bot.nick
        try:
            await asyncio.wait_for(
                self.bot.muc.join_muc(room, nick, maxhistory="0"),
                timeout=JOIN_TIMEOUT_S,
            )
        except Exception as e:
            raise JoinError(f"failed to join {room}: {e}") from e
        self.bot.rooms[room] = nick

    async def invite(self, room_id: str, user_id: str) -> None:
        if not self._is_group(room_id):
            raise InviteError(f"{room_id} is not a group room")
        try:
            self.bot.muc.invite(room_id, JID(user_id).bare)
        except Exception as e:
            raise InviteError(f"failed to invite {user_id} to {room_id}: {e}") from e

    async def create_room(
        self,
        name: str,
        topic: str,
        invitees: Sequence[str],
        is_direct: bool,
    ) -> str:
        if is_direct and len(invitees) == 1:
            peer = JID(invitees[0]).bare
            self.bot.chats.add(peer)
            return peer

        room = f"{_room_slug(name)}-{secrets.token_hex(3)}@{self.muc_service}"
        try:
            await self.join(room)
            form = self.bot["xep_0004"].make_form(ftype="submit")
            await self.bot.muc.set_room_config(room, form)
            if topic:
                self.bot.muc.set_subject(room, topic)
        except (JoinError, IqError, IqTimeout) as e:
            raise CreateError(f"failed to create room {room}: {e}") from e

        for user_id in invitees:
            try:
                await self.invite(room, user_id)
            except InviteError as e:
                raise CreateError(str(e)) from e
        log.info("Created room %s", room)
        return room

    async def fetch_history(self, room_id: str, count: int) -> list[Event]:
        if count <= 0:
            return []
        group = self._is_group(room_id)
        query: dict[str, object] = (
            {"jid": JID(room_id)} if group else {"with_jid": JID(room_id)}
        )
        events: list[Event] = []
        try:
            async for result in self.bot.mam.iterate(
                reverse=True, total=count + HISTORY_OVERFETCH, **query
            ):
                event = self._archived_event(result, room_id=room_id)
                if event is not None:
                    events.append(event)
        except (IqError, IqTimeout) as e:
            raise FetchError(f"failed to fetch history for {room_id}: {e}") from e
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:count]

    async def fetch_membership(self, room_id: str) -> int:
        if not self._is_group(room_id):
            return 2
        if room_id not in self.bot.rooms:
            raise FetchError(f"not joined to {room_id}")
        try:
            roster = self.bot.muc.get_roster(room_id)
        except Exception as e:
            raise FetchError(f"failed to read occupants of {room_id}: {e}") from e
        return len(roster or [])

    async def joined_rooms(self) -> list[str]:
        return sorted(set(self.bot.rooms) | self.bot.chats)
