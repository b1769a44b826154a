"""Slixmpp client used by the relay transport.

The bot only turns stanzas into ``Event`` objects and pushes them onto an
inbox queue; the transport drains that queue for the session loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, cast

from slixmpp import JID
from slixmpp.clientxmpp import ClientXMPP

from parley.core.models import Event, EventKind, now_ms
from parley.errors import AuthenticationError, StreamError

DELAY_NS = "urn:xmpp:delay"
MUC_USER_NS = "http://jabber.org/protocol/muc#user"
CONFERENCE_NS = "jabber:x:conference"

STARTUP_TIMEOUT_S = 15


def stamp_to_ms(stamp) -> int:
    if stamp is None:
        return 0
    try:
        return int(stamp.timestamp() * 1000)
    except (AttributeError, OverflowError, ValueError):
        return 0


class RelayBot(ClientXMPP):
    """XMPP client for the relay account.

    Provides:
    - Plugin registration (MUC, invites, archive, stanza ids, chat states)
    - Connection state with waiters for connect, disconnect and auth failure
    - Stanza to event conversion for chat, groupchat and invites
    """

    def __init__(self, jid: str, password: str, *, nick: str):
        super().__init__(jid, password)
        self.nick = nick
        self.log = logging.getLogger("xmpp")
        self.inbox: asyncio.Queue[Event | BaseException] = asyncio.Queue()
        self.closing = False
        self.auth_failed = False
        self.rooms: dict[str, str] = {}  # room jid -> our nick
        self.chats: set[str] = set()
        self.last_stanza_id = ""
        self._last_ts = 0

        self._connected_event = asyncio.Event()
        self._disconnected_event = asyncio.Event()
        self._disconnected_event.set()
        self._failed_event = asyncio.Event()

        self.register_plugin("xep_0004")  # Data Forms
        self.register_plugin("xep_0030")  # Service Discovery
        self.register_plugin("xep_0045")  # Multi-User Chat
        self.register_plugin("xep_0059")  # Result Set Management
        self.register_plugin("xep_0085")  # Chat State Notifications
        self.register_plugin("xep_0199")  # Ping
        self.register_plugin("xep_0203")  # Delayed Delivery
        self.register_plugin("xep_0249")  # Direct MUC Invitations
        self.register_plugin("xep_0313")  # Message Archive Management
        self.register_plugin("xep_0359")  # Unique and Stable Stanza IDs

        self.add_event_handler("session_start", self.on_start)
        self.add_event_handler("failed_auth", self.on_failed_auth)
        self.add_event_handler("disconnected", self.on_disconnected)
        self.add_event_handler("message", self.on_message)
        self.add_event_handler("groupchat_direct_invite", self.on_direct_invite)
        self.add_event_handler("groupchat_invite", self.on_mediated_invite)

    @property
    def muc(self) -> Any:
        return cast(Any, self["xep_0045"])

    @property
    def mam(self) -> Any:
        return cast(Any, self["xep_0313"])

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    def connect_to_server(self, server: str, port: int = 5222, *, plaintext: bool = False):
        """Connect; ``plaintext`` disables TLS for local test servers."""
        self.auth_failed = False
        self._failed_event.clear()
        self._disconnected_event.clear()
        if plaintext:
            self["feature_mechanisms"].unencrypted_plain = True  # type: ignore[attr-defined]
            self.enable_starttls = False
            self.enable_direct_tls = False
            self.enable_plaintext = True
        # slixmpp.ClientXMPP.connect expects a single address tuple.
        self.connect((server, port))  # type: ignore[arg-type]

    def set_connected(self, connected: bool) -> None:
        if connected:
            self._connected_event.set()
            self._disconnected_event.clear()
        else:
            self._connected_event.clear()
            self._disconnected_event.set()

    def is_connected(self) -> bool:
        return self._connected_event.is_set()

    def is_disconnected(self) -> bool:
        """True when no connection attempt is in flight."""
        return self._disconnected_event.is_set()

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait for session start or an auth failure; True once connected."""
        waiters = [
            asyncio.ensure_future(self._connected_event.wait()),
            asyncio.ensure_future(self._failed_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.is_connected() and not self.auth_failed

    async def wait_disconnected(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._disconnected_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # -------------------------------------------------------------------------
    # XMPP lifecycle
    # -------------------------------------------------------------------------

    async def on_start(self, event):
        self.send_presence()
        try:
            await asyncio.wait_for(self.get_roster(), timeout=STARTUP_TIMEOUT_S)
        except asyncio.TimeoutError:
            self.log.warning("Roster request timed out")
        for room, nick in list(self.rooms.items()):
            try:
                await asyncio.wait_for(
                    self.muc.join_muc(room, nick, maxhistory="0"),
                    timeout=STARTUP_TIMEOUT_S,
                )
            except Exception as e:
                self.log.warning("Failed to rejoin %s: %s", room, e)
        self.log.info("Connected as %s", self.boundjid.bare)
        self.set_connected(True)

    def on_failed_auth(self, event):
        self.log.error("Authentication failed for %s", self.boundjid.bare)
        self.auth_failed = True
        self._failed_event.set()
        self.inbox.put_nowait(AuthenticationError("not-authorized"))
        self.disconnect()

    def on_disconnected(self, event):
        self.set_connected(False)
        if self.closing or self.auth_failed:
            return
        reason = str(event or "").strip() or "connection closed"
        self.log.warning("Disconnected: %s", reason)
        self.inbox.put_nowait(StreamError(f"disconnected: {reason}"))

    # -------------------------------------------------------------------------
    # Inbound stanzas
    # -------------------------------------------------------------------------

    def on_message(self, msg):
        mtype = msg["type"]
        if mtype not in ("chat", "normal", "groupchat"):
            return
        if self._is_invite(msg):
            return
        body = msg["body"] or ""
        if not body:
            return

        sender = msg["from"]
        if mtype == "groupchat":
            room_id = sender.bare
            if room_id not in self.rooms or not sender.resource:
                return
            sender_id = self.occupant_jid(room_id, sender.resource)
        else:
            room_id = sender.bare
            if room_id == self.boundjid.bare:
                return
            sender_id = room_id
            self.chats.add(room_id)
            self._note_stanza_id(msg)

        event = Event(
            id=self._stanza_id(msg) or msg["id"] or "",
            room_id=room_id,
            sender_id=sender_id,
            kind=EventKind.MESSAGE,
            timestamp=self.message_time(msg),
            body=body,
        )
        self.inbox.put_nowait(event)

    def on_direct_invite(self, msg):
        room = str(msg["groupchat_invite"]["jid"] or "")
        self._push_invite(JID(room).bare if room else "", msg["from"].bare, msg["id"])

    def on_mediated_invite(self, msg):
        inviter = ""
        invite = msg.xml.find(f"{{{MUC_USER_NS}}}x/{{{MUC_USER_NS}}}invite")
        if invite is not None:
            inviter = JID(invite.get("from", "")).bare
        self._push_invite(msg["from"].bare, inviter, msg["id"])

    def _push_invite(self, room_id: str, inviter: str, stanza_id: str) -> None:
        if not room_id:
            return
        self.log.info("Invited to %s by %s", room_id, inviter or "unknown")
        self.inbox.put_nowait(
            Event(
                id=stanza_id or f"invite-{room_id}",
                room_id=room_id,
                sender_id=inviter,
                kind=EventKind.MEMBERSHIP,
                timestamp=self.receipt_time(),
                membership="invite",
                target_id=self.boundjid.bare,
            )
        )

    @staticmethod
    def _is_invite(msg) -> bool:
        xml = msg.xml
        if xml.find(f"{{{CONFERENCE_NS}}}x") is not None:
            return True
        return xml.find(f"{{{MUC_USER_NS}}}x/{{{MUC_USER_NS}}}invite") is not None

    def _stanza_id(self, msg) -> str:
        if msg.xml.find("{urn:xmpp:sid:0}stanza-id") is None:
            return ""
        return str(msg["stanza_id"]["id"] or "")

    def _note_stanza_id(self, msg) -> None:
        # Only ids assigned by our own archive are usable as a resume point.
        if msg.xml.find("{urn:xmpp:sid:0}stanza-id") is None:
            return
        by = JID(str(msg["stanza_id"]["by"] or "")).bare
        if by and by != self.boundjid.bare:
            return
        sid = str(msg["stanza_id"]["id"] or "")
        if sid:
            self.last_stanza_id = sid

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def receipt_time(self) -> int:
        """Local receipt time, strictly increasing across calls."""
        # Several stanzas can be parsed within the same millisecond.
        ts = max(now_ms(), self._last_ts + 1)
        self._last_ts = ts
        return ts

    def message_time(self, msg) -> int:
        if msg.xml.find(f"{{{DELAY_NS}}}delay") is not None:
            ts = stamp_to_ms(msg["delay"]["stamp"])
            if ts > 0:
                return ts
        return self.receipt_time()

    def occupant_jid(self, room_id: str, nick: str) -> str:
        """Map a room occupant to a bare JID, using our own JID for our nick."""
        if nick and nick == self.rooms.get(room_id):
            return self.boundjid.bare
        try:
            real = self.muc.get_jid_property(room_id, nick, "jid")
        except Exception:
            real = None
        if real:
            return JID(str(real)).bare
        return f"{room_id}/{nick}"

    def send_reply(self, text: str, recipient: str, *, groupchat: bool = False):
        text = text.rstrip("\r\n")
        msg = self.make_message(
            mto=recipient, mbody=text, mtype="groupchat" if groupchat else "chat"
        )
        msg["chat_state"] = "active"
        msg.send()

    def send_chat_state(self, recipient: str, state: str, *, groupchat: bool = False):
        msg = self.make_message(mto=recipient, mtype="groupchat" if groupchat else "chat")
        msg["chat_state"] = state
        msg.send()
