"""Core data types shared by the relay components."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class EventKind(str, Enum):
    MESSAGE = "message"
    MEMBERSHIP = "membership"
    OTHER = "other"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class RoomType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"

    @classmethod
    def from_member_count(cls, joined: int) -> "RoomType":
        # Exactly the assistant and one other person.
        return cls.DIRECT if joined == 2 else cls.GROUP


@dataclass(frozen=True)
class Event:
    """An occurrence in a room as delivered by the transport."""

    id: str
    room_id: str
    sender_id: str
    kind: EventKind
    timestamp: int
    body: str = ""
    membership: str | None = None
    target_id: str | None = None

    @property
    def is_message(self) -> bool:
        return self.kind is EventKind.MESSAGE

    def is_invite_for(self, user_id: str) -> bool:
        return (
            self.kind is EventKind.MEMBERSHIP
            and self.membership == "invite"
            and self.target_id == user_id
        )


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    content: str
    timestamp: int
    sender_id: str = ""


@dataclass(frozen=True)
class Identity:
    """The assistant's own address.

    ``full`` is the qualified form (``name@domain``) and is empty when the
    address has no domain separator; ``localpart`` is then the whole string.
    """

    user_id: str
    localpart: str
    domain: str = ""

    @property
    def full(self) -> str:
        return self.user_id if self.domain else ""

    @classmethod
    def parse(cls, address: str) -> "Identity":
        bare = (address or "").strip().split("/", 1)[0]
        if "@" not in bare:
            return cls(user_id=bare, localpart=bare)
        localpart, domain = bare.split("@", 1)
        return cls(user_id=bare, localpart=localpart, domain=domain)


def is_from_allowed_domain(user_id: str, allowed_domain: str) -> bool:
    """Check that a sender's bare address is ``local@allowed_domain``."""
    bare = (user_id or "").split("/", 1)[0]
    parts = bare.split("@")
    if len(parts) != 2 or not parts[0]:
        return False
    return parts[1].lower() == (allowed_domain or "").lower()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionState:
    """Mutable session bookkeeping, owned by the stream-consumption task."""

    startup_time: int = field(default_factory=now_ms)
    last_processed_time: int = 0
    cursor: str = ""

    def __post_init__(self) -> None:
        if self.last_processed_time < self.startup_time:
            self.last_processed_time = self.startup_time
