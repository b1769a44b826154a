"""Conversation window assembly.

Turns a newest-first, possibly short history fetch into a chronological,
role-tagged context window that ends with the message being answered.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence

from parley.core.mentions import strip_mentions
from parley.core.models import ConversationMessage, Event, Identity, Role, RoomType

log = logging.getLogger("history")

HistoryFetch = Callable[[str, int], Awaitable[Sequence[Event]]]

# A history entry this close to the current message, with the same sender and
# text, is the current message itself.
DUPLICATE_WINDOW_MS = 5000


def reconcile(
    events: Sequence[Event],
    *,
    identity: Identity,
    room_type: RoomType,
) -> list[ConversationMessage]:
    """Convert newest-first events into chronological conversation messages."""
    kept = [e for e in events if e.is_message and e.body]
    # Newest first on the wire; the stable sort keeps delivery order on ties.
    ordered = sorted(reversed(kept), key=lambda e: e.timestamp)

    messages: list[ConversationMessage] = []
    for event in ordered:
        role = Role.ASSISTANT if event.sender_id == identity.user_id else Role.USER
        content = event.body
        if role is Role.USER and room_type is RoomType.GROUP:
            content = strip_mentions(content, identity)
            if not content:
                continue
        messages.append(
            ConversationMessage(
                role=role,
                content=content,
                timestamp=event.timestamp,
                sender_id=event.sender_id,
            )
        )
    return messages


def _is_current(
    entry: ConversationMessage,
    *,
    sender_id: str,
    content: str,
    timestamp: int,
) -> bool:
    return (
        entry.content == content
        and entry.sender_id == sender_id
        and abs(timestamp - entry.timestamp) < DUPLICATE_WINDOW_MS
    )


async def build_context(
    room_id: str,
    sender_id: str,
    current_message: str,
    current_timestamp: int,
    fetch_history: HistoryFetch,
    window_size: int,
    *,
    identity: Identity,
    room_type: RoomType,
) -> list[ConversationMessage]:
    """Assemble the context window for a reply to ``current_message``.

    A failing fetch degrades to a window holding only the current message.
    """
    events: Sequence[Event] = []
    if window_size > 0:
        try:
            events = await fetch_history(room_id, window_size)
        except Exception as exc:
            log.warning("History fetch failed for %s: %s", room_id, exc)
            events = []

    messages = reconcile(events, identity=identity, room_type=room_type)
    log.debug(
        "Using %d of %d fetched events as context for %s",
        len(messages),
        len(events),
        room_id,
    )

    if messages and _is_current(
        messages[-1],
        sender_id=sender_id,
        content=current_message,
        timestamp=current_timestamp,
    ):
        log.debug("Current message already present in history for %s", room_id)
        return messages

    current = ConversationMessage(
        role=Role.USER,
        content=current_message,
        timestamp=current_timestamp,
        sender_id=sender_id,
    )
    index = len(messages)
    while index > 0 and messages[index - 1].timestamp > current_timestamp:
        index -= 1
    messages.insert(index, current)
    return messages
