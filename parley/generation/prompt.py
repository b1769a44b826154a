"""Prompt assembly for the language-model backend."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from parley.core.models import ConversationMessage, Role

ASSISTANT_NAME = "Henry"

SYSTEM_PROMPT = """\
You are {name}, a helpful, knowledgeable and personable assistant taking part in \
instant-messaging conversations. Be accurate, warm and genuinely useful.

Always respond in the same language as the user.

Keep replies suited to instant messaging: concise, quick to read and easy to \
follow on a phone screen. Only go into length when asked to. Break longer \
answers into small, clearly structured chunks and number step-by-step \
instructions.

Read the whole chat history before answering and build on it. Refer back to \
earlier details when relevant, keep track of what people told you about \
themselves, and ask for clarification when the history is contradictory, \
incomplete or a request is unclear.

Start with the most recent message. Use light humour only when it fits, \
acknowledge emotions before content, and say so plainly when something is \
beyond what you know."""

CRITICAL_INSTRUCTION = (
    "\n\nCRITICAL INSTRUCTION:\n"
    "1. NEVER include timestamp or username prefixes in your responses. "
    "NEVER respond in the format '2025-03-21 10:42:05 user@example.org: [content]'. "
    "Always respond with ONLY the message content.\n"
    "2. If asked about the current date, use: {date}\n"
    "3. If asked about the current time, use: {time} (without seconds)"
)


def _as_datetime(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000)


def format_message(message: ConversationMessage, *, assistant_name: str = ASSISTANT_NAME) -> str:
    """Prefix the content with its time and sender."""
    when = _as_datetime(message.timestamp) if message.timestamp > 0 else datetime.now()
    sender = message.sender_id
    if not sender:
        sender = "User" if message.role is Role.USER else assistant_name
    return f"{when:%Y-%m-%d %H:%M:%S} {sender}: {message.content}"


def build_system_prompt(
    context: Sequence[ConversationMessage],
    *,
    assistant_name: str = ASSISTANT_NAME,
    now: datetime | None = None,
) -> str:
    latest = max((m.timestamp for m in context), default=0)
    if latest > 0:
        ref = _as_datetime(latest)
    else:
        ref = now or datetime.now()
    return SYSTEM_PROMPT.format(name=assistant_name) + CRITICAL_INSTRUCTION.format(
        date=f"{ref:%Y-%m-%d}", time=f"{ref:%H:%M}"
    )


def build_messages(
    context: Sequence[ConversationMessage],
    *,
    assistant_name: str = ASSISTANT_NAME,
) -> list[dict[str, str]]:
    """Convert the context window into Messages API turns.

    Consecutive turns with the same role are merged and leading assistant turns
    are dropped, so the conversation always opens with the user.
    """
    turns: list[dict[str, str]] = []
    for message in context:
        role = message.role.value
        text = format_message(message, assistant_name=assistant_name)
        if not turns and role != Role.USER.value:
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"] += "\n" + text
            continue
        turns.append({"role": role, "content": text})
    return turns
