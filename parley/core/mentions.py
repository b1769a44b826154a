"""Mention detection and stripping.

Both functions share one notion of "word": a whitespace-separated token with
surrounding punctuation trimmed. A word addresses the assistant when it equals
the local name, or starts with it and continues with a punctuation mark
("henry," / "henry:"). Substrings of longer words ("henrysmith") do not.
"""

from __future__ import annotations

import re

from parley.core.models import Identity, RoomType

_TRIM_CHARS = ",.!?:;\"'()[]{}@"
_FOLLOW_CHARS = ",.!?:;"
_WORD_RE = re.compile(r"\S+")


def _addresses(word: str, localpart: str) -> bool:
    word = word.lower().strip(_TRIM_CHARS)
    if word == localpart:
        return True
    return (
        len(word) > len(localpart)
        and word.startswith(localpart)
        and word[len(localpart)] in _FOLLOW_CHARS
    )


def is_addressed(content: str, room_type: RoomType, identity: Identity) -> bool:
    """Return True if ``content`` is directed at the assistant."""
    if room_type is RoomType.DIRECT:
        return True

    if identity.full and identity.full in content:
        return True

    localpart = identity.localpart.lower()
    if not localpart:
        return False

    lowered = content.lower()
    if localpart in lowered:
        for word in lowered.split():
            if _addresses(word, localpart):
                return True

    # "henry: do something"
    return f"{localpart}:" in lowered


def _strip_word(word: str, identity: Identity, localpart: str) -> str:
    if identity.full and identity.full in word:
        word = word.replace(identity.full, "")
        if not word.strip(_TRIM_CHARS):
            return ""

    lowered = word.lower()
    if lowered.strip(_TRIM_CHARS) == localpart:
        return ""

    # Leading "henry," / "henry:" glued to the rest of the text.
    lead = len(lowered) - len(lowered.lstrip(_TRIM_CHARS))
    rest = lowered[lead:]
    if (
        len(rest) > len(localpart)
        and rest.startswith(localpart)
        and rest[len(localpart)] in _FOLLOW_CHARS
    ):
        return word[lead + len(localpart) + 1 :].lstrip(_FOLLOW_CHARS)

    return word


def strip_mentions(content: str, identity: Identity) -> str:
    """Remove the assistant's mention forms from ``content``.

    Runs a single pass over the tokens so removals cannot create new matches.
    Whitespace between the surviving words is preserved; the result is
    trimmed.
    """
    localpart = identity.localpart.lower()
    if not localpart and not identity.full:
        return content.strip()

    out: list[str] = []
    pos = 0
    for match in _WORD_RE.finditer(content):
        gap = content[pos : match.start()]
        pos = match.end()
        word = _strip_word(match.group(), identity, localpart) if localpart else match.group()
        if not word:
            continue
        if out:
            out.append(gap)
        out.append(word)
    return "".join(out).strip()
