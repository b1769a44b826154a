"""Relay core (addressing, context assembly, session loop).

Transport, generation backend and cursor persistence are injected via ports.
"""

from parley.core.history import build_context
from parley.core.mentions import is_addressed, strip_mentions
from parley.core.orchestrator import ReplyOrchestrator
from parley.core.session import SessionLoop, SessionStatus

__all__ = [
    "ReplyOrchestrator",
    "SessionLoop",
    "SessionStatus",
    "build_context",
    "is_addressed",
    "strip_mentions",
]
