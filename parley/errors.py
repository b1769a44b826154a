"""Relay exceptions.

Each failure class maps to one handling policy (retry, degrade, report), so
callers branch on the type instead of scraping strings.
"""

from __future__ import annotations

import re


class ParleyError(RuntimeError):
    """Base class for relay errors."""


class TransportConnectionError(ParleyError):
    """Connecting to (or disconnecting from) the network failed."""


class AuthenticationError(ParleyError):
    """The account credentials were rejected or have expired."""


class StreamError(ParleyError):
    """The live event stream ended unexpectedly."""


class FetchError(ParleyError):
    """History or membership could not be fetched."""


class SendError(ParleyError):
    """A message or typing notification could not be delivered."""


class JoinError(ParleyError):
    """Joining a room failed."""


class InviteError(ParleyError):
    """Inviting a user failed."""


class CreateError(ParleyError):
    """Creating a room failed."""


class GenerationError(ParleyError):
    """The language-model backend did not produce a reply."""


class GenerationHTTPError(GenerationError):
    """HTTP error from the language-model backend."""

    def __init__(
        self,
        status: int,
        *,
        method: str,
        url: str,
        detail: str | None = None,
    ):
        self.status = int(status)
        self.method = method
        self.url = url
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        detail = (self.detail or "").strip()
        if detail:
            return f"Backend HTTP {self.status} {self.method} {self.url}: {detail}"
        return f"Backend HTTP {self.status} {self.method} {self.url}"


class HandlerError(ParleyError):
    """Handling a single inbound message failed."""


_AUTH_FAILURE_RE = re.compile(
    r"M_UNKNOWN_TOKEN|invalid (access )?token|not-authorized|"
    r"credentials-expired|\b401\b",
    re.IGNORECASE,
)


def is_auth_failure(exc: BaseException | None) -> bool:
    """Return True if a stream-ending error means the credentials are bad."""
    if exc is None:
        return False
    if isinstance(exc, AuthenticationError):
        return True
    return bool(_AUTH_FAILURE_RE.search(str(exc)))
