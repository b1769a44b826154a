"""Typing indicator keepalive.

Clients clear "composing" after a short while, so the indicator is
refreshed until the caller turns it off or its deadline passes.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

REFRESH_INTERVAL_S = 15.0


class TypingIndicator:
    def __init__(
        self,
        *,
        send_typing: Callable[[], None],
        send_paused: Callable[[], None],
        is_shutting_down: Callable[[], bool],
    ):
        self._send_typing = send_typing
        self._send_paused = send_paused
        self._is_shutting_down = is_shutting_down

        self._task: asyncio.Task | None = None
        self._deadline = 0.0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self, *, interval_s: float) -> None:
        try:
            while not self._is_shutting_down():
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(interval_s, remaining))
                if time.monotonic() >= self._deadline or self._is_shutting_down():
                    break
                self._send_typing()
        except asyncio.CancelledError:
            return
        self._send_paused()

    def start(self, timeout_s: float, *, interval_s: float = REFRESH_INTERVAL_S) -> None:
        """Send "composing" now and keep it alive for ``timeout_s``."""
        if self._is_shutting_down():
            return
        self._deadline = time.monotonic() + max(0.0, timeout_s)
        self._send_typing()
        if self.active:
            return
        self._task = asyncio.create_task(self._loop(interval_s=interval_s))

    def stop(self, *, notify: bool = True) -> None:
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
        if notify and not self._is_shutting_down():
            self._send_paused()
