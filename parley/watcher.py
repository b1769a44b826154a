"""Periodic room status reporting."""

from __future__ import annotations

import asyncio
import logging

from parley.core.ports import TransportPort

log = logging.getLogger("watcher")

WARMUP_S = 5.0
CHECK_INTERVAL_S = 10.0
SUMMARY_EVERY = 10


class RoomWatcher:
    def __init__(
        self,
        transport: TransportPort,
        *,
        owner_id: str,
        warmup_s: float = WARMUP_S,
        interval_s: float = CHECK_INTERVAL_S,
    ):
        self.transport = transport
        self.owner_id = owner_id
        self.warmup_s = warmup_s
        self.interval_s = interval_s
        self.checks = 0
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        self._stopping.set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first; False means stop."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def check(self) -> int | None:
        self.checks += 1
        log.debug("Performing periodic room check (attempt #%d)", self.checks)
        try:
            rooms = await self.transport.joined_rooms()
        except Exception as e:
            log.warning("Error getting joined rooms: %s", e)
            return None
        if rooms:
            status = f"Currently in {len(rooms)} rooms"
            log.info(status)
            if self.checks % SUMMARY_EVERY == 0:
                log.info("Status for %s: %s", self.owner_id, status)
        return len(rooms)

    async def run(self) -> None:
        if not await self._sleep(self.warmup_s):
            return
        log.info(
            "Assistant started as %s (operator: %s)",
            self.transport.identity.user_id,
            self.owner_id,
        )
        while not self._stopping.is_set():
            await self.check()
            if not await self._sleep(self.interval_s):
                return
