"""Connectivity monitor - online/offline state and sync triggers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[], Awaitable[None]]
Ping = Callable[[], Awaitable[bool]]

# Seconds between reachability pings
PING_INTERVAL = 30.0


class ConnectivityMonitor:
    """
    Tracks whether the remote store is reachable and fires listeners.

    ``on_online`` listeners run on every offline -> online transition and
    ``on_foreground`` listeners run whenever the app is brought to the front.
    With a ping, start() runs a heartbeat that updates the state on its own;
    without one the host application calls set_online() itself.
    """

    def __init__(self, ping: Optional[Ping] = None, interval: float = PING_INTERVAL, online: bool = True):
        self._ping = ping
        self._interval = interval
        self._online = online
        self._online_listeners: list[Listener] = []
        self._foreground_listeners: list[Listener] = []
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def is_online(self) -> bool:
        return self._online

    def on_online(self, listener: Listener) -> None:
        self._online_listeners.append(listener)

    def on_foreground(self, listener: Listener) -> None:
        self._foreground_listeners.append(listener)

    async def set_online(self, online: bool) -> None:
        """Record the current state; fires on_online listeners on a transition to online."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored")
            await self._fire(self._online_listeners)
        elif was_online and not online:
            logger.warning("Connectivity lost")

    async def foreground(self) -> None:
        """Signal that the app became visible again."""
        if self._online:
            await self._fire(self._foreground_listeners)

    async def _fire(self, listeners: list[Listener]) -> None:
        for listener in list(listeners):
            try:
                await listener()
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    # -------------------------------------------------------------------------
    # Heartbeat
    # -------------------------------------------------------------------------

    async def check(self) -> bool:
        """Ping the remote once and update the state."""
        if self._ping is None:
            return self._online
        try:
            reachable = bool(await self._ping())
        except Exception as e:
            logger.debug(f"Connectivity ping failed: {e}")
            reachable = False
        await self.set_online(reachable)
        return reachable

    async def start(self) -> None:
        """Start the heartbeat loop (no-op without a ping)."""
        if self._ping is None or self._running:
            return
        self._running = True
        await self.check()
        self._task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Connectivity monitor started (ping every {self._interval:g}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connectivity monitor stopped")

    async def _heartbeat_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            if not self._running:
                return
            await self.check()
