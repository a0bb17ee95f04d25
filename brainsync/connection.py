"""
Remote reachability monitoring.

Listens to the remote store's connectivity signal (and optionally polls its
health check) and keeps a connection status. Status listeners hear about
every change. Reconnect callbacks run each time the status moves into
CONNECTED, which is how pending local writes get reconciled.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from .protocol import RemoteStoreProtocol, Unsubscribe

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


StatusListener = Callable[[ConnectionStatus], None]
ReconnectCallback = Callable[[], Awaitable[object]]


class ConnectionMonitor:
    """
    Tracks whether the remote store is reachable.

    Args:
        remote: Store whose connectivity signal is observed
        poll_interval: Seconds between health checks; None or 0 disables polling
    """

    def __init__(self, remote: RemoteStoreProtocol, *, poll_interval: Optional[float] = None):
        self._remote = remote
        self._poll_interval = poll_interval or None
        self.status = ConnectionStatus.UNKNOWN
        self._listeners: list[StatusListener] = []
        self._reconnect_callbacks: list[ReconnectCallback] = []
        self._unsubscribe: Optional[Unsubscribe] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._callback_tasks: set[asyncio.Task] = set()

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    def start(self) -> None:
        """Subscribe to the remote's signal and start polling if configured."""
        if self._unsubscribe is None:
            self._unsubscribe = self._remote.on_connectivity_change(self.set_online)
        if self._poll_interval and self._poll_task is None:
            self._poll_task = asyncio.ensure_future(self._poll_loop())

    async def stop(self) -> None:
        """Stop polling, unsubscribe and wait for running reconnect callbacks."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._callback_tasks:
            await asyncio.gather(*self._callback_tasks, return_exceptions=True)

    async def check(self) -> ConnectionStatus:
        """Ping the remote once and record the outcome."""
        try:
            online = await self._remote.ping()
        except Exception as e:
            logger.debug("Health check failed: %s", e)
            online = False
        self.set_online(online)
        return self.status

    async def _poll_loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._poll_interval)

    def set_online(self, online: bool) -> None:
        """Record a reachability observation."""
        new = ConnectionStatus.CONNECTED if online else ConnectionStatus.DISCONNECTED
        if new is self.status:
            return
        previous, self.status = self.status, new
        if online:
            logger.info("Remote store connected")
        else:
            logger.warning("Remote store disconnected")
        self._notify(new)
        if online and previous is not ConnectionStatus.CONNECTED:
            self._schedule_reconnect_callbacks()

    def _notify(self, status: ConnectionStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error("Error in connection listener: %s", e)

    def _schedule_reconnect_callbacks(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping reconnect callbacks")
            return
        for callback in list(self._reconnect_callbacks):
            task = asyncio.ensure_future(self._run_callback(callback))
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_tasks.discard)

    async def _run_callback(self, callback: ReconnectCallback) -> None:
        try:
            await callback()
        except Exception as e:
            logger.warning("Reconnect callback failed: %s", e)

    def on_change(self, listener: StatusListener) -> Unsubscribe:
        """Register a status listener. It is called at once with the current status."""
        self._listeners.append(listener)
        try:
            listener(self.status)
        except Exception as e:
            logger.error("Error in connection listener: %s", e)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_reconnect(self, callback: ReconnectCallback) -> Unsubscribe:
        """Register an async callback run on each transition to CONNECTED."""
        self._reconnect_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._reconnect_callbacks:
                self._reconnect_callbacks.remove(callback)

        return unsubscribe
