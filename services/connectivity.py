"""
Connectivity monitor: reachability probing with deduplicated change notifications.

The monitor keeps a single "reachable" flag. Subscribers receive a value only
when that flag changes, so repeated identical probe results never produce
duplicate sync triggers. State is ephemeral and re-derived on every start.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from typing import List, Optional, Protocol

from core.settings import CONNECTIVITY


logger = logging.getLogger("taskline.connectivity")

_CLOSED = object()


class ConnectivityProbe(Protocol):
    def check_now(self) -> bool:
        ...


class SocketProbe:
    """Reachability via a TCP connect to a well-known endpoint."""

    def __init__(
        self,
        host: str = CONNECTIVITY.probe_host,
        port: int = CONNECTIVITY.probe_port,
        timeout: float = CONNECTIVITY.probe_timeout_sec,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    def check_now(self) -> bool:
        if not self.host:
            return False
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError as exc:
            logger.debug("Probe %s:%s failed: %s", self.host, self.port, exc)
            return False


class Subscription:
    """Channel of connectivity changes; ``close()`` is the cancellation point."""

    def __init__(self, monitor: "ConnectivityMonitor") -> None:
        self._monitor = monitor
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, reachable: bool) -> None:
        if not self.closed:
            self._queue.put_nowait(reachable)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._monitor.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> List[bool]:
        """Pop every already-delivered value without waiting."""
        values: List[bool] = []
        while not self._queue.empty():
            value = self._queue.get_nowait()
            if value is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            values.append(value)
        return values

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> bool:
        value = await self._queue.get()
        if value is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return value


class ConnectivityMonitor:
    """Tracks reachability and broadcasts changes to subscribers.

    ``update`` and ``subscribe`` must be called from the event loop thread;
    probes themselves run in a worker thread.
    """

    def __init__(
        self,
        probe: ConnectivityProbe,
        *,
        interval_sec: float = CONNECTIVITY.interval_sec,
    ) -> None:
        self._probe = probe
        self._interval = interval_sec
        self._state: Optional[bool] = None
        self._subscribers: List[Subscription] = []
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self) -> bool:
        """Initialise the state with an immediate probe."""
        self.update(self._check())
        logger.info("ConnectivityMonitor started (online=%s)", self.current_state())
        return self.current_state()

    async def run(self) -> None:
        """Poll the probe every ``interval_sec`` until ``stop()``."""
        self._running = True
        if self._state is None:
            await self.poll_once()
        while self._running:
            await asyncio.sleep(self._interval)
            if not self._running:
                break
            await self.poll_once()

    def stop(self) -> None:
        self._running = False

    # ------------------------------------------------------------------
    # Subscriptions
    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        if not subscription.closed:
            subscription.close()

    # ------------------------------------------------------------------
    # State
    def current_state(self) -> bool:
        return bool(self._state)

    def update(self, reachable: bool) -> bool:
        """Record a reading; notify subscribers only if the state changed."""
        reachable = bool(reachable)
        if self._state is reachable:
            return False
        self._state = reachable
        logger.info("Connectivity status changed: %s", "online" if reachable else "offline")
        for subscription in list(self._subscribers):
            subscription._deliver(reachable)
        return True

    async def poll_once(self) -> bool:
        reachable = await asyncio.to_thread(self._check)
        self.update(reachable)
        return reachable

    def _check(self) -> bool:
        try:
            return bool(self._probe.check_now())
        except Exception as exc:
            logger.warning("Connectivity probe raised %s; treating as offline", exc)
            return False


__all__ = ["ConnectivityMonitor", "ConnectivityProbe", "SocketProbe", "Subscription"]
