"""Network reachability tracking.

This module provides:
- ConnectivityMonitor: Cached online/offline flag with transition callbacks

The host application reports what the OS thinks (set_online). Since
that signal says little about whether the backend is actually
reachable, check_connectivity() runs an active HEAD probe and updates
the cached flag from its result. Subscribers hear about transitions
only, never about checks that confirm the current state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

from pharmasync.core.config import DEFAULT_PROBE_INTERVAL, DEFAULT_PROBE_TIMEOUT

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks whether the backend is reachable.

    Usage:
        monitor = ConnectivityMonitor(
            probe_url="https://pharmacy.example.com/favicon.ico",
            health_url=remote_config.health_url,
        )
        unsubscribe = monitor.subscribe(lambda online: print(online))
        await monitor.check_connectivity()
    """

    def __init__(
        self,
        probe_url: str | None = None,
        health_url: str | None = None,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        initial: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe_url: Lightweight resource probed first.
            health_url: Backend health endpoint used as fallback probe.
            timeout: Timeout in seconds for each probe.
            initial: Assumed state before the first report or probe.
            client: Optional shared HTTP client; one is created otherwise.
        """
        self._probe_url = probe_url
        self._health_url = health_url
        self._timeout = timeout
        self._online = initial
        self._subscribers: dict[object, Callable[[bool], None]] = {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @property
    def is_online(self) -> bool:
        """Cached state; may lag actual network conditions."""
        return self._online

    @property
    def can_probe(self) -> bool:
        """Whether check_connectivity() has any URL to probe."""
        return bool(self._probe_url or self._health_url)

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a transition callback.

        The callback is invoked once immediately with the current state,
        then again on every future transition.

        Returns:
            Function that unregisters this subscription.
        """
        token = object()
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        self._deliver(callback, self._online)
        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record a new state, notifying subscribers if it changed."""
        if online == self._online:
            return

        self._online = online
        logger.info("Connectivity changed: %s", "ONLINE" if online else "OFFLINE")
        for callback in list(self._subscribers.values()):
            self._deliver(callback, online)

    def _deliver(self, callback: Callable[[bool], None], online: bool) -> None:
        try:
            callback(online)
        except Exception:
            logger.exception("Connectivity subscriber %r failed", callback)

    async def check_connectivity(self) -> bool:
        """Actively probe reachability and update the cached state.

        Never raises: timeouts and network errors count as offline.

        Returns:
            True if the probe or the fallback health probe succeeded.
        """
        online = await self._probe()
        self.set_online(online)
        return online

    async def _probe(self) -> bool:
        if self._probe_url:
            try:
                response = await self._client.head(
                    self._probe_url,
                    timeout=self._timeout,
                    headers={"Cache-Control": "no-store"},
                )
                if response.is_success:
                    return True
                logger.debug("Probe %s answered %d", self._probe_url, response.status_code)
            except Exception as e:
                # Bad URLs and transport errors alike mean "not reachable"
                logger.debug("Probe %s failed: %s", self._probe_url, e)

        if self._health_url:
            try:
                response = await self._client.head(
                    self._health_url,
                    timeout=self._timeout,
                    headers={"Cache-Control": "no-store"},
                )
                # 401 means reachable but needs auth
                return response.is_success or response.status_code == 401
            except Exception as e:
                logger.debug("Health probe %s failed: %s", self._health_url, e)

        return False

    async def watch(self, interval: float = DEFAULT_PROBE_INTERVAL) -> None:
        """Probe periodically until cancelled."""
        while True:
            await self.check_connectivity()
            await asyncio.sleep(interval)

    async def aclose(self) -> None:
        """Close the HTTP client if this monitor created it."""
        if self._owns_client:
            await self._client.aclose()
