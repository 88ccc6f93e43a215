"""
Asynchronous loading of the external map and routing libraries.

NotStarted -> Loading -> Ready | Failed

A slow or blocked map script fails the bootstrap after a timeout with a
user-facing message and a link to the provider's own site. A missing routing
sub-library only disables directions.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from provider import MapProvider, ProviderLoadError

logger = logging.getLogger(__name__)

FAILURE_MESSAGE = (
    "The map could not be loaded. An ad blocker or privacy extension may be "
    "blocking the map provider; allow it for this site and reload the page, "
    "or open the area in the provider's own map instead."
)


class BootstrapState(str, Enum):
    NOT_STARTED = "not_started"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class MapBootstrap:
    def __init__(self, provider: MapProvider, timeout: float = 10.0):
        self.provider = provider
        self.timeout = timeout
        self.state = BootstrapState.NOT_STARTED
        self.routing_available = False
        self.error_message: Optional[str] = None
        self.fallback_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (BootstrapState.READY, BootstrapState.FAILED)

    async def start(self, center: tuple[float, float]) -> BootstrapState:
        """Run the bootstrap once; later calls return the terminal state."""
        if self.state is not BootstrapState.NOT_STARTED:
            return self.state
        self.state = BootstrapState.LOADING

        if not self.provider.is_loaded():
            try:
                await asyncio.wait_for(self.provider.ensure_loaded(), self.timeout)
            except asyncio.TimeoutError:
                self._fail(center, f"map script did not load within {self.timeout:.0f}s")
                return self.state
            except ProviderLoadError as e:
                self._fail(center, str(e))
                return self.state

        await self._load_routing()
        self.state = BootstrapState.READY
        logger.info(f"[bootstrap] Ready (routing {'on' if self.routing_available else 'off'})")
        return self.state

    async def _load_routing(self) -> None:
        if self.provider.is_routing_loaded():
            self.routing_available = True
            return
        try:
            await self.provider.ensure_routing_loaded()
            self.routing_available = True
        except ProviderLoadError as e:
            self.routing_available = False
            logger.warning(f"[bootstrap] Routing library unavailable, directions disabled: {e}")

    def _fail(self, center: tuple[float, float], reason: str) -> None:
        self.state = BootstrapState.FAILED
        self.error_message = FAILURE_MESSAGE
        self.fallback_url = self.provider.external_link(*center)
        logger.error(f"[bootstrap] Failed: {reason}")
