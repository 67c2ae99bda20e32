"""
Base classes for discovery methods.

Every transport, whether event driven (radio pairing, wireless association)
or enumerating (IP ranges, local interfaces), is exposed the same way: an
async generator of Sightings. start_scan() pumps that stream into the shared
intake queue as a cancellable task.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from .._types import Sighting

logger = logging.getLogger(__name__)


class DiscoveryMethod(ABC):
    """Base class for discovery methods."""

    _task: Optional[asyncio.Task] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of this discovery method."""
        pass

    @abstractmethod
    def sightings(self) -> AsyncIterator[Sighting]:
        """
        Stream sightings for one scan pass.

        Implementations are async generators. Closing the generator must
        release any subscription or subprocess the pass opened.
        """
        pass

    async def is_available(self) -> bool:
        """Check if this discovery method is available."""
        return True

    @property
    def is_scanning(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_scan(self, intake: asyncio.Queue) -> asyncio.Task:
        """
        Begin a scan pass and return immediately.

        Sightings are put on the intake queue as they arrive. Callers that
        want to restart a running pass must cancel() it first.
        """
        if self.is_scanning:
            logger.warning(f"{self.name} scan already running, starting another pass")
        self._task = asyncio.create_task(self._pump(intake), name=f"scan-{self.name}")
        return self._task

    def cancel(self) -> None:
        """Stop emitting sightings for the current pass."""
        if self._task is not None and not self._task.done():
            logger.info(f"Cancelling {self.name} scan")
            self._task.cancel()

    async def wait(self) -> int:
        """Wait for the current pass; returns the number of sightings emitted."""
        if self._task is None:
            return 0
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._task.cancelled():
                return 0
            raise

    async def discover(self) -> list[Sighting]:
        """Run one full pass and collect its sightings."""
        found: list[Sighting] = []
        seen: set[str] = set()
        async for sighting in self.sightings():
            if sighting.identity in seen:
                continue
            seen.add(sighting.identity)
            found.append(sighting)
        return found

    async def _pump(self, intake: asyncio.Queue) -> int:
        """Forward one pass to the intake, suppressing repeated identities."""
        seen: set[str] = set()
        emitted = 0
        stream = self.sightings()
        try:
            async for sighting in stream:
                if sighting.identity in seen:
                    logger.debug(f"{self.name}: duplicate sighting {sighting.identity} suppressed")
                    continue
                seen.add(sighting.identity)
                await intake.put(sighting)
                emitted += 1
        except asyncio.CancelledError:
            logger.info(f"{self.name} scan cancelled after {emitted} sightings")
            raise
        except Exception as e:
            logger.error(f"Error during {self.name} scan: {e}")
        finally:
            await stream.aclose()

        logger.info(f"{self.name} scan finished: {emitted} sightings")
        return emitted
