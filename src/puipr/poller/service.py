"""Periodic Tautulli poller feeding the ingestion engine.

Runs one cycle immediately, then one per fixed interval until stopped.
A failed cycle is logged and the next tick runs as usual: no backoff.

State machine per cycle::

    IDLE -> FETCHING -> INGESTING -> IDLE
                     \\-> IDLE            (fetch failed or empty)
"""

from __future__ import annotations

import asyncio
import enum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from puipr.config import Settings
from puipr.ingest.schemas import RawObservation
from puipr.ingest.service import IngestFailure, ingest
from puipr.poller.client import TautulliClient, TautulliError

logger = structlog.get_logger()


class PollerState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    INGESTING = "ingesting"
    STOPPED = "stopped"


class Poller:
    """Fixed-interval fetch-and-ingest loop."""

    def __init__(
        self,
        client: TautulliClient,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float,
        ingest_timeout_seconds: float = 20.0,
    ) -> None:
        self.client = client
        self.interval_seconds = interval_seconds
        self.ingest_timeout_seconds = ingest_timeout_seconds
        self._session_factory = session_factory
        self._task: asyncio.Task[None] | None = None
        self.state = PollerState.IDLE
        self.cycles = 0
        self.failures = 0
        self.ingested_total = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> Poller:
        """Build a poller from the Tautulli settings."""
        client = TautulliClient(
            base_url=settings.tautulli_url,
            api_key=settings.tautulli_apikey,
            length=settings.history_length,
            timeout=settings.fetch_timeout_seconds,
        )
        return cls(
            client,
            session_factory,
            interval_seconds=settings.fetch_interval_seconds,
            ingest_timeout_seconds=settings.ingest_timeout_seconds,
        )

    async def _ingest(self, batch: list[RawObservation]) -> int:
        async with self._session_factory() as session:
            return await ingest(session, batch, source="poller")

    async def run_once(self) -> int:
        """Run a single fetch-and-ingest cycle.

        Returns:
            Number of observations ingested; 0 if the cycle failed.
        """
        self.cycles += 1
        self.state = PollerState.FETCHING
        try:
            batch = await self.client.fetch_history()
            if not batch:
                logger.debug("poller_cycle_empty", url=self.client.base_url)
                return 0

            self.state = PollerState.INGESTING
            count = await asyncio.wait_for(self._ingest(batch), timeout=self.ingest_timeout_seconds)
        except TautulliError as e:
            self.failures += 1
            logger.warning("poller_fetch_failed", error=str(e))
            return 0
        except IngestFailure as e:
            self.failures += 1
            logger.warning("poller_ingest_failed", index=e.index, error=str(e.cause))
            return 0
        except asyncio.TimeoutError:
            self.failures += 1
            logger.warning("poller_ingest_timeout", timeout=self.ingest_timeout_seconds)
            return 0
        except Exception:
            self.failures += 1
            logger.exception("poller_cycle_error")
            return 0
        finally:
            if self.state is not PollerState.STOPPED:
                self.state = PollerState.IDLE

        self.ingested_total += count
        logger.info("poller_cycle_ingested", count=count, url=self.client.base_url)
        return count

    async def run(self) -> None:
        """Run cycles forever on a fixed interval; missed ticks are skipped."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while True:
                await self.run_once()
                next_tick += self.interval_seconds
                now = loop.time()
                while next_tick <= now:
                    next_tick += self.interval_seconds
                await asyncio.sleep(next_tick - now)
        finally:
            self.state = PollerState.STOPPED

    def start(self) -> asyncio.Task[None]:
        """Schedule the loop as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="tautulli-poller")
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and release the HTTP client."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.state = PollerState.STOPPED
        await self.client.aclose()
