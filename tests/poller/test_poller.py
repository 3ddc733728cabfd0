"""Poller tests — cycle outcomes, failure isolation and the fixed-interval loop."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from puipr.config import Settings
from puipr.database import get_session_factory
from puipr.ingest.schemas import RawObservation
from puipr.poller.client import TautulliError
from puipr.poller.service import Poller, PollerState
from puipr.users.service import history, summary


class FakeTautulli:
    """Scripted stand-in for TautulliClient: each call pops the next outcome."""

    base_url = "http://tautulli.test/api/v2"
    length = 100

    def __init__(self, *outcomes: list[RawObservation] | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.closed = False

    async def fetch_history(self) -> list[RawObservation]:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


def _obs(user_id: int, ip: str, date: int) -> RawObservation:
    return RawObservation(user_id=user_id, user=f"user{user_id}", ip_address=ip, date=date)


def _poller(client: FakeTautulli, interval: float = 3600.0) -> Poller:
    return Poller(client, get_session_factory(), interval_seconds=interval)  # type: ignore[arg-type]


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            msg = "condition not reached"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


class TestRunOnce:
    async def test_ingests_fetched_batch(self, db_session: AsyncSession):
        poller = _poller(FakeTautulli([_obs(1, "10.0.0.1", 100), _obs(1, "10.0.0.2", 200)]))

        assert await poller.run_once() == 2
        assert poller.ingested_total == 2
        assert poller.state is PollerState.IDLE

        (row,) = await summary(db_session)
        assert row.last_ip == "10.0.0.2"

    async def test_empty_fetch(self, db_session: AsyncSession):
        poller = _poller(FakeTautulli([]))
        assert await poller.run_once() == 0
        assert poller.failures == 0

    async def test_fetch_failure_is_a_noop(self, db_session: AsyncSession):
        poller = _poller(FakeTautulli(TautulliError("tautulli result: error")))

        assert await poller.run_once() == 0
        assert poller.failures == 1
        assert poller.state is PollerState.IDLE
        assert await summary(db_session) == []

    async def test_ingest_failure_is_contained(self, db_session: AsyncSession):
        broken = RawObservation.model_construct(
            user_id=9, user=None, friendly_name=None, user_thumb=None, ip_address="10.9.9.9", date=1
        )
        poller = _poller(FakeTautulli([_obs(1, "10.0.0.1", 100), broken]))

        assert await poller.run_once() == 0
        assert poller.failures == 1
        assert await summary(db_session) == []

    async def test_slow_ingest_times_out(self, db_session: AsyncSession):
        poller = Poller(
            FakeTautulli([_obs(1, "10.0.0.1", 100)]),  # type: ignore[arg-type]
            get_session_factory(),
            interval_seconds=3600.0,
            ingest_timeout_seconds=0.05,
        )

        async def slow_ingest(batch: list[RawObservation]) -> int:
            await asyncio.sleep(5)
            return len(batch)

        poller._ingest = slow_ingest  # type: ignore[method-assign]

        assert await poller.run_once() == 0
        assert poller.failures == 1
        assert poller.ingested_total == 0
        assert poller.state is PollerState.IDLE
        assert await summary(db_session) == []

    async def test_unexpected_error_is_contained(self, db_session: AsyncSession):
        poller = _poller(FakeTautulli(RuntimeError("surprise")))
        assert await poller.run_once() == 0
        assert poller.failures == 1

    async def test_same_contract_as_push(self, db_session: AsyncSession):
        """Re-polling overlapping history keeps watermarks monotonic."""
        poller = _poller(
            FakeTautulli(
                [_obs(1, "10.0.0.1", 300), _obs(1, "10.0.0.1", 100)],
                [_obs(1, "10.0.0.1", 200)],
            )
        )
        await poller.run_once()
        await poller.run_once()

        (row,) = await history(db_session, 1)
        assert row.first_seen.timestamp() == 300
        assert row.last_seen.timestamp() == 300


class TestLoop:
    async def test_first_cycle_runs_immediately(self, db_session: AsyncSession):
        client = FakeTautulli([_obs(1, "10.0.0.1", 100)])
        poller = _poller(client, interval=3600.0)

        poller.start()
        await _wait_for(lambda: poller.cycles == 1 and poller.state is PollerState.IDLE)
        await asyncio.sleep(0.05)
        assert client.calls == 1

        await poller.stop()
        assert poller.state is PollerState.STOPPED
        assert client.closed

    async def test_keeps_running_after_failures(self, db_session: AsyncSession):
        client = FakeTautulli(
            TautulliError("boom"),
            TautulliError("boom again"),
            [_obs(1, "10.0.0.1", 100)],
        )
        poller = _poller(client, interval=0.02)

        poller.start()
        await _wait_for(lambda: poller.ingested_total == 1)
        await poller.stop()

        assert poller.failures == 2
        assert poller.cycles >= 3
        assert [row.ip for row in await history(db_session, 1)] == ["10.0.0.1"]

    async def test_start_is_idempotent(self, db_session: AsyncSession):
        poller = _poller(FakeTautulli(), interval=3600.0)
        first = poller.start()
        assert poller.start() is first
        await poller.stop()


class TestFromSettings:
    def test_uses_configured_values(self):
        settings = Settings(
            tautulli_url="http://tautulli:8181/api/v2",
            tautulli_apikey="k",
            tautulli_length="50",
            fetch_interval="2m",
            ingest_timeout_seconds=5.0,
        )
        poller = Poller.from_settings(settings, session_factory=None)  # type: ignore[arg-type]

        assert poller.interval_seconds == 120.0
        assert poller.ingest_timeout_seconds == 5.0
        assert poller.client.base_url == "http://tautulli:8181/api/v2"
        assert poller.client.length == 50
        assert poller.client.history_params()["apikey"] == "k"

    @pytest.mark.parametrize("interval", ["bogus", "0s"])
    def test_invalid_interval_falls_back(self, interval):
        settings = Settings(tautulli_url="http://t/api/v2", tautulli_apikey="k", fetch_interval=interval)
        poller = Poller.from_settings(settings, session_factory=None)  # type: ignore[arg-type]
        assert poller.interval_seconds == 300.0
