"""Pytest configuration and fixtures.

Engine tests run against the in-process MemoryBackend. Tests that need
PostgreSQL request the ``pool`` fixture, which skips unless DB_DSN is set.
"""

import asyncio
import os

import pytest
import pytest_asyncio

from nflsim.aggregation import (
    CurrentStateSelector,
    MemoryBackend,
    Projector,
    RunRegistry,
    TallyStore,
)
from nflsim.aggregation.outcomes import GameResultKey, RankInSpace, Subject
from nflsim.db.models import GameResult, RankSpace


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def registry(backend):
    return RunRegistry(backend)


@pytest.fixture
def store(backend):
    return TallyStore(backend)


@pytest.fixture
def projector(backend):
    return Projector(backend)


@pytest.fixture
def selector(registry, projector):
    return CurrentStateSelector(registry, projector)


@pytest.fixture
async def seeded_run(registry, store):
    """
    Published run with 1000 trials: one game and two teams.

    Game 101: home win 550, away win 400, tie 50.
    Team NYJ: seeds 1/2/5/9 = 200/150/100/550.
    Team BUF: seeds 3/8 = 300/700, draft positions 1/12 = 10/990.
    """
    run = await registry.create_run(season=2023, trials_per_game=1000)
    game = Subject.game(101)
    nyj = Subject.team("NYJ")
    buf = Subject.team("BUF")

    await store.record_many(
        run.run_id,
        [
            (game, GameResultKey(GameResult.HOME_WIN), 550),
            (game, GameResultKey(GameResult.AWAY_WIN), 400),
            (game, GameResultKey(GameResult.TIE), 50),
            (nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 1), 200),
            (nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 2), 150),
            (nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 5), 100),
            (nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 9), 550),
            (buf, RankInSpace(RankSpace.PLAYOFF_SEED, 3), 300),
            (buf, RankInSpace(RankSpace.PLAYOFF_SEED, 8), 700),
            (buf, RankInSpace(RankSpace.DRAFT_POSITION, 1), 10),
            (buf, RankInSpace(RankSpace.DRAFT_POSITION, 12), 990),
        ],
    )
    return await registry.publish(run.run_id)


@pytest_asyncio.fixture
async def pool(monkeypatch):
    """
    Database pool with all migrations applied and empty run tables.

    Skipped when DB_DSN is not configured.
    """
    if not os.environ.get("DB_DSN"):
        pytest.skip("DB_DSN not set; skipping PostgreSQL tests")
    if not os.environ.get("ENV"):
        monkeypatch.setenv("ENV", "dev")

    from nflsim.db.pool import close_pool, get_pool
    from nflsim.db.schema.migrate import migrate

    pool = await get_pool()
    await migrate()
    async with pool.acquire() as conn:
        await conn.execute("TRUNCATE simulation_runs RESTART IDENTITY CASCADE")

    yield pool

    try:
        await asyncio.wait_for(close_pool(), timeout=10.0)
    except asyncio.TimeoutError:
        pass
