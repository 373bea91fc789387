"""End-to-end tests: accumulate trials, ingest, project."""

import numpy as np
import pytest

from nflsim.aggregation import (
    AccumulatorFeed,
    MemoryBackend,
    Projector,
    RunRegistry,
    SimulationFeed,
    TallyAccumulator,
    TallyStore,
    ingest_run,
)
from nflsim.aggregation.classification import RULE_SET_V1, RULE_SET_V2
from nflsim.aggregation.errors import DeletionFailed, InvalidConfig, TallyOverflow
from nflsim.aggregation.outcomes import (
    Condition,
    GameResultKey,
    NamedCategory,
    RankInSpace,
    Subject,
)
from nflsim.db.models import GameResult, RankSpace


class StaticFeed(SimulationFeed):
    def __init__(self, season, trials, rows):
        self.season = season
        self.trials_per_game = trials
        self.trials_per_team = trials
        self._rows = rows

    def tallies(self, given=None):
        return iter(self._rows)


@pytest.fixture
def accumulator():
    acc = TallyAccumulator()
    acc.record_batch(
        game_margins={"101": np.array([7, 3, -3, 0] * 25)},
        team_ranks={
            "NYJ": {
                RankSpace.PLAYOFF_SEED: np.array([1, 5, 9, 9] * 25),
                RankSpace.DRAFT_POSITION: np.array([28, 20, 12, 11] * 25),
            }
        },
    )
    return acc


@pytest.mark.asyncio
async def test_ingest_publishes_and_projects(registry, store, projector, accumulator):
    run = await ingest_run(registry, store, AccumulatorFeed(2024, accumulator))

    assert run.is_published
    assert run.trials_per_game == run.trials_per_team == 100
    assert await registry.latest_run() == run.run_id

    game = Subject.game(101)
    nyj = Subject.team("NYJ")
    assert await projector.project(run.run_id, game, "home win") == pytest.approx(0.5)
    assert await projector.project(run.run_id, game, "tie") == pytest.approx(0.25)
    assert await projector.project(run.run_id, nyj, "division winner") == pytest.approx(0.25)
    assert await projector.project(run.run_id, nyj, "playoff team") == pytest.approx(0.5)
    assert await projector.project(run.run_id, nyj, "top 10 pick") == 0.0


@pytest.mark.asyncio
async def test_ingest_time_classification(registry, store, accumulator):
    run = await ingest_run(registry, store, AccumulatorFeed(2024, accumulator, RULE_SET_V2))

    rows = dict(await store.tallies_for(run.run_id, Subject.team("NYJ")))
    assert rows == {
        NamedCategory("division winner"): 25,
        NamedCategory("wildcard team"): 25,
        NamedCategory("playoff team"): 50,
    }


@pytest.mark.asyncio
async def test_classified_labels_project_like_raw_ranks(registry, store, projector, accumulator):
    raw = await ingest_run(registry, store, AccumulatorFeed(2024, accumulator))
    labelled = await ingest_run(registry, store, AccumulatorFeed(2024, accumulator, RULE_SET_V2))

    nyj = Subject.team("NYJ")
    for category in ("division winner", "wildcard team", "playoff team"):
        assert await projector.project(raw.run_id, nyj, category) == pytest.approx(
            await projector.project(labelled.run_id, nyj, category)
        )


@pytest.mark.asyncio
async def test_rejected_tally_removes_partial_run(registry, store):
    feed = StaticFeed(
        2024,
        10,
        [
            (Subject.game(1), GameResultKey(GameResult.HOME_WIN), 6),
            (Subject.game(1), GameResultKey(GameResult.AWAY_WIN), 6),
        ],
    )

    with pytest.raises(TallyOverflow):
        await ingest_run(registry, store, feed)

    assert await registry.list_runs() == []
    assert await registry.latest_run() is None


@pytest.mark.asyncio
async def test_ingest_without_publish(registry, store):
    feed = StaticFeed(2024, 10, [(Subject.team("BUF"), RankInSpace(RankSpace.PLAYOFF_SEED, 2), 4)])

    run = await ingest_run(registry, store, feed, publish=False)

    assert not run.is_published
    assert await registry.latest_run() is None
    assert await store.tallies_for(run.run_id, Subject.team("BUF")) == [
        (RankInSpace(RankSpace.PLAYOFF_SEED, 2), 4)
    ]


def test_feed_with_only_team_trials_borrows_denominator():
    acc = TallyAccumulator()
    acc.record_trial(team_labels={"NYJ": ["division winner"]})

    feed = AccumulatorFeed(2024, acc)
    assert feed.trials_per_team == 1
    assert feed.trials_per_game == 1


@pytest.mark.asyncio
async def test_v1_classified_run_reads_back_under_v1(backend, registry, store):
    """Seeds 1 and 5 are playoff seeds in every trial, so P(playoff team) is 1."""
    acc = TallyAccumulator()
    for seed in [1] * 6 + [5] * 4:
        acc.record_trial(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: seed}})

    run = await ingest_run(registry, store, AccumulatorFeed(2021, acc, RULE_SET_V1))

    nyj = Subject.team("NYJ")
    assert dict(await store.tallies_for(run.run_id, nyj)) == {
        NamedCategory("division winner"): 6,
        NamedCategory("wildcard team"): 4,
    }
    v1 = Projector(backend, RULE_SET_V1)
    assert await v1.project(run.run_id, nyj, "playoff team") == pytest.approx(1.0)
    assert await v1.project(run.run_id, nyj, "division winner") == pytest.approx(0.6)
    probs = await v1.probabilities(run.run_id, nyj)
    assert all(0.0 <= p <= 1.0 for p in probs.values())


class UndeletableBackend(MemoryBackend):
    async def delete_run(self, run_id):
        raise DeletionFailed(f"Could not delete run {run_id}: storage unavailable")


@pytest.mark.asyncio
async def test_failed_cleanup_keeps_original_error():
    backend = UndeletableBackend()
    registry = RunRegistry(backend)
    store = TallyStore(backend)
    feed = StaticFeed(
        2024,
        10,
        [
            (Subject.game(1), GameResultKey(GameResult.HOME_WIN), 6),
            (Subject.game(1), GameResultKey(GameResult.AWAY_WIN), 6),
        ],
    )

    with pytest.raises(TallyOverflow):
        await ingest_run(registry, store, feed)

    # The partial run is left behind, but never published
    [run] = await registry.list_runs()
    assert not run.is_published
    assert await registry.latest_run() is None
    assert await store.tallies_for(run.run_id, Subject.game(1)) == [
        (GameResultKey(GameResult.HOME_WIN), 6)
    ]


@pytest.mark.asyncio
async def test_ingest_conditioned_scenarios(registry, store, projector):
    home = Condition.of(101, GameResult.HOME_WIN)
    away = Condition.of(101, GameResult.AWAY_WIN)
    acc = TallyAccumulator()
    acc.record_batch(
        game_margins={"101": np.array([3, -3, 3, -3])},
        team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 9, 5, 9])}},
    )
    acc.record_batch(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 1, 5, 9])}}, given=home)
    acc.record_batch(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([9, 9, 9, 5])}}, given=away)

    run = await ingest_run(registry, store, AccumulatorFeed(2024, acc))

    nyj = Subject.team("NYJ")
    game = Subject.game(101)
    assert await projector.project(run.run_id, nyj, "playoff team") == pytest.approx(0.5)
    assert await projector.project(run.run_id, nyj, "playoff team", given=home) == pytest.approx(0.75)
    assert await projector.project(run.run_id, nyj, "playoff team", given=away) == pytest.approx(0.25)
    assert await projector.leverage(run.run_id, nyj, "playoff team", game) == pytest.approx(0.5)


def test_scenario_must_have_full_team_trials():
    acc = TallyAccumulator()
    acc.record_batch(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 2, 3, 4])}})
    acc.record_batch(
        team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 2])}},
        given=Condition.of(101, GameResult.HOME_WIN),
    )

    with pytest.raises(InvalidConfig, match="2 trials"):
        AccumulatorFeed(2024, acc)
