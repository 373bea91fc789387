"""Simulator feed interface and the run ingest pipeline.

Ingest writes every tally of a batch and publishes the run last. Any
aggregation error aborts the ingest and removes the partial run.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from nflsim.db.models import SubjectKind

from nflsim.aggregation.accumulator import TallyAccumulator
from nflsim.aggregation.backend import RunRecord
from nflsim.aggregation.classification import RuleSet, classify_tallies
from nflsim.aggregation.errors import AggregationError, DeletionFailed, InvalidConfig
from nflsim.aggregation.outcomes import Condition, OutcomeKey, Subject
from nflsim.aggregation.registry import RunRegistry
from nflsim.aggregation.tallies import TallyStore

logger = logging.getLogger(__name__)


class SimulationFeed(ABC):
    """Abstract source of one simulation batch's aggregated results."""

    season: int
    trials_per_game: int
    trials_per_team: int

    @abstractmethod
    def tallies(self, given: Condition | None = None) -> Iterable[tuple[Subject, OutcomeKey, int]]:
        """
        Aggregated results of the batch.

        Args:
            given: Scenario to read; None reads the unconditioned season

        Returns:
            Iterable of (subject, outcome_key, count) triples
        """
        pass

    def conditions(self) -> Iterable[Condition]:
        """Scenarios the batch also simulated. None by default."""
        return ()


class AccumulatorFeed(SimulationFeed):
    """Feed backed by a TallyAccumulator.

    With a rule set, rank tallies are classified into category tallies at
    ingest time instead of being stored raw.
    """

    def __init__(
        self,
        season: int,
        accumulator: TallyAccumulator,
        rule_set: RuleSet | None = None,
    ):
        self.season = season
        self.trials_per_game = accumulator.trials(SubjectKind.GAME)
        self.trials_per_team = accumulator.trials(SubjectKind.TEAM)
        self._accumulator = accumulator
        self._rule_set = rule_set

        # A batch with no games (or no teams) still needs a valid denominator
        if not self.trials_per_game:
            self.trials_per_game = self.trials_per_team
        if not self.trials_per_team:
            self.trials_per_team = self.trials_per_game

        for given in accumulator.conditions():
            trials = accumulator.trials(SubjectKind.TEAM, given)
            if trials != self.trials_per_team:
                raise InvalidConfig(
                    f"Scenario {given} has {trials} trials; every scenario needs "
                    f"the run's {self.trials_per_team} team trials"
                )

    def tallies(self, given: Condition | None = None) -> Iterable[tuple[Subject, OutcomeKey, int]]:
        if self._rule_set is None:
            return self._accumulator.tallies(given)
        return classify_tallies(self._accumulator.tallies(given), self._rule_set)

    def conditions(self) -> Iterable[Condition]:
        return self._accumulator.conditions()


async def ingest_run(
    registry: RunRegistry,
    store: TallyStore,
    feed: SimulationFeed,
    publish: bool = True,
) -> RunRecord:
    """Create a run from a feed, record all of its tallies, then publish it.

    Args:
        registry: Run registry
        store: Tally store
        feed: Aggregated simulation batch
        publish: Publish the run once every tally is written

    Returns:
        RunRecord of the ingested run

    Raises:
        InvalidConfig: If the feed's trial counts are not positive
        AggregationError: If any tally is rejected; the run is deleted first.
            If that deletion fails too, the run stays unpublished and the
            original error is still the one raised.
    """
    run = await registry.create_run(
        season=feed.season,
        trials_per_game=feed.trials_per_game,
        trials_per_team=feed.trials_per_team,
    )

    try:
        recorded = await store.record_many(run.run_id, feed.tallies())
        for given in feed.conditions():
            recorded += await store.record_many(run.run_id, feed.tallies(given), given=given)
    except AggregationError as e:
        logger.error(f"Ingest of run {run.run_id} aborted: {e}")
        try:
            await registry.delete_run(run.run_id)
        except DeletionFailed as cleanup_error:
            logger.error(
                f"Could not remove partial run {run.run_id}, leaving it unpublished: "
                f"{cleanup_error}"
            )
        raise

    logger.info(f"Ingested {recorded} tallies into run {run.run_id}")

    if publish:
        run = await registry.publish(run.run_id)
    return run
