"""Write-once tally store.

A tally is the result of a completed aggregation pass, not an incremental
counter: every (run, subject, given, outcome_key) is written exactly once.
"""

import logging
from typing import Iterable

from nflsim.db.models import SubjectKind

from nflsim.aggregation.backend import TallyBackend, TallyRecord
from nflsim.aggregation.errors import DuplicateTally, InvalidTally, TallyOverflow, UnknownRun
from nflsim.aggregation.outcomes import (
    Condition,
    OutcomeKey,
    Subject,
    exclusive_group,
    subject_kind_for,
)

logger = logging.getLogger(__name__)


class TallyStore:
    """Records and reads aggregated outcome counts."""

    def __init__(self, backend: TallyBackend):
        self._backend = backend

    async def record(
        self,
        run_id: int,
        subject: Subject,
        outcome_key: OutcomeKey,
        count: int,
        given: Condition | None = None,
    ) -> TallyRecord:
        """Record one tally.

        A conditioned tally belongs to the scenario in which ``given.game``
        was forced to ``given.result``. Each scenario is simulated for the
        run's full team trial total, so it is checked against that total.

        Raises:
            InvalidTally: Negative/non-integer count, a key of the wrong subject
                kind, or a condition on a game subject
            UnknownRun: If the run does not exist
            DuplicateTally: If the tally was already recorded
            TallyOverflow: If the count, or the sum of its exclusive group,
                exceeds the run's trial total for the subject kind
        """
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise InvalidTally(f"count must be a non-negative integer, got {count!r}")
        if subject_kind_for(outcome_key) is not subject.kind:
            raise InvalidTally(f"Outcome {outcome_key} cannot be recorded for {subject}")
        if given is not None and subject.kind is not SubjectKind.TEAM:
            raise InvalidTally(f"Only team tallies can be conditioned, got {subject} given {given}")

        async with self._backend.snapshot(run_id) as snap:
            total = snap.run.trials_for(subject.kind)
            existing = await snap.tallies(subject=subject, given=given)

        scenario = f" given {given}" if given else ""
        if any(row.outcome_key == outcome_key for row in existing):
            raise DuplicateTally(
                f"Tally already recorded for run {run_id}, {subject}, {outcome_key}{scenario}"
            )
        if count > total:
            raise TallyOverflow(
                f"Count {count} for {subject} {outcome_key}{scenario} exceeds "
                f"{total} trials in run {run_id}"
            )

        group = exclusive_group(outcome_key)
        group_sum = count + sum(
            row.count for row in existing if exclusive_group(row.outcome_key) == group
        )
        if group_sum > total:
            raise TallyOverflow(
                f"Outcomes '{group}' for {subject}{scenario} sum to {group_sum}, "
                f"exceeding {total} trials in run {run_id}"
            )

        return await self._backend.insert_tally(run_id, subject, outcome_key, count, given)

    async def record_many(
        self,
        run_id: int,
        rows: Iterable[tuple[Subject, OutcomeKey, int]],
        given: Condition | None = None,
    ) -> int:
        """Record tallies in order, stopping at the first failure.

        Returns:
            Number of tallies recorded
        """
        recorded = 0
        for subject, outcome_key, count in rows:
            await self.record(run_id, subject, outcome_key, count, given)
            recorded += 1
        logger.debug(f"Recorded {recorded} tallies for run {run_id}")
        return recorded

    async def total_trials(self, run_id: int, subject_kind: SubjectKind) -> int:
        """Configured trial total for a subject kind within the run."""
        run = await self._backend.get_run(run_id)
        if run is None:
            raise UnknownRun(f"Run {run_id} does not exist")
        return run.trials_for(subject_kind)

    async def tallies_for(
        self,
        run_id: int,
        subject: Subject,
        given: Condition | None = None,
    ) -> list[tuple[OutcomeKey, int]]:
        """Raw (outcome_key, count) pairs for a subject, in insertion order."""
        async with self._backend.snapshot(run_id) as snap:
            rows = await snap.tallies(subject=subject, given=given)
        return [(row.outcome_key, row.count) for row in rows]
