"""Storage collaborator interface and canonical row schemas.

The engine never talks to a database directly; it goes through a
TallyBackend. Backends own atomicity of single writes and of run deletion,
and provide read snapshots that exclude a concurrent delete of the run.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime

from nflsim.db.models import SubjectKind

from nflsim.aggregation.outcomes import Condition, OutcomeKey, Subject


# Canonical row schemas
@dataclass(frozen=True)
class RunRecord:
    """One simulation batch for a season."""

    run_id: int
    season: int
    created_at: datetime  # UTC
    trials_per_game: int
    trials_per_team: int
    published_at: datetime | None = None  # UTC, None until ingest completes

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def trials_for(self, kind: SubjectKind) -> int:
        """Trial total used as the denominator for a subject kind."""
        if kind is SubjectKind.GAME:
            return self.trials_per_game
        return self.trials_per_team


@dataclass(frozen=True)
class TallyRecord:
    """Aggregated count of trials matching one outcome for one subject.

    ``given`` is None for the unconditioned season, or the forced game result
    of the scenario the team tally was simulated under.
    """

    run_id: int
    subject: Subject
    outcome_key: OutcomeKey
    count: int
    given: Condition | None = None


class RunSnapshot(ABC):
    """Consistent view of one run's tallies.

    While a snapshot is open the run cannot be deleted.
    """

    run: RunRecord

    @abstractmethod
    async def tallies(
        self,
        subject: Subject | None = None,
        kind: SubjectKind | None = None,
        given: Condition | None = None,
    ) -> list[TallyRecord]:
        """
        Fetch tallies of the run in insertion order.

        Args:
            subject: Restrict to one subject
            kind: Restrict to one subject kind
            given: Scenario to read; None reads the unconditioned tallies

        Returns:
            List of TallyRecord objects (empty if none match)
        """
        pass

    @abstractmethod
    async def conditions(self, subject: Subject | None = None) -> list[Condition]:
        """Distinct scenarios with tallies in the run, in first-seen order."""
        pass


class TallyBackend(ABC):
    """Abstract storage interface for runs and tallies."""

    @abstractmethod
    async def create_run(
        self,
        season: int,
        trials_per_game: int,
        trials_per_team: int,
        created_at: datetime,
    ) -> RunRecord:
        """
        Insert a run and allocate its identifier.

        Identifiers increase with creation order.
        """
        pass

    @abstractmethod
    async def get_run(self, run_id: int) -> RunRecord | None:
        """Fetch a run, or None if it does not exist."""
        pass

    @abstractmethod
    async def list_runs(self, season: int | None = None) -> list[RunRecord]:
        """Fetch runs in ascending identifier order."""
        pass

    @abstractmethod
    async def publish_run(self, run_id: int, published_at: datetime) -> RunRecord | None:
        """
        Mark a run visible to latest-run queries.

        Keeps the original published_at if the run was already published.

        Returns:
            The updated RunRecord, or None if the run does not exist
        """
        pass

    @abstractmethod
    async def latest_published_run_id(self, season: int | None = None) -> int | None:
        """Highest published run identifier, or None."""
        pass

    @abstractmethod
    async def delete_run(self, run_id: int) -> bool:
        """
        Atomically delete a run and all of its tallies.

        Waits for open snapshots of the run to close.

        Returns:
            True if the run existed

        Raises:
            DeletionFailed: If storage failed; nothing was deleted
        """
        pass

    @abstractmethod
    async def insert_tally(
        self,
        run_id: int,
        subject: Subject,
        outcome_key: OutcomeKey,
        count: int,
        given: Condition | None = None,
    ) -> TallyRecord:
        """
        Insert one tally row.

        Raises:
            DuplicateTally: If (run, subject, given, outcome_key) already exists
            UnknownRun: If the run does not exist
        """
        pass

    @abstractmethod
    def snapshot(self, run_id: int) -> AbstractAsyncContextManager[RunSnapshot]:
        """
        Open a consistent read snapshot of one run.

        Raises:
            UnknownRun: On entry, if the run does not exist
        """
        pass
