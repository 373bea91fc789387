"""Run registry: creation, publication, lookup and cascading deletion of runs."""

import logging
from datetime import datetime, timezone
from typing import Callable

from nflsim.aggregation.backend import RunRecord, TallyBackend
from nflsim.aggregation.errors import InvalidConfig, UnknownRun

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_positive_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidConfig(f"{name} must be a positive integer, got {value!r}")
    return value


class RunRegistry:
    """Creates and identifies simulation runs.

    latest_run() only sees published runs. Ingest writes every tally first and
    publishes last, so readers never pick up a run that is still being written.
    """

    def __init__(self, backend: TallyBackend, clock: Callable[[], datetime] = _utcnow):
        self._backend = backend
        self._clock = clock

    async def create_run(
        self,
        season: int,
        trials_per_game: int,
        trials_per_team: int | None = None,
    ) -> RunRecord:
        """Allocate a new, unpublished run.

        Args:
            season: Season year the run simulates
            trials_per_game: Trials behind every game tally
            trials_per_team: Trials behind every team tally (defaults to
                trials_per_game)

        Returns:
            RunRecord for the new run

        Raises:
            InvalidConfig: If a trial count is not a positive integer
        """
        if isinstance(season, bool) or not isinstance(season, int):
            raise InvalidConfig(f"season must be an integer, got {season!r}")
        trials_per_game = _require_positive_int("trials_per_game", trials_per_game)
        if trials_per_team is None:
            trials_per_team = trials_per_game
        trials_per_team = _require_positive_int("trials_per_team", trials_per_team)

        run = await self._backend.create_run(
            season=season,
            trials_per_game=trials_per_game,
            trials_per_team=trials_per_team,
            created_at=self._clock(),
        )
        logger.info(
            f"Created run {run.run_id}: season={season}, "
            f"trials_per_game={trials_per_game}, trials_per_team={trials_per_team}"
        )
        return run

    async def publish(self, run_id: int) -> RunRecord:
        """Make a fully-ingested run visible to latest_run(). Idempotent."""
        run = await self._backend.publish_run(run_id, self._clock())
        if run is None:
            raise UnknownRun(f"Run {run_id} does not exist")
        logger.info(f"Published run {run_id}")
        return run

    async def delete_run(self, run_id: int) -> bool:
        """Delete a run and all of its tallies.

        Deleting a run that does not exist is a no-op.

        Returns:
            True if a run was deleted

        Raises:
            DeletionFailed: If storage failed; no tally was removed
        """
        deleted = await self._backend.delete_run(run_id)
        if deleted:
            logger.info(f"Deleted run {run_id}")
        else:
            logger.debug(f"Run {run_id} not found, nothing to delete")
        return deleted

    async def latest_run(self, season: int | None = None) -> int | None:
        """Identifier of the most recent published run, or None."""
        return await self._backend.latest_published_run_id(season)

    async def get_run(self, run_id: int) -> RunRecord:
        run = await self._backend.get_run(run_id)
        if run is None:
            raise UnknownRun(f"Run {run_id} does not exist")
        return run

    async def list_runs(self, season: int | None = None) -> list[RunRecord]:
        return await self._backend.list_runs(season)
