"""Current-state view: projections restricted to the latest published run."""

import logging
from typing import Iterable

from nflsim.db.models import SubjectKind

from nflsim.aggregation.backend import RunRecord
from nflsim.aggregation.errors import UnknownRun
from nflsim.aggregation.projection import GameMargin, ProjectionRow, Projector
from nflsim.aggregation.registry import RunRegistry

logger = logging.getLogger(__name__)


class CurrentStateSelector:
    """Composes the registry and projector; holds no state of its own."""

    def __init__(self, registry: RunRegistry, projector: Projector):
        self._registry = registry
        self._projector = projector

    async def current_run(self, season: int | None = None) -> RunRecord | None:
        run_id = await self._registry.latest_run(season)
        if run_id is None:
            return None
        try:
            return await self._registry.get_run(run_id)
        except UnknownRun:
            logger.info(f"Latest run {run_id} was deleted before it could be read")
            return None

    async def current_projections(
        self,
        category_filter: Iterable[str] | None = None,
        season: int | None = None,
        subject_kind: SubjectKind | None = SubjectKind.TEAM,
    ) -> list[ProjectionRow]:
        """Projections of the latest published run; empty if there is none.

        If the latest run is deleted between lookup and read, the latest run is
        resolved once more.
        """
        if category_filter is not None:
            category_filter = list(category_filter)

        for _ in range(2):
            run_id = await self._registry.latest_run(season)
            if run_id is None:
                return []
            try:
                return await self._projector.project_run(run_id, category_filter, subject_kind)
            except UnknownRun:
                logger.info(f"Latest run {run_id} was deleted mid-read, retrying")
        return []

    async def current_game_margins(self, season: int | None = None) -> list[GameMargin]:
        """Game margins of the latest published run, most uncertain first."""
        run_id = await self._registry.latest_run(season)
        if run_id is None:
            return []
        try:
            return await self._projector.games_by_margin(run_id)
        except UnknownRun:
            logger.info(f"Latest run {run_id} was deleted mid-read")
            return []
