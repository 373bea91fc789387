"""Per-trial tallying for a simulation batch.

The accumulator folds each simulated season into counters as it arrives and
keeps no per-trial records. Trial totals are tracked per subject kind, since
game-level and team-level trials may be counted independently.
"""

import operator
from collections import Counter
from typing import Iterable, Iterator, Mapping

import numpy as np
from numpy.typing import ArrayLike

from nflsim.db.models import GameResult, RankSpace, SubjectKind

from nflsim.aggregation.outcomes import (
    Condition,
    GameResultKey,
    NamedCategory,
    OutcomeKey,
    RankInSpace,
    Subject,
)


def game_results_from_margins(margins: ArrayLike) -> dict[GameResult, int]:
    """Count results from home-minus-away score margins (one per trial)."""
    signs = np.sign(np.asarray(margins))
    return {
        GameResult.HOME_WIN: int(np.sum(signs > 0)),
        GameResult.AWAY_WIN: int(np.sum(signs < 0)),
        GameResult.TIE: int(np.sum(signs == 0)),
    }


def rank_counts(ranks: ArrayLike) -> dict[int, int]:
    """Count occurrences of each rank in an array of finishing positions."""
    values = np.asarray(ranks)
    if values.size == 0:
        return {}
    if not np.issubdtype(values.dtype, np.integer):
        raise ValueError(f"ranks must be integers, got dtype {values.dtype}")
    if values.min() < 1:
        raise ValueError("ranks must be >= 1")
    unique, counts = np.unique(values, return_counts=True)
    return {int(rank): int(count) for rank, count in zip(unique, counts)}


class TallyAccumulator:
    """Cumulative outcome counters for one simulation batch.

    Trials simulated under a forced game result are counted separately per
    ``Condition``; only team outcomes are kept for them.
    """

    def __init__(self) -> None:
        self._counts: Counter[tuple[Condition | None, Subject, OutcomeKey]] = Counter()
        self._trials: Counter[tuple[SubjectKind, Condition | None]] = Counter()

    def trials(self, kind: SubjectKind, given: Condition | None = None) -> int:
        """Number of trials folded in for a subject kind (and scenario)."""
        return self._trials[(kind, given)]

    def conditions(self) -> list[Condition]:
        """Scenarios with recorded trials, in first-seen order."""
        return [given for kind, given in self._trials if given is not None]

    def _check_scenario(self, given: Condition | None, has_games: bool) -> None:
        if given is not None and has_games:
            raise ValueError(f"Trials given {given} record team outcomes only")

    def record_trial(
        self,
        game_results: Mapping[str, GameResult] | None = None,
        team_ranks: Mapping[str, Mapping[RankSpace, int]] | None = None,
        team_labels: Mapping[str, Iterable[str]] | None = None,
        given: Condition | None = None,
    ) -> None:
        """Fold one simulated season into the counters.

        Args:
            game_results: game_id → simulated result
            team_ranks: team_id → {rank-space: finishing rank}
            team_labels: team_id → labels the team earned in this trial
            given: Scenario the trial was simulated under

        Raises:
            ValueError: On an unknown result, rank-space or rank; the counters
                are left unchanged
        """
        self._check_scenario(given, bool(game_results))

        # Build the whole trial first so a bad value leaves the counters unchanged.
        trial: Counter[tuple[Condition | None, Subject, OutcomeKey]] = Counter()
        for game_id, result in (game_results or {}).items():
            trial[(given, Subject.game(game_id), GameResultKey(GameResult(result)))] += 1
        for team_id, ranks in (team_ranks or {}).items():
            subject = Subject.team(team_id)
            for space, rank in ranks.items():
                trial[(given, subject, RankInSpace(RankSpace(space), operator.index(rank)))] += 1
        for team_id, labels in (team_labels or {}).items():
            for label in labels:
                trial[(given, Subject.team(team_id), NamedCategory(label))] += 1

        self._counts.update(trial)
        if game_results:
            self._trials[(SubjectKind.GAME, given)] += 1
        if team_ranks or team_labels:
            self._trials[(SubjectKind.TEAM, given)] += 1

    def record_batch(
        self,
        game_margins: Mapping[str, ArrayLike] | None = None,
        team_ranks: Mapping[str, Mapping[RankSpace, ArrayLike]] | None = None,
        given: Condition | None = None,
    ) -> int:
        """Fold a vectorized batch of trials into the counters.

        Every array holds one value per trial and all arrays must share the
        same length.

        Args:
            game_margins: game_id → home-minus-away score margins
            team_ranks: team_id → {rank-space: finishing ranks}
            given: Scenario the batch was simulated under

        Returns:
            Number of trials in the batch

        Raises:
            ValueError: If array lengths differ or ranks are not positive integers
        """
        game_margins = game_margins or {}
        team_ranks = team_ranks or {}
        self._check_scenario(given, bool(game_margins))

        lengths = {len(np.asarray(m)) for m in game_margins.values()}
        for ranks in team_ranks.values():
            lengths.update(len(np.asarray(r)) for r in ranks.values())
        if not lengths:
            return 0
        if len(lengths) > 1:
            raise ValueError(f"All trial arrays must have the same length, got {sorted(lengths)}")
        n = lengths.pop()

        # Count the whole batch before touching the counters so a bad array
        # leaves them unchanged.
        batch: Counter[tuple[Condition | None, Subject, OutcomeKey]] = Counter()
        for game_id, margins in game_margins.items():
            subject = Subject.game(game_id)
            for result, count in game_results_from_margins(margins).items():
                if count:
                    batch[(given, subject, GameResultKey(result))] += count

        for team_id, ranks_by_space in team_ranks.items():
            subject = Subject.team(team_id)
            for space, ranks in ranks_by_space.items():
                for rank, count in rank_counts(ranks).items():
                    batch[(given, subject, RankInSpace(RankSpace(space), rank))] += count

        self._counts.update(batch)
        if game_margins:
            self._trials[(SubjectKind.GAME, given)] += n
        if team_ranks:
            self._trials[(SubjectKind.TEAM, given)] += n
        return n

    def tallies(self, given: Condition | None = None) -> Iterator[tuple[Subject, OutcomeKey, int]]:
        """Yield (subject, outcome_key, count) of one scenario in first-seen order."""
        for (condition, subject, key), count in self._counts.items():
            if condition == given:
                yield subject, key, count

    def __len__(self) -> int:
        return len(self._counts)
