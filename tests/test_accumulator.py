"""Unit tests for per-trial tallying."""

import numpy as np
import pytest

from nflsim.aggregation.accumulator import (
    TallyAccumulator,
    game_results_from_margins,
    rank_counts,
)
from nflsim.aggregation.outcomes import (
    Condition,
    GameResultKey,
    NamedCategory,
    RankInSpace,
    Subject,
)
from nflsim.db.models import GameResult, RankSpace, SubjectKind


def as_dict(acc: TallyAccumulator) -> dict:
    return {(subject, key): count for subject, key, count in acc.tallies()}


def test_game_results_from_margins():
    margins = np.array([3, -7, 0, 10, -1, 0])
    assert game_results_from_margins(margins) == {
        GameResult.HOME_WIN: 2,
        GameResult.AWAY_WIN: 2,
        GameResult.TIE: 2,
    }


def test_rank_counts():
    assert rank_counts(np.array([1, 3, 3, 1, 1])) == {1: 3, 3: 2}
    assert rank_counts(np.array([], dtype=int)) == {}


def test_rank_counts_rejects_bad_ranks():
    with pytest.raises(ValueError, match=">= 1"):
        rank_counts(np.array([0, 1]))
    with pytest.raises(ValueError, match="integers"):
        rank_counts(np.array([1.5, 2.0]))


def test_record_trial_counts_without_keeping_trials():
    acc = TallyAccumulator()
    for result, seed in [(GameResult.HOME_WIN, 1), (GameResult.HOME_WIN, 2), (GameResult.TIE, 1)]:
        acc.record_trial(
            game_results={"101": result},
            team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: seed}},
        )

    counts = as_dict(acc)
    assert counts[(Subject.game(101), GameResultKey(GameResult.HOME_WIN))] == 2
    assert counts[(Subject.game(101), GameResultKey(GameResult.TIE))] == 1
    assert counts[(Subject.team("NYJ"), RankInSpace(RankSpace.PLAYOFF_SEED, 1))] == 2
    assert acc.trials(SubjectKind.GAME) == 3
    assert acc.trials(SubjectKind.TEAM) == 3


def test_record_trial_with_labels():
    acc = TallyAccumulator()
    acc.record_trial(team_labels={"NYJ": ["division winner"], "BUF": []})
    acc.record_trial(team_labels={"NYJ": ["division winner"], "BUF": ["wildcard team"]})

    counts = as_dict(acc)
    assert counts[(Subject.team("NYJ"), NamedCategory("division winner"))] == 2
    assert counts[(Subject.team("BUF"), NamedCategory("wildcard team"))] == 1
    assert acc.trials(SubjectKind.TEAM) == 2
    assert acc.trials(SubjectKind.GAME) == 0


def test_record_trial_accepts_numpy_ranks():
    acc = TallyAccumulator()
    acc.record_trial(team_ranks={"NYJ": {RankSpace.DRAFT_POSITION: np.int64(4)}})
    assert as_dict(acc) == {(Subject.team("NYJ"), RankInSpace(RankSpace.DRAFT_POSITION, 4)): 1}


def test_record_batch():
    acc = TallyAccumulator()
    n = acc.record_batch(
        game_margins={"7": np.array([1, 2, -3, 0])},
        team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 1, 4, 9])}},
    )

    assert n == 4
    counts = as_dict(acc)
    assert counts[(Subject.game(7), GameResultKey(GameResult.HOME_WIN))] == 2
    assert counts[(Subject.game(7), GameResultKey(GameResult.AWAY_WIN))] == 1
    assert counts[(Subject.game(7), GameResultKey(GameResult.TIE))] == 1
    assert counts[(Subject.team("NYJ"), RankInSpace(RankSpace.PLAYOFF_SEED, 1))] == 2
    assert acc.trials(SubjectKind.GAME) == 4
    assert acc.trials(SubjectKind.TEAM) == 4


def test_record_batch_sums_match_trials():
    """Every complete outcome set sums to the trial count."""
    rng = np.random.default_rng(7)
    acc = TallyAccumulator()
    for _ in range(3):
        acc.record_batch(
            game_margins={str(g): rng.integers(-14, 15, size=500) for g in range(5)},
            team_ranks={
                team: {RankSpace.PLAYOFF_SEED: rng.integers(1, 17, size=500)}
                for team in ("NYJ", "BUF", "MIA")
            },
        )

    sums: dict[Subject, int] = {}
    for subject, _key, count in acc.tallies():
        sums[subject] = sums.get(subject, 0) + count

    for subject, total in sums.items():
        assert total == acc.trials(subject.kind) == 1500


def test_record_batch_length_mismatch_leaves_counters_unchanged():
    acc = TallyAccumulator()
    with pytest.raises(ValueError, match="same length"):
        acc.record_batch(
            game_margins={"1": np.array([1, 2, 3])},
            team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([1, 2])}},
        )
    assert len(acc) == 0
    assert acc.trials(SubjectKind.GAME) == 0


def test_record_batch_bad_ranks_leave_counters_unchanged():
    acc = TallyAccumulator()
    with pytest.raises(ValueError):
        acc.record_batch(
            game_margins={"1": np.array([1, -1])},
            team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([0, 2])}},
        )
    assert len(acc) == 0


def test_empty_batch():
    acc = TallyAccumulator()
    assert acc.record_batch() == 0
    assert acc.trials(SubjectKind.TEAM) == 0


def test_record_trial_bad_result_leaves_counters_unchanged():
    acc = TallyAccumulator()
    with pytest.raises(ValueError):
        acc.record_trial(
            game_results={"1": GameResult.HOME_WIN, "2": "bogus"},
            team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 1}},
        )
    assert len(acc) == 0
    assert acc.trials(SubjectKind.GAME) == 0
    assert acc.trials(SubjectKind.TEAM) == 0


def test_record_trial_bad_rank_leaves_counters_unchanged():
    acc = TallyAccumulator()
    acc.record_trial(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 2}})
    with pytest.raises(ValueError):
        acc.record_trial(
            game_results={"1": GameResult.TIE},
            team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 1}, "BUF": {RankSpace.PLAYOFF_SEED: 0}},
        )
    assert as_dict(acc) == {(Subject.team("NYJ"), RankInSpace(RankSpace.PLAYOFF_SEED, 2)): 1}
    assert acc.trials(SubjectKind.TEAM) == 1
    assert acc.trials(SubjectKind.GAME) == 0


def test_conditioned_trials_are_counted_apart():
    home = Condition.of(101, GameResult.HOME_WIN)
    away = Condition.of(101, GameResult.AWAY_WIN)
    acc = TallyAccumulator()
    acc.record_trial(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 3}})
    acc.record_trial(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 1}}, given=home)
    acc.record_trial(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: 1}}, given=home)
    acc.record_batch(team_ranks={"NYJ": {RankSpace.PLAYOFF_SEED: np.array([9, 9])}}, given=away)

    nyj = Subject.team("NYJ")
    assert as_dict(acc) == {(nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 3)): 1}
    assert list(acc.tallies(home)) == [(nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 1), 2)]
    assert list(acc.tallies(away)) == [(nyj, RankInSpace(RankSpace.PLAYOFF_SEED, 9), 2)]
    assert acc.conditions() == [home, away]
    assert acc.trials(SubjectKind.TEAM) == 1
    assert acc.trials(SubjectKind.TEAM, home) == 2


def test_conditioned_trials_record_team_outcomes_only():
    acc = TallyAccumulator()
    with pytest.raises(ValueError, match="team outcomes only"):
        acc.record_trial(
            game_results={"102": GameResult.TIE},
            given=Condition.of(101, GameResult.HOME_WIN),
        )
    assert len(acc) == 0
