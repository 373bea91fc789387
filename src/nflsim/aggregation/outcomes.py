"""Subjects and outcome keys.

An outcome key is a tagged variant so that storage never bakes in one
revision of the category scheme:

- ``GameResultKey``: home win / away win / tie for a game subject
- ``RankInSpace``: a bare finishing rank within a named rank-space
- ``NamedCategory``: a label that was classified before ingest

Team tallies may also carry a ``Condition``: the scenario in which one game
was forced to a given result before the rest of the season was simulated.

The classification engine is the only place that translates between ranks
and labels.
"""

from dataclasses import dataclass
from typing import Union

from nflsim.db.models import GameResult, OutcomeKind, RankSpace, SubjectKind

from nflsim.aggregation.errors import InvalidTally


@dataclass(frozen=True)
class Subject:
    """A game or a team, referenced only by its external identifier."""

    kind: SubjectKind
    subject_id: str

    @classmethod
    def game(cls, game_id: int | str) -> "Subject":
        return cls(SubjectKind.GAME, str(game_id))

    @classmethod
    def team(cls, team_id: int | str) -> "Subject":
        return cls(SubjectKind.TEAM, str(team_id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.subject_id}"


@dataclass(frozen=True)
class GameResultKey:
    """Result of a simulated game."""

    result: GameResult

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.GAME_RESULT


@dataclass(frozen=True)
class RankInSpace:
    """Finishing rank (1 = best / first) within a rank-space."""

    space: RankSpace
    rank: int

    def __post_init__(self) -> None:
        if isinstance(self.rank, bool) or not isinstance(self.rank, int) or self.rank < 1:
            raise InvalidTally(f"rank must be a positive integer, got {self.rank!r}")

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.RANK


@dataclass(frozen=True)
class NamedCategory:
    """Pre-classified discrete label (e.g. 'division winner')."""

    label: str

    def __post_init__(self) -> None:
        if not self.label:
            raise InvalidTally("category label must be non-empty")

    @property
    def kind(self) -> OutcomeKind:
        return OutcomeKind.CATEGORY


OutcomeKey = Union[GameResultKey, RankInSpace, NamedCategory]


@dataclass(frozen=True)
class Condition:
    """Scenario a team tally was simulated under: one game forced to a result."""

    game: Subject
    result: GameResult

    def __post_init__(self) -> None:
        if self.game.kind is not SubjectKind.GAME:
            raise InvalidTally(f"A condition must name a game, got {self.game}")
        try:
            object.__setattr__(self, "result", GameResult(self.result))
        except ValueError:
            raise InvalidTally(f"Unknown game result: {self.result!r}") from None

    @classmethod
    def of(cls, game_id: int | str, result: GameResult | str) -> "Condition":
        return cls(Subject.game(game_id), result)

    def __str__(self) -> str:
        return f"{self.game}={self.result.value}"


def as_condition(given: "Condition | tuple[Subject, GameResult] | None") -> Condition | None:
    """Accept a Condition or a (game, result) pair."""
    if given is None or isinstance(given, Condition):
        return given
    game, result = given
    return Condition(game, result)


def encode_condition(given: Condition | None) -> tuple[str, str]:
    """Encode a condition as (given_game_id, given_result) columns; '' when absent."""
    if given is None:
        return "", ""
    return given.game.subject_id, given.result.value


def decode_condition(given_game_id: str, given_result: str) -> Condition | None:
    """Inverse of encode_condition()."""
    if not given_game_id:
        return None
    return Condition.of(given_game_id, given_result)


def subject_kind_for(key: OutcomeKey) -> SubjectKind:
    """Subject kind an outcome key may be recorded against."""
    if isinstance(key, GameResultKey):
        return SubjectKind.GAME
    return SubjectKind.TEAM


def exclusive_group(key: OutcomeKey) -> str:
    """Name of the mutually-exclusive outcome set the key belongs to.

    Counts within one group sum to at most the run's trial total. Named labels
    may overlap with each other, so each label is a group of its own.
    """
    if isinstance(key, GameResultKey):
        return OutcomeKind.GAME_RESULT.value
    if isinstance(key, RankInSpace):
        return f"{OutcomeKind.RANK.value}:{key.space.value}"
    return f"{OutcomeKind.CATEGORY.value}:{key.label}"


def encode_outcome_key(key: OutcomeKey) -> tuple[str, str, int]:
    """Encode an outcome key as (outcome_kind, outcome_value, rank) columns.

    rank is 0 for keys that carry no rank so the unique constraint on the
    tallies table also covers them.
    """
    if isinstance(key, GameResultKey):
        return OutcomeKind.GAME_RESULT.value, key.result.value, 0
    if isinstance(key, RankInSpace):
        return OutcomeKind.RANK.value, key.space.value, key.rank
    if isinstance(key, NamedCategory):
        return OutcomeKind.CATEGORY.value, key.label, 0
    raise InvalidTally(f"Unsupported outcome key: {key!r}")


def decode_outcome_key(outcome_kind: str, outcome_value: str, rank: int) -> OutcomeKey:
    """Inverse of encode_outcome_key()."""
    kind = OutcomeKind(outcome_kind)
    if kind is OutcomeKind.GAME_RESULT:
        return GameResultKey(GameResult(outcome_value))
    if kind is OutcomeKind.RANK:
        return RankInSpace(RankSpace(outcome_value), rank)
    return NamedCategory(outcome_value)


def subject_sort_key(subject: Subject) -> tuple:
    """Order subjects by kind, then identifier (numeric identifiers numerically)."""
    sid = subject.subject_id
    if sid.isdigit():
        return (subject.kind.value, 0, int(sid), sid)
    return (subject.kind.value, 1, 0, sid)
