"""Read-time probability projection.

probability = (sum of counts whose outcome key satisfies the category)
              / (run's trial total for the subject kind)

Nothing here is persisted; every call recomputes from the raw tallies under
the projector's current rule set.

Team probabilities can also be read within a scenario (one game forced to a
result). The leverage of a game on a team category is
P(category | home win) - P(category | away win).
"""

from dataclasses import dataclass
from typing import Iterable

from nflsim.db.models import GameResult, SubjectKind

from nflsim.aggregation.backend import RunRecord, TallyBackend, TallyRecord
from nflsim.aggregation.classification import DEFAULT_RULE_SET, RuleSet
from nflsim.aggregation.errors import InvalidTally, NoTallies, UnknownCategory
from nflsim.aggregation.outcomes import Condition, Subject, as_condition, subject_sort_key


@dataclass(frozen=True)
class ProjectionRow:
    """Derived probability of one category for one subject in one run."""

    run_id: int
    subject: Subject
    category: str
    probability: float
    margin: float | None = None  # game subjects only


@dataclass(frozen=True)
class GameMargin:
    """Result probabilities of one game and the home/away gap."""

    run_id: int
    game: Subject
    p_home_win: float
    p_away_win: float
    p_tie: float

    @property
    def margin(self) -> float:
        return abs(self.p_home_win - self.p_away_win)


@dataclass(frozen=True)
class GameLeverage:
    """How much one game's result moves a team's chance of a category."""

    run_id: int
    team: Subject
    game: Subject
    category: str
    p_home_win: float  # P(category | game is a home win)
    p_away_win: float  # P(category | game is an away win)

    @property
    def leverage(self) -> float:
        return self.p_home_win - self.p_away_win


def _probabilities(
    rule_set: RuleSet,
    run: RunRecord,
    kind: SubjectKind,
    rows: Iterable[TallyRecord],
) -> dict[str, float]:
    total = run.trials_for(kind)
    counts = {category: 0 for category in rule_set.categories_for(kind)}
    for row in rows:
        for category in rule_set.classify(row.outcome_key):
            if category in counts:
                counts[category] += row.count
    return {category: count / total for category, count in counts.items()}


def _margin(probabilities: dict[str, float]) -> float:
    return abs(
        probabilities[GameResult.HOME_WIN.value] - probabilities[GameResult.AWAY_WIN.value]
    )


class Projector:
    """Computes category probabilities and game margins from tallies."""

    def __init__(self, backend: TallyBackend, rule_set: RuleSet = DEFAULT_RULE_SET):
        self._backend = backend
        self.rule_set = rule_set

    def use_rule_set(self, rule_set: RuleSet) -> None:
        """Swap the rule set; every later read is classified under it."""
        self.rule_set = rule_set

    def _check_category(self, kind: SubjectKind, category: str) -> None:
        rule_set = self.rule_set
        if category not in rule_set.categories_for(kind):
            raise UnknownCategory(
                f"Category '{category}' is not defined for {kind.value} subjects "
                f"by rule set {rule_set.version}"
            )

    async def _subject_tallies(
        self,
        run_id: int,
        subject: Subject,
        given: Condition | None = None,
    ) -> tuple[RunRecord, list[TallyRecord]]:
        if given is not None and subject.kind is not SubjectKind.TEAM:
            raise InvalidTally(f"Only team tallies can be conditioned, got {subject} given {given}")
        async with self._backend.snapshot(run_id) as snap:
            rows = await snap.tallies(subject=subject, given=given)
            run = snap.run
        if not rows:
            scenario = f" given {given}" if given else ""
            raise NoTallies(f"No tallies for {subject}{scenario} in run {run_id}")
        return run, rows

    async def project(
        self,
        run_id: int,
        subject: Subject,
        category: str,
        given: Condition | tuple[Subject, GameResult] | None = None,
    ) -> float:
        """Probability that ``subject`` finished in ``category`` in the run.

        Returns 0.0 when the subject has tallies but none satisfy the category.

        Args:
            run_id: Run to read
            subject: Game or team
            category: Category applicable to the subject's kind
            given: Optional (game, result) scenario, for team subjects

        Raises:
            UnknownCategory: If the category does not apply to the subject's kind
                under the rule set
            InvalidTally: If a scenario is given for a game subject
            UnknownRun: If the run does not exist
            NoTallies: If the subject has no tallies in the run (or scenario)
        """
        rule_set = self.rule_set
        self._check_category(subject.kind, category)
        run, rows = await self._subject_tallies(run_id, subject, as_condition(given))
        matching = sum(row.count for row in rows if category in rule_set.classify(row.outcome_key))
        return matching / run.trials_for(subject.kind)

    async def probabilities(
        self,
        run_id: int,
        subject: Subject,
        given: Condition | tuple[Subject, GameResult] | None = None,
    ) -> dict[str, float]:
        """Probability of every category applicable to the subject's kind."""
        run, rows = await self._subject_tallies(run_id, subject, as_condition(given))
        return _probabilities(self.rule_set, run, subject.kind, rows)

    async def leverage(self, run_id: int, team: Subject, category: str, game: Subject) -> float:
        """P(category | home win) - P(category | away win) for a team and a game.

        Raises:
            UnknownCategory: If the category is not a team category
            NoTallies: If either scenario was not simulated for the team
        """
        if team.kind is not SubjectKind.TEAM:
            raise InvalidTally(f"Leverage is only defined for teams, got {team}")
        self._check_category(SubjectKind.TEAM, category)
        p_home = await self.project(run_id, team, category, given=(game, GameResult.HOME_WIN))
        p_away = await self.project(run_id, team, category, given=(game, GameResult.AWAY_WIN))
        return p_home - p_away

    async def swing_games(self, run_id: int, team: Subject, category: str) -> list[GameLeverage]:
        """Games simulated both ways for a team, largest absolute leverage first.

        Games with only one of the two scenarios recorded are skipped.
        """
        if team.kind is not SubjectKind.TEAM:
            raise InvalidTally(f"Leverage is only defined for teams, got {team}")
        self._check_category(SubjectKind.TEAM, category)
        rule_set = self.rule_set

        async with self._backend.snapshot(run_id) as snap:
            run = snap.run
            by_condition = {
                given: await snap.tallies(subject=team, given=given)
                for given in await snap.conditions(subject=team)
            }

        def p(rows: list[TallyRecord]) -> float:
            return _probabilities(rule_set, run, SubjectKind.TEAM, rows)[category]

        games = []
        for given in by_condition:
            if given.result is not GameResult.HOME_WIN:
                continue
            away = by_condition.get(Condition(given.game, GameResult.AWAY_WIN))
            if away is None:
                continue
            games.append(
                GameLeverage(
                    run_id=run_id,
                    team=team,
                    game=given.game,
                    category=category,
                    p_home_win=p(by_condition[given]),
                    p_away_win=p(away),
                )
            )
        return sorted(games, key=lambda g: (-abs(g.leverage), subject_sort_key(g.game)))

    async def margin(self, run_id: int, game: Subject) -> float:
        """|P(home win) - P(away win)| for a game subject."""
        if game.kind is not SubjectKind.GAME:
            raise InvalidTally(f"Margin is only defined for games, got {game}")
        return _margin(await self.probabilities(run_id, game))

    async def project_run(
        self,
        run_id: int,
        category_filter: Iterable[str] | None = None,
        subject_kind: SubjectKind | None = None,
    ) -> list[ProjectionRow]:
        """Project every subject of a run in one consistent read.

        Rows are ordered by subject kind, subject identifier, then category
        (rank-space, then rank threshold). Game rows carry the game margin.

        Raises:
            UnknownCategory: If the filter names a category outside the vocabulary
            UnknownRun: If the run does not exist
        """
        rule_set = self.rule_set
        wanted = None
        if category_filter is not None:
            wanted = set(category_filter)
            unknown = wanted - rule_set.vocabulary
            if unknown:
                raise UnknownCategory(
                    f"Categories {sorted(unknown)} are not defined by rule set {rule_set.version}"
                )

        async with self._backend.snapshot(run_id) as snap:
            run = snap.run
            rows = await snap.tallies(kind=subject_kind)

        by_subject: dict[Subject, list[TallyRecord]] = {}
        for row in rows:
            by_subject.setdefault(row.subject, []).append(row)

        projections = []
        for subject in sorted(by_subject, key=subject_sort_key):
            probs = _probabilities(rule_set, run, subject.kind, by_subject[subject])
            margin = _margin(probs) if subject.kind is SubjectKind.GAME else None
            for category in sorted(probs, key=rule_set.category_sort_key):
                if wanted is not None and category not in wanted:
                    continue
                projections.append(
                    ProjectionRow(run_id, subject, category, probs[category], margin)
                )
        return projections

    async def games_by_margin(self, run_id: int) -> list[GameMargin]:
        """Games of a run, most uncertain (smallest margin) first."""
        async with self._backend.snapshot(run_id) as snap:
            run = snap.run
            rows = await snap.tallies(kind=SubjectKind.GAME)

        by_game: dict[Subject, list[TallyRecord]] = {}
        for row in rows:
            by_game.setdefault(row.subject, []).append(row)

        margins = []
        for game, game_rows in by_game.items():
            probs = _probabilities(self.rule_set, run, SubjectKind.GAME, game_rows)
            margins.append(
                GameMargin(
                    run_id=run_id,
                    game=game,
                    p_home_win=probs[GameResult.HOME_WIN.value],
                    p_away_win=probs[GameResult.AWAY_WIN.value],
                    p_tie=probs[GameResult.TIE.value],
                )
            )
        return sorted(margins, key=lambda m: (m.margin, subject_sort_key(m.game)))
