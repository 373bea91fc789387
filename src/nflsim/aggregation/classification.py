"""Classification of finishing ranks into named outcome categories.

Rules are independent threshold predicates over one rank-space. A rank is
checked against every rule of its space, so categories overlap: seed 3
is both a division winner and a playoff team.

Rule sets are static, versioned configuration. Nothing here caches a
rank-to-category fan-out, so swapping the rule set reclassifies every run on
its next read.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping

from nflsim.db.models import Category, GameResult, RankSpace, SubjectKind

from nflsim.aggregation.errors import InvalidConfig
from nflsim.aggregation.outcomes import (
    GameResultKey,
    NamedCategory,
    OutcomeKey,
    RankInSpace,
    Subject,
)

logger = logging.getLogger(__name__)

GAME_CATEGORIES: tuple[str, ...] = tuple(result.value for result in GameResult)


@dataclass(frozen=True)
class ClassificationRule:
    """rank in [min_rank, max_rank] within ``space`` implies ``category``."""

    space: RankSpace
    category: str
    max_rank: int
    min_rank: int = 1

    def __post_init__(self) -> None:
        if self.min_rank < 1 or self.max_rank < self.min_rank:
            raise InvalidConfig(
                f"Invalid rank range [{self.min_rank}, {self.max_rank}] for '{self.category}'"
            )

    def matches(self, key: RankInSpace) -> bool:
        return key.space == self.space and self.min_rank <= key.rank <= self.max_rank


@dataclass(frozen=True)
class RuleSet:
    """Ordered, overlapping classification rules plus label implications.

    ``implications`` maps a stored label to the extra categories it implies,
    for label schemes where the implied category was never stored itself
    (e.g. 'division winner' and 'wildcard team' both imply 'playoff team').
    """

    version: str
    rules: tuple[ClassificationRule, ...]
    implications: Mapping[str, frozenset[str]] = field(default_factory=dict)

    @property
    def team_categories(self) -> tuple[str, ...]:
        """Team categories in presentation order."""
        names = {rule.category for rule in self.rules}
        for label, implied in self.implications.items():
            names.add(label)
            names.update(implied)
        return tuple(sorted(names, key=self.category_sort_key))

    @property
    def vocabulary(self) -> frozenset[str]:
        return frozenset(self.team_categories) | frozenset(GAME_CATEGORIES)

    def categories_for(self, kind: SubjectKind) -> tuple[str, ...]:
        if kind is SubjectKind.GAME:
            return GAME_CATEGORIES
        return self.team_categories

    def classify(self, key: OutcomeKey) -> frozenset[str]:
        """Map an outcome key to the set of categories it satisfies."""
        if isinstance(key, GameResultKey):
            return frozenset((key.result.value,))

        if isinstance(key, RankInSpace):
            # Every rule is evaluated; no first-match return.
            matched = set()
            for rule in self.rules:
                if rule.matches(key):
                    matched.add(rule.category)
            return frozenset(matched)

        if key.label not in self.team_categories:
            logger.debug(f"Label '{key.label}' is outside rule set {self.version}")
            return frozenset()
        return frozenset({key.label}) | self.implications.get(key.label, frozenset())

    def without_implied(self, categories: Iterable[str]) -> frozenset[str]:
        """Drop categories implied by another category of the same set."""
        categories = frozenset(categories)
        implied = set()
        for category in categories:
            implied.update(self.implications.get(category, frozenset()) - {category})
        return categories - implied

    def category_sort_key(self, category: str) -> tuple:
        """Order categories by rank-space, then by the rank threshold."""
        if category in GAME_CATEGORIES:
            return (0, "", GAME_CATEGORIES.index(category), 0, category)
        ranges = [
            (rule.space.value, rule.max_rank, rule.min_rank)
            for rule in self.rules
            if rule.category == category
        ]
        if ranges:
            space, max_rank, min_rank = min(ranges)
            return (1, space, max_rank, -min_rank, category)
        return (2, "", 0, 0, category)


_PLAYOFF_SEED_RULES = (
    ClassificationRule(RankSpace.PLAYOFF_SEED, Category.DIVISION_WINNER.value, max_rank=4),
    ClassificationRule(RankSpace.PLAYOFF_SEED, Category.WILDCARD_TEAM.value, max_rank=7, min_rank=5),
    ClassificationRule(RankSpace.PLAYOFF_SEED, Category.PLAYOFF_TEAM.value, max_rank=7),
)

_DRAFT_POSITION_RULES = (
    ClassificationRule(RankSpace.DRAFT_POSITION, Category.FIRST_PICK.value, max_rank=1),
    ClassificationRule(RankSpace.DRAFT_POSITION, Category.TOP_5_PICK.value, max_rank=5),
    ClassificationRule(RankSpace.DRAFT_POSITION, Category.TOP_10_PICK.value, max_rank=10),
)

# v1: runs stored only 'division winner' / 'wildcard team' labels
RULE_SET_V1 = RuleSet(
    version="v1",
    rules=_PLAYOFF_SEED_RULES,
    implications={
        Category.DIVISION_WINNER.value: frozenset({Category.PLAYOFF_TEAM.value}),
        Category.WILDCARD_TEAM.value: frozenset({Category.PLAYOFF_TEAM.value}),
    },
)

# v2: runs store raw seed and draft ranks
RULE_SET_V2 = RuleSet(
    version="v2",
    rules=_PLAYOFF_SEED_RULES + _DRAFT_POSITION_RULES,
)

RULE_SETS: dict[str, RuleSet] = {
    RULE_SET_V1.version: RULE_SET_V1,
    RULE_SET_V2.version: RULE_SET_V2,
}

DEFAULT_RULE_SET = RULE_SET_V2


def get_rule_set(version: str) -> RuleSet:
    """Look up a built-in rule set by version."""
    try:
        return RULE_SETS[version]
    except KeyError:
        raise InvalidConfig(
            f"Unknown rule set '{version}'. Available: {', '.join(sorted(RULE_SETS))}"
        ) from None


def classify_tallies(
    tallies: Iterable[tuple[Subject, OutcomeKey, int]],
    rule_set: RuleSet,
) -> Iterator[tuple[Subject, OutcomeKey, int]]:
    """Classify rank tallies at ingest time.

    Rank tallies become one NamedCategory tally per satisfied category, with
    counts summed across ranks. Ranks matching no rule are dropped. Game and
    label tallies pass through unchanged.

    Categories the rule set implies from another emitted label are not
    stored; reading the labels back under the same rule set re-derives them.
    """
    classified: Counter[tuple[Subject, OutcomeKey]] = Counter()
    for subject, key, count in tallies:
        if isinstance(key, RankInSpace):
            for category in rule_set.without_implied(rule_set.classify(key)):
                classified[(subject, NamedCategory(category))] += count
        else:
            classified[(subject, key)] += count

    for (subject, key), count in classified.items():
        yield subject, key, count
