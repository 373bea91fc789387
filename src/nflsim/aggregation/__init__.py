"""Outcome aggregation and classification engine.

Accumulates simulated-season results into write-once tallies per run,
classifies finishing ranks into overlapping outcome categories, and projects
probabilities for the latest or any historical run.
"""

from nflsim.aggregation.accumulator import TallyAccumulator
from nflsim.aggregation.backend import RunRecord, RunSnapshot, TallyBackend, TallyRecord
from nflsim.aggregation.classification import (
    DEFAULT_RULE_SET,
    ClassificationRule,
    RuleSet,
    classify_tallies,
    get_rule_set,
)
from nflsim.aggregation.current import CurrentStateSelector
from nflsim.aggregation.errors import (
    AggregationError,
    DeletionFailed,
    DuplicateTally,
    InvalidConfig,
    InvalidTally,
    NoTallies,
    TallyOverflow,
    UnknownCategory,
    UnknownRun,
)
from nflsim.aggregation.ingest import AccumulatorFeed, SimulationFeed, ingest_run
from nflsim.aggregation.memory import MemoryBackend
from nflsim.aggregation.outcomes import (
    Condition,
    GameResultKey,
    NamedCategory,
    OutcomeKey,
    RankInSpace,
    Subject,
)
from nflsim.aggregation.postgres import PostgresBackend
from nflsim.aggregation.projection import GameLeverage, GameMargin, ProjectionRow, Projector
from nflsim.aggregation.registry import RunRegistry
from nflsim.aggregation.tallies import TallyStore

__all__ = [
    # Outcome keys
    "Subject",
    "GameResultKey",
    "RankInSpace",
    "NamedCategory",
    "OutcomeKey",
    "Condition",
    # Errors
    "AggregationError",
    "InvalidConfig",
    "InvalidTally",
    "DuplicateTally",
    "TallyOverflow",
    "UnknownRun",
    "NoTallies",
    "UnknownCategory",
    "DeletionFailed",
    # Classification
    "ClassificationRule",
    "RuleSet",
    "DEFAULT_RULE_SET",
    "get_rule_set",
    "classify_tallies",
    # Storage
    "TallyBackend",
    "RunSnapshot",
    "RunRecord",
    "TallyRecord",
    "MemoryBackend",
    "PostgresBackend",
    # Engine
    "RunRegistry",
    "TallyStore",
    "Projector",
    "ProjectionRow",
    "GameMargin",
    "GameLeverage",
    "CurrentStateSelector",
    # Ingest
    "TallyAccumulator",
    "SimulationFeed",
    "AccumulatorFeed",
    "ingest_run",
]
