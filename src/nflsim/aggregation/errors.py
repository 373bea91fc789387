"""Typed failures raised by the aggregation engine.

Every error is returned to the caller; nothing in the engine logs-and-ignores.
"""


class AggregationError(Exception):
    """Base class for all aggregation engine errors."""


class InvalidConfig(AggregationError, ValueError):
    """Bad run parameters (e.g. a non-positive trial count). Not retryable."""


class InvalidTally(AggregationError, ValueError):
    """Malformed tally: negative count, or an outcome key of the wrong subject kind."""


class DuplicateTally(AggregationError):
    """The (run, subject, outcome_key) tally was already recorded."""


class TallyOverflow(AggregationError):
    """A tally count (or its exclusive group sum) exceeds the run's trial total.

    Data-integrity violation: the ingest of the run must be aborted.
    """


class UnknownRun(AggregationError, LookupError):
    """The requested run does not exist."""


class NoTallies(AggregationError, LookupError):
    """The subject has no recorded tallies in the run."""


class UnknownCategory(AggregationError, LookupError):
    """The category is not part of the active rule set's vocabulary."""


class DeletionFailed(AggregationError):
    """The storage collaborator could not delete the run; nothing was removed."""
