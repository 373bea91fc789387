"""Lightweight table-name constants and column-name enums."""

from enum import Enum


# Table name constants
class Table:
    """Database table names."""

    SIMULATION_RUNS = "simulation_runs"
    SIMULATION_TALLIES = "simulation_tallies"
    CURRENT_SIMULATION_TALLIES = "current_simulation_tallies"
    SCHEMA_MIGRATIONS = "schema_migrations"


# Column name enums
class SubjectKind(str, Enum):
    """What a tally is about."""

    GAME = "game"
    TEAM = "team"


class OutcomeKind(str, Enum):
    """Discriminator of the stored outcome key."""

    GAME_RESULT = "game_result"
    RANK = "rank"
    CATEGORY = "category"


class GameResult(str, Enum):
    """Simulated game result, from the home team's perspective."""

    HOME_WIN = "home win"
    AWAY_WIN = "away win"
    TIE = "tie"


class RankSpace(str, Enum):
    """Named ordering of season-ending positions (1 = first)."""

    PLAYOFF_SEED = "playoff seed"
    DRAFT_POSITION = "draft position"


class Category(str, Enum):
    """Built-in team outcome categories."""

    DIVISION_WINNER = "division winner"
    WILDCARD_TEAM = "wildcard team"
    PLAYOFF_TEAM = "playoff team"
    FIRST_PICK = "first pick"
    TOP_5_PICK = "top 5 pick"
    TOP_10_PICK = "top 10 pick"
