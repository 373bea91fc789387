"""Operations CLI for simulation runs and their projections.

Example:
    nflsim migrate
    nflsim create-run 2024 --trials-per-game 5000
    nflsim current --category "playoff team"
    nflsim margins --limit 10
    nflsim swing 42 NYJ "playoff team"
    nflsim delete-run 42
"""

import argparse
import asyncio
import logging
import sys

from nflsim.aggregation import (
    AggregationError,
    CurrentStateSelector,
    NoTallies,
    PostgresBackend,
    Projector,
    RunRegistry,
    Subject,
    TallyBackend,
    TallyStore,
    UnknownRun,
    get_rule_set,
)
from nflsim.aggregation.classification import RuleSet
from nflsim.aggregation.outcomes import Condition, GameResultKey, NamedCategory, RankInSpace
from nflsim.config import get_config
from nflsim.db import close_pool, get_pool
from nflsim.db.models import GameResult, SubjectKind
from nflsim.db.schema import migrate, schema_version

logger = logging.getLogger(__name__)


def _format_key(key) -> str:
    if isinstance(key, GameResultKey):
        return key.result.value
    if isinstance(key, RankInSpace):
        return f"{key.space.value} #{key.rank}"
    if isinstance(key, NamedCategory):
        return key.label
    return str(key)


def _subject(kind: str, subject_id: str) -> Subject:
    return Subject(SubjectKind(kind), subject_id)


async def dispatch(args: argparse.Namespace, backend: TallyBackend, rule_set: RuleSet) -> int:
    """
    Run one CLI command against a storage backend.

    Returns:
        Process exit code: 0 on success, 1 when the requested data does not exist
    """
    registry = RunRegistry(backend)
    store = TallyStore(backend)
    projector = Projector(backend, rule_set)
    selector = CurrentStateSelector(registry, projector)

    try:
        if args.command == "runs":
            for record in await registry.list_runs(args.season):
                published = record.published_at.isoformat() if record.published_at else "unpublished"
                print(
                    f"{record.run_id}\t{record.season}\t{record.created_at.isoformat()}\t"
                    f"games={record.trials_per_game}\tteams={record.trials_per_team}\t{published}"
                )

        elif args.command == "create-run":
            created = await registry.create_run(
                args.season, args.trials_per_game, args.trials_per_team
            )
            print(created.run_id)

        elif args.command == "publish":
            published = await registry.publish(args.run_id)
            print(f"Published run {published.run_id} at {published.published_at.isoformat()}")

        elif args.command == "latest":
            latest = await selector.current_run(args.season)
            if latest is None:
                print("No published runs")
                return 1
            print(latest.run_id)

        elif args.command == "current":
            kind = SubjectKind.GAME if args.games else SubjectKind.TEAM
            rows = await selector.current_projections(args.category, args.season, kind)
            if not rows:
                if await selector.current_run(args.season) is None:
                    print("No published runs")
                    return 1
                print("No matching projections")
            for row in rows:
                print(f"{row.subject.subject_id}\t{row.category}\t{row.probability:.4f}")

        elif args.command == "margins":
            if args.run is None:
                margins = await selector.current_game_margins(args.season)
            else:
                margins = await projector.games_by_margin(args.run)
            for m in margins[: args.limit]:
                print(
                    f"{m.game.subject_id}\thome={m.p_home_win:.4f}\taway={m.p_away_win:.4f}\t"
                    f"tie={m.p_tie:.4f}\tmargin={m.margin:.4f}"
                )

        elif args.command == "tallies":
            subject = _subject(args.kind, args.subject_id)
            rows = await store.tallies_for(args.run_id, subject)
            if not rows:
                print(f"No tallies for {subject} in run {args.run_id}")
                return 1
            for key, count in rows:
                print(f"{_format_key(key)}\t{count}")

        elif args.command == "project":
            subject = _subject(args.kind, args.subject_id)
            given = None
            if args.given_game is not None:
                given = Condition.of(args.given_game, args.given_result)
            probability = await projector.project(args.run_id, subject, args.category, given)
            print(f"{probability:.4f}")

        elif args.command == "swing":
            team = Subject.team(args.team_id)
            games = await projector.swing_games(args.run_id, team, args.category)
            for g in games[: args.limit]:
                print(
                    f"{g.game.subject_id}\thome={g.p_home_win:.4f}\taway={g.p_away_win:.4f}\t"
                    f"leverage={g.leverage:+.4f}"
                )

        elif args.command == "delete-run":
            deleted = await registry.delete_run(args.run_id)
            print(f"Deleted run {args.run_id}" if deleted else f"Run {args.run_id} not found")

    except (UnknownRun, NoTallies) as e:
        print(f"No data: {e}")
        return 1

    return 0


async def run(args: argparse.Namespace) -> int:
    """Connect to PostgreSQL and execute the parsed command."""
    config = get_config()
    try:
        if args.command == "migrate":
            applied = await migrate()
            print(f"Applied {applied} migration(s). Schema version: {await schema_version()}")
            return 0

        if args.command == "create-run":
            if args.trials_per_game is None:
                args.trials_per_game = config.default_trials_per_game
            if args.trials_per_team is None:
                args.trials_per_team = config.default_trials_per_team

        pool = await get_pool()
        return await dispatch(args, PostgresBackend(pool), get_rule_set(config.rule_set_version))
    finally:
        await close_pool()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nflsim",
        description="NFL season simulation: run registry and outcome projections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Example:", 1)[1] if __doc__ else None,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", help="Apply pending schema migrations.")

    runs = sub.add_parser("runs", help="List simulation runs.")
    runs.add_argument("--season", type=int, help="Only runs of this season.")

    create = sub.add_parser("create-run", help="Register a new unpublished run.")
    create.add_argument("season", type=int)
    create.add_argument("--trials-per-game", type=int, help="Default: DEFAULT_TRIALS_PER_GAME.")
    create.add_argument("--trials-per-team", type=int, help="Default: DEFAULT_TRIALS_PER_TEAM.")

    publish = sub.add_parser("publish", help="Make a run visible as the latest run.")
    publish.add_argument("run_id", type=int)

    latest = sub.add_parser("latest", help="Show the latest published run.")
    latest.add_argument("--season", type=int)

    current = sub.add_parser("current", help="Category probabilities of the latest run.")
    current.add_argument("--season", type=int)
    current.add_argument(
        "--category",
        action="append",
        help="Restrict to a category (repeatable).",
    )
    current.add_argument(
        "--games",
        action="store_true",
        help="Project game results instead of team categories.",
    )

    margins = sub.add_parser("margins", help="Games ranked by result uncertainty.")
    margins.add_argument("--run", type=int, help="Run id (default: latest published).")
    margins.add_argument("--season", type=int)
    margins.add_argument("--limit", type=int, default=None)

    tallies = sub.add_parser("tallies", help="Raw tallies of one subject in a run.")
    tallies.add_argument("run_id", type=int)
    tallies.add_argument("kind", choices=[k.value for k in SubjectKind])
    tallies.add_argument("subject_id")

    project = sub.add_parser("project", help="Probability of one category for one subject.")
    project.add_argument("run_id", type=int)
    project.add_argument("kind", choices=[k.value for k in SubjectKind])
    project.add_argument("subject_id")
    project.add_argument("category")
    project.add_argument("--given-game", help="Read the scenario where this game is forced.")
    project.add_argument(
        "--given-result",
        choices=[r.value for r in GameResult],
        default=GameResult.HOME_WIN.value,
        help="Forced result of --given-game.",
    )

    swing = sub.add_parser("swing", help="Games that move a team's chance of a category most.")
    swing.add_argument("run_id", type=int)
    swing.add_argument("team_id")
    swing.add_argument("category")
    swing.add_argument("--limit", type=int, default=None)

    delete = sub.add_parser("delete-run", help="Delete a run and all of its tallies.")
    delete.add_argument("run_id", type=int)

    return parser


def main() -> None:
    """Main entry point with logging configuration."""
    args = build_parser().parse_args()

    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except AggregationError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(2)
    except SystemExit:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
