"""PostgreSQL TallyBackend on an asyncpg pool.

Deleting a run relies on ON DELETE CASCADE inside one transaction, so either
every tally of the run goes or none does. Snapshots hold FOR SHARE on the run
row, which makes a concurrent DELETE of that run wait for the reader.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import asyncpg

from nflsim.db.models import SubjectKind, Table

from nflsim.aggregation.backend import RunRecord, RunSnapshot, TallyBackend, TallyRecord
from nflsim.aggregation.errors import DeletionFailed, DuplicateTally, UnknownRun
from nflsim.aggregation.outcomes import (
    Condition,
    OutcomeKey,
    Subject,
    decode_condition,
    decode_outcome_key,
    encode_condition,
    encode_outcome_key,
)

logger = logging.getLogger(__name__)

_RUN_COLUMNS = "run_id, season, created_at, trials_per_game, trials_per_team, published_at"


def _run_from_row(row: asyncpg.Record) -> RunRecord:
    return RunRecord(
        run_id=row["run_id"],
        season=row["season"],
        created_at=row["created_at"],
        trials_per_game=row["trials_per_game"],
        trials_per_team=row["trials_per_team"],
        published_at=row["published_at"],
    )


def _tally_from_row(run_id: int, row: asyncpg.Record) -> TallyRecord:
    return TallyRecord(
        run_id=run_id,
        subject=Subject(SubjectKind(row["subject_kind"]), row["subject_id"]),
        outcome_key=decode_outcome_key(row["outcome_kind"], row["outcome_value"], row["rank"]),
        count=row["count"],
        given=decode_condition(row["given_game_id"], row["given_result"]),
    )


class _PostgresSnapshot(RunSnapshot):
    def __init__(self, conn: asyncpg.Connection, run: RunRecord):
        self.run = run
        self._conn = conn

    async def tallies(
        self,
        subject: Subject | None = None,
        kind: SubjectKind | None = None,
        given: Condition | None = None,
    ) -> list[TallyRecord]:
        if subject is not None:
            kind = subject.kind
        given_game_id, given_result = encode_condition(given)
        rows = await self._conn.fetch(
            f"""
            SELECT subject_kind, subject_id, outcome_kind, outcome_value, rank, count,
                   given_game_id, given_result
            FROM {Table.SIMULATION_TALLIES}
            WHERE run_id = $1
              AND ($2::text IS NULL OR subject_kind = $2)
              AND ($3::text IS NULL OR subject_id = $3)
              AND given_game_id = $4
              AND given_result = $5
            ORDER BY tally_id
            """,
            self.run.run_id,
            kind.value if kind is not None else None,
            subject.subject_id if subject is not None else None,
            given_game_id,
            given_result,
        )
        return [_tally_from_row(self.run.run_id, row) for row in rows]

    async def conditions(self, subject: Subject | None = None) -> list[Condition]:
        rows = await self._conn.fetch(
            f"""
            SELECT given_game_id, given_result, MIN(tally_id) AS first_seen
            FROM {Table.SIMULATION_TALLIES}
            WHERE run_id = $1
              AND given_game_id <> ''
              AND ($2::text IS NULL OR (subject_kind = $2 AND subject_id = $3))
            GROUP BY given_game_id, given_result
            ORDER BY first_seen
            """,
            self.run.run_id,
            subject.kind.value if subject is not None else None,
            subject.subject_id if subject is not None else None,
        )
        return [decode_condition(row["given_game_id"], row["given_result"]) for row in rows]


class PostgresBackend(TallyBackend):
    """Runs and tallies stored in simulation_runs / simulation_tallies."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def create_run(
        self,
        season: int,
        trials_per_game: int,
        trials_per_team: int,
        created_at: datetime,
    ) -> RunRecord:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {Table.SIMULATION_RUNS} (
                    season,
                    created_at,
                    trials_per_game,
                    trials_per_team
                )
                VALUES ($1, $2, $3, $4)
                RETURNING {_RUN_COLUMNS}
                """,
                season,
                created_at,
                trials_per_game,
                trials_per_team,
            )
        return _run_from_row(row)

    async def get_run(self, run_id: int) -> RunRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_RUN_COLUMNS} FROM {Table.SIMULATION_RUNS} WHERE run_id = $1",
                run_id,
            )
        return _run_from_row(row) if row is not None else None

    async def list_runs(self, season: int | None = None) -> list[RunRecord]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM {Table.SIMULATION_RUNS}
                WHERE ($1::int IS NULL OR season = $1)
                ORDER BY run_id
                """,
                season,
            )
        return [_run_from_row(row) for row in rows]

    async def publish_run(self, run_id: int, published_at: datetime) -> RunRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {Table.SIMULATION_RUNS}
                SET published_at = COALESCE(published_at, $2)
                WHERE run_id = $1
                RETURNING {_RUN_COLUMNS}
                """,
                run_id,
                published_at,
            )
        return _run_from_row(row) if row is not None else None

    async def latest_published_run_id(self, season: int | None = None) -> int | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                f"""
                SELECT MAX(run_id)
                FROM {Table.SIMULATION_RUNS}
                WHERE published_at IS NOT NULL
                  AND ($1::int IS NULL OR season = $1)
                """,
                season,
            )

    async def delete_run(self, run_id: int) -> bool:
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(
                        f"DELETE FROM {Table.SIMULATION_RUNS} WHERE run_id = $1",
                        run_id,
                    )
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            raise DeletionFailed(f"Failed to delete run {run_id}: {e}") from e

        logger.debug(f"Delete of run {run_id} returned '{status}'")
        # Status string is "DELETE <rowcount>"
        return status.split()[-1] != "0"

    async def insert_tally(
        self,
        run_id: int,
        subject: Subject,
        outcome_key: OutcomeKey,
        count: int,
        given: Condition | None = None,
    ) -> TallyRecord:
        outcome_kind, outcome_value, rank = encode_outcome_key(outcome_key)
        given_game_id, given_result = encode_condition(given)
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO {Table.SIMULATION_TALLIES} (
                        run_id,
                        subject_kind,
                        subject_id,
                        given_game_id,
                        given_result,
                        outcome_kind,
                        outcome_value,
                        rank,
                        count
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    run_id,
                    subject.kind.value,
                    subject.subject_id,
                    given_game_id,
                    given_result,
                    outcome_kind,
                    outcome_value,
                    rank,
                    count,
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateTally(
                f"Tally already recorded for run {run_id}, {subject}, {outcome_key}"
                + (f" given {given}" if given else "")
            ) from e
        except asyncpg.ForeignKeyViolationError as e:
            raise UnknownRun(f"Run {run_id} does not exist") from e

        return TallyRecord(run_id, subject, outcome_key, count, given)

    @asynccontextmanager
    async def snapshot(self, run_id: int) -> AsyncIterator[RunSnapshot]:
        async with self._pool.acquire() as conn:
            async with conn.transaction(isolation="repeatable_read"):
                row = await conn.fetchrow(
                    f"""
                    SELECT {_RUN_COLUMNS}
                    FROM {Table.SIMULATION_RUNS}
                    WHERE run_id = $1
                    FOR SHARE
                    """,
                    run_id,
                )
                if row is None:
                    raise UnknownRun(f"Run {run_id} does not exist")
                yield _PostgresSnapshot(conn, _run_from_row(row))
