"""In-process TallyBackend.

Used for embedded runs (ingest + report in one process) and by the test
suite. Every mutation completes without awaiting, so it is atomic with
respect to other coroutines on the event loop.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator

from nflsim.db.models import SubjectKind

from nflsim.aggregation.backend import RunRecord, RunSnapshot, TallyBackend, TallyRecord
from nflsim.aggregation.errors import DuplicateTally, UnknownRun
from nflsim.aggregation.outcomes import Condition, OutcomeKey, Subject

_TallyKey = tuple[Subject, Condition | None, OutcomeKey]


class _ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writing = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writing)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writing and self._readers == 0)
            self._writing = True
        try:
            yield
        finally:
            async with self._cond:
                self._writing = False
                self._cond.notify_all()


class _MemorySnapshot(RunSnapshot):
    def __init__(self, run: RunRecord, rows: dict[_TallyKey, TallyRecord]):
        self.run = run
        self._rows = rows

    async def tallies(
        self,
        subject: Subject | None = None,
        kind: SubjectKind | None = None,
        given: Condition | None = None,
    ) -> list[TallyRecord]:
        return [
            row
            for row in self._rows.values()
            if row.given == given
            and (subject is None or row.subject == subject)
            and (kind is None or row.subject.kind is kind)
        ]

    async def conditions(self, subject: Subject | None = None) -> list[Condition]:
        seen = {}
        for row in self._rows.values():
            if row.given is not None and (subject is None or row.subject == subject):
                seen.setdefault(row.given, None)
        return list(seen)


class MemoryBackend(TallyBackend):
    """Dict-backed storage for runs and tallies."""

    def __init__(self) -> None:
        self._runs: dict[int, RunRecord] = {}
        self._tallies: dict[int, dict[_TallyKey, TallyRecord]] = {}
        self._locks: dict[int, _ReadWriteLock] = {}
        self._next_id = 1

    def _lock(self, run_id: int) -> _ReadWriteLock:
        if run_id not in self._locks:
            self._locks[run_id] = _ReadWriteLock()
        return self._locks[run_id]

    async def create_run(
        self,
        season: int,
        trials_per_game: int,
        trials_per_team: int,
        created_at: datetime,
    ) -> RunRecord:
        run = RunRecord(
            run_id=self._next_id,
            season=season,
            created_at=created_at,
            trials_per_game=trials_per_game,
            trials_per_team=trials_per_team,
        )
        self._next_id += 1
        self._runs[run.run_id] = run
        self._tallies[run.run_id] = {}
        return run

    async def get_run(self, run_id: int) -> RunRecord | None:
        return self._runs.get(run_id)

    async def list_runs(self, season: int | None = None) -> list[RunRecord]:
        return [
            run
            for run_id, run in sorted(self._runs.items())
            if season is None or run.season == season
        ]

    async def publish_run(self, run_id: int, published_at: datetime) -> RunRecord | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        if not run.is_published:
            run = replace(run, published_at=published_at)
            self._runs[run_id] = run
        return run

    async def latest_published_run_id(self, season: int | None = None) -> int | None:
        ids = [
            run.run_id
            for run in self._runs.values()
            if run.is_published and (season is None or run.season == season)
        ]
        return max(ids, default=None)

    async def delete_run(self, run_id: int) -> bool:
        if run_id not in self._runs:
            return False
        async with self._lock(run_id).write():
            existed = self._runs.pop(run_id, None) is not None
            self._tallies.pop(run_id, None)
        self._locks.pop(run_id, None)
        return existed

    async def insert_tally(
        self,
        run_id: int,
        subject: Subject,
        outcome_key: OutcomeKey,
        count: int,
        given: Condition | None = None,
    ) -> TallyRecord:
        rows = self._tallies.get(run_id)
        if rows is None:
            raise UnknownRun(f"Run {run_id} does not exist")
        key = (subject, given, outcome_key)
        if key in rows:
            raise DuplicateTally(
                f"Tally already recorded for run {run_id}, {subject}, {outcome_key}"
                + (f" given {given}" if given else "")
            )
        record = TallyRecord(run_id, subject, outcome_key, count, given)
        rows[key] = record
        return record

    @asynccontextmanager
    async def snapshot(self, run_id: int) -> AsyncIterator[RunSnapshot]:
        if run_id not in self._runs:
            raise UnknownRun(f"Run {run_id} does not exist")
        async with self._lock(run_id).read():
            # The run may have been deleted while we waited for the lock.
            run = self._runs.get(run_id)
            if run is None:
                raise UnknownRun(f"Run {run_id} does not exist")
            yield _MemorySnapshot(run, self._tallies[run_id])
