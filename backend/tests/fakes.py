"""Test doubles for the store: DBAPI errors, a scripted engine and an in-memory keyed table."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from bookdragon.db.sequence_guard import (
    RepairDecision,
    SequenceCheckOutcome,
    SequenceCheckResult,
    SequenceState,
    decide_repair,
)


class FakePgError(Exception):
    """Driver exception carrying asyncpg-style diagnostics."""

    def __init__(self, message: str, *, sqlstate: str | None = None, constraint_name: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def pk_conflict(constraint: str = "PK_Categories") -> IntegrityError:
    orig = FakePgError(
        f'duplicate key value violates unique constraint "{constraint}"',
        sqlstate="23505",
        constraint_name=constraint,
    )
    return IntegrityError('INSERT INTO "Categories" ("Name") VALUES ($1)', None, orig)


def not_null_violation(column: str = "Name") -> IntegrityError:
    orig = FakePgError(
        f'null value in column "{column}" of relation "Categories" violates not-null constraint',
        sqlstate="23502",
    )
    return IntegrityError('INSERT INTO "Categories" ("Name") VALUES ($1)', None, orig)


# --- Scripted engine for SequenceGuard -------------------------------------------------


class FakeResult:
    def __init__(self, scalar: Any = None, row: dict[str, Any] | None = None):
        self._scalar = scalar
        self._row = row

    def scalar_one_or_none(self) -> Any:
        return self._scalar

    def mappings(self) -> "FakeResult":
        return self

    def one_or_none(self) -> dict[str, Any] | None:
        return self._row


class FakeConnection:
    """Answers execute() calls from a script of results or exceptions, in order."""

    dialect = postgresql.dialect()

    def __init__(self, script: list[FakeResult | BaseException]):
        self.script = list(script)
        self.executed: list[tuple[str, dict[str, Any] | None]] = []

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        self.executed.append((str(statement), params))
        if not self.script:
            return FakeResult()
        response = self.script.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeEngine:
    def __init__(self, script: list[FakeResult | BaseException], *, connect_error: BaseException | None = None):
        self.connection = FakeConnection(script)
        self.connect_error = connect_error

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[FakeConnection]:
        if self.connect_error is not None:
            raise self.connect_error
        yield self.connection


# --- In-memory keyed table with Postgres sequence semantics ----------------------------


class MemoryKeyedTable:
    """A table with an identity sequence.

    ``lock`` plays the part of the table lock: the guard takes it exclusively
    and each insert holds it while drawing a key and writing the row, like an
    INSERT holding ROW EXCLUSIVE until it commits.
    """

    def __init__(self, *, start_value: int = 1, constraint: str = "PK_Categories"):
        self.rows: dict[int, str] = {}
        self.start_value = start_value
        self.last_value = start_value
        self.is_called = False
        self.constraint = constraint
        self.lock = asyncio.Lock()
        self.insert_attempts = 0

    def state(self) -> SequenceState:
        return SequenceState(last_value=self.last_value, is_called=self.is_called, start_value=self.start_value)

    def set_sequence(self, last_value: int, is_called: bool) -> None:
        self.last_value = last_value
        self.is_called = is_called

    def nextval(self) -> int:
        if self.is_called:
            self.last_value += 1
        else:
            self.is_called = True
        return self.last_value

    def insert_explicit(self, key: int, name: str) -> None:
        """Write a row with a caller-chosen key; the sequence does not move."""
        self.rows[key] = name

    async def insert(self, name: str) -> int:
        async with self.lock:
            self.insert_attempts += 1
            key = self.nextval()
            await asyncio.sleep(0)
            if key in self.rows:
                raise pk_conflict(self.constraint)
            self.rows[key] = name
            return key


class MemorySequenceGuard:
    """SequenceGuard counterpart for MemoryKeyedTable, applying decide_repair()."""

    def __init__(self, table: MemoryKeyedTable):
        self.table = table
        self.calls: list[bool] = []

    async def check(self, *, force: bool = False) -> SequenceCheckResult:
        self.calls.append(force)
        async with self.table.lock:
            await asyncio.sleep(0)
            max_id = max(self.table.rows, default=0)
            state = self.table.state()
            decision = decide_repair(state, max_id, force=force)
            if decision in (RepairDecision.REPAIR, RepairDecision.FORCED_REPAIR):
                self.table.set_sequence(max_id + 1, is_called=False)
                return SequenceCheckResult(
                    outcome=SequenceCheckOutcome.REPAIRED,
                    max_id=max_id,
                    state=state,
                    repaired_to=max_id + 1,
                )
        outcome = (
            SequenceCheckOutcome.SKIPPED_FRESH
            if decision == RepairDecision.SKIP_FRESH
            else SequenceCheckOutcome.HEALTHY
        )
        return SequenceCheckResult(outcome=outcome, max_id=max_id, state=state)


class RecordingGuard:
    """Guard that only records how it was called."""

    def __init__(self) -> None:
        self.calls: list[bool] = []

    async def check(self, *, force: bool = False) -> SequenceCheckResult:
        self.calls.append(force)
        return SequenceCheckResult(outcome=SequenceCheckOutcome.HEALTHY)
