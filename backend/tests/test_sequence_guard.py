"""Tests for SequenceGuard against a scripted connection."""

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from bookdragon.db.exceptions import (
    SequenceReadFailure,
    SequenceRepairFailure,
    SequenceResolutionFailure,
)
from bookdragon.db.sequence_guard import SequenceCheckOutcome, SequenceGuard, SequenceTarget
from bookdragon.models import Book, Category
from tests.fakes import FakeEngine, FakeResult

pytestmark = pytest.mark.anyio

TARGET = SequenceTarget(table="Categories", key_column="Id", constraint_name="PK_Categories")
SEQUENCE = 'public."Categories_Id_seq"'


def state_row(*, max_id: int, last_value: int, is_called: bool, start_value: int = 1, repaired_to: int | None = None):
    return FakeResult(
        row={
            "max_id": max_id,
            "last_value": last_value,
            "is_called": is_called,
            "start_value": start_value,
            "repaired_to": repaired_to,
        }
    )


def script(row: FakeResult) -> list:
    # resolve, SET lock_timeout, LOCK TABLE, check-and-repair
    return [FakeResult(scalar=SEQUENCE), FakeResult(), FakeResult(), row]


def db_error(message: str) -> DBAPIError:
    return DBAPIError("SELECT 1", None, Exception(message))


def test_target_for_category_model():
    target = SequenceTarget.for_model(Category)
    assert target == SequenceTarget(table="Categories", key_column="Id", constraint_name="PK_Categories")
    assert str(target) == "Categories.Id"


def test_target_for_book_model():
    target = SequenceTarget.for_model(Book)
    assert (target.table, target.key_column, target.constraint_name) == ("Books", "Id", "PK_Books")


async def test_no_sequence_is_noop():
    engine = FakeEngine([FakeResult(scalar=None)])
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.NO_SEQUENCE
    assert len(engine.connection.executed) == 1


async def test_resolves_with_quoted_table_and_literal_column():
    engine = FakeEngine([FakeResult(scalar=None)])
    await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    sql, params = engine.connection.executed[0]
    assert "pg_get_serial_sequence" in sql
    assert params == {"table_name": '"Categories"', "column_name": "Id"}


async def test_healthy_sequence_reports_state_without_repair():
    engine = FakeEngine(script(state_row(max_id=10, last_value=10, is_called=True)))
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]

    assert result.outcome == SequenceCheckOutcome.HEALTHY
    assert result.repaired_to is None
    assert result.state is not None and result.state.last_value == 10
    assert result.max_id == 10


async def test_repair_locks_table_and_runs_single_statement():
    engine = FakeEngine(script(state_row(max_id=10, last_value=7, is_called=True, repaired_to=11)))
    result = await SequenceGuard(engine, TARGET, lock_timeout_ms=250).check()  # type: ignore[arg-type]

    assert result.outcome == SequenceCheckOutcome.REPAIRED
    assert result.repaired
    assert result.repaired_to == 11
    assert result.sequence_name == SEQUENCE

    executed = [sql for sql, _ in engine.connection.executed]
    assert executed[1] == "SET LOCAL lock_timeout = '250ms'"
    assert executed[2] == 'LOCK TABLE "Categories" IN SHARE ROW EXCLUSIVE MODE'
    check_sql, params = engine.connection.executed[3]
    assert 'max("Id")' in check_sql
    assert 'FROM "Categories"' in check_sql
    assert f"FROM {SEQUENCE} AS seq" in check_sql
    assert "setval(" in check_sql and "max_id + 1, false)" in check_sql
    assert params == {"sequence_name": SEQUENCE, "force": False}


async def test_force_is_passed_to_statement():
    engine = FakeEngine(script(state_row(max_id=10, last_value=50, is_called=True, repaired_to=11)))
    result = await SequenceGuard(engine, TARGET).check(force=True)  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.REPAIRED
    assert engine.connection.executed[3][1] == {"sequence_name": SEQUENCE, "force": True}


async def test_fresh_table_reports_skip():
    engine = FakeEngine(script(state_row(max_id=0, last_value=1, is_called=False)))
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.SKIPPED_FRESH


async def test_resolution_failure_is_absorbed():
    engine = FakeEngine([db_error('relation "Categories" does not exist')])
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.FAILED
    assert isinstance(result.error, SequenceResolutionFailure)


async def test_lock_failure_is_read_failure():
    engine = FakeEngine([FakeResult(scalar=SEQUENCE), FakeResult(), db_error("lock timeout")])
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.FAILED
    assert isinstance(result.error, SequenceReadFailure)


async def test_statement_failure_is_repair_failure():
    engine = FakeEngine(script(db_error("permission denied for sequence")))  # type: ignore[arg-type]
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.FAILED
    assert isinstance(result.error, SequenceRepairFailure)


async def test_missing_state_row_is_read_failure():
    engine = FakeEngine(script(FakeResult(row=None)))
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert isinstance(result.error, SequenceReadFailure)


async def test_connection_failure_is_absorbed():
    engine = FakeEngine([], connect_error=OperationalError("connect", None, Exception("connection refused")))
    result = await SequenceGuard(engine, TARGET).check()  # type: ignore[arg-type]
    assert result.outcome == SequenceCheckOutcome.FAILED
    assert isinstance(result.error, SequenceReadFailure)


async def test_inspect_and_repair_raises():
    engine = FakeEngine([db_error("boom")])
    with pytest.raises(SequenceResolutionFailure):
        await SequenceGuard(engine, TARGET).inspect_and_repair()  # type: ignore[arg-type]


async def test_schema_qualified_target():
    target = SequenceTarget(table="Categories", key_column="Id", constraint_name="PK_Categories", schema="library")
    engine = FakeEngine([FakeResult(scalar=None)])
    await SequenceGuard(engine, target).check()  # type: ignore[arg-type]
    assert engine.connection.executed[0][1]["table_name"] == 'library."Categories"'
