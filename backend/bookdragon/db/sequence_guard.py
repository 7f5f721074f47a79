"""Self-healing primary-key sequences.

An identity/serial column draws its next key from a Postgres sequence.
Rows inserted with explicit keys (imports, restores, manual fixes) do not
advance that sequence, so the next generated key can collide with an
existing row. SequenceGuard detects that drift and moves the sequence to
``max(key) + 1`` before an insert.

Usage:
    guard = SequenceGuard(engine, SequenceTarget.for_model(Category))
    result = await guard.check()             # best-effort, never raises
    result = await guard.check(force=True)   # after a primary-key conflict
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog
from sqlalchemy import Boolean, bindparam, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from bookdragon.db.exceptions import (
    SequenceGuardError,
    SequenceReadFailure,
    SequenceRepairFailure,
    SequenceResolutionFailure,
)

logger = structlog.get_logger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 5000

RESOLVE_SEQUENCE_SQL = text("SELECT pg_get_serial_sequence(:table_name, :column_name)")

# Reads max(key), the sequence state and its configured start in one
# statement and rewrites the sequence in the same statement when needed.
# The CASE branches mirror decide_repair().
CHECK_AND_REPAIR_SQL = """
WITH snapshot AS (
    SELECT
        (SELECT coalesce(max({column}), 0) FROM {table}) AS max_id,
        seq.last_value AS last_value,
        seq.is_called AS is_called,
        cfg.seqstart AS start_value
    FROM {sequence} AS seq
    CROSS JOIN pg_catalog.pg_sequence AS cfg
    WHERE cfg.seqrelid = CAST(CAST(:sequence_name AS text) AS regclass)
)
SELECT
    max_id,
    last_value,
    is_called,
    start_value,
    CASE
        WHEN NOT is_called AND last_value = start_value AND max_id = 0 THEN NULL
        WHEN :force
            OR last_value < max_id
            OR (last_value = max_id AND NOT is_called)
            THEN setval(CAST(CAST(:sequence_name AS text) AS regclass), max_id + 1, false)
    END AS repaired_to
FROM snapshot
"""


@dataclass(frozen=True)
class SequenceTarget:
    """Table, key column and primary-key constraint a guard protects."""

    table: str
    key_column: str
    constraint_name: str
    schema: str | None = None

    @classmethod
    def for_model(cls, model: Any) -> "SequenceTarget":
        """Derive the target from a SQLModel/SQLAlchemy table class.

        The table must have a single-column primary key with a named constraint.
        """
        table = model.__table__
        pk_columns = list(table.primary_key.columns)
        if len(pk_columns) != 1:
            raise ValueError(f"{table.name} must have exactly one primary key column, got {len(pk_columns)}")
        if not table.primary_key.name:
            raise ValueError(f"{table.name} primary key constraint must have a name for conflict detection.")
        return cls(
            table=table.name,
            key_column=pk_columns[0].name,
            constraint_name=table.primary_key.name,
            schema=table.schema,
        )

    def __str__(self) -> str:
        prefix = f"{self.schema}." if self.schema else ""
        return f"{prefix}{self.table}.{self.key_column}"


@dataclass(frozen=True)
class SequenceState:
    """Sequence state as read from the store. Never cached."""

    last_value: int
    is_called: bool
    start_value: int = 1

    @property
    def next_value(self) -> int:
        """Key the next nextval() call would hand out."""
        return self.last_value + 1 if self.is_called else self.last_value


class RepairDecision(StrEnum):
    """What a check should do for a given state and max key."""

    SKIP_FRESH = "skip_fresh"
    HEALTHY = "healthy"
    REPAIR = "repair"
    FORCED_REPAIR = "forced_repair"


class SequenceCheckOutcome(StrEnum):
    """What a check actually did."""

    NO_SEQUENCE = "no_sequence"
    SKIPPED_FRESH = "skipped_fresh"
    HEALTHY = "healthy"
    REPAIRED = "repaired"
    FAILED = "failed"


@dataclass(frozen=True)
class SequenceCheckResult:
    """Result of one check-then-maybe-repair call."""

    outcome: SequenceCheckOutcome
    sequence_name: str | None = None
    max_id: int | None = None
    state: SequenceState | None = None
    repaired_to: int | None = None
    error: SequenceGuardError | None = None

    @property
    def repaired(self) -> bool:
        return self.outcome == SequenceCheckOutcome.REPAIRED


def decide_repair(state: SequenceState, max_id: int, *, force: bool = False) -> RepairDecision:
    """Decide whether the sequence must be moved to ``max_id + 1``.

    A never-consumed sequence still at its start value on an empty table is
    the normal state right after table creation and is left alone, even when
    forced. Otherwise the sequence is repaired when forced, or when the next
    key it would hand out is already taken.
    """
    if not state.is_called and state.last_value == state.start_value and max_id == 0:
        return RepairDecision.SKIP_FRESH
    if force:
        return RepairDecision.FORCED_REPAIR
    if state.next_value <= max_id:
        return RepairDecision.REPAIR
    return RepairDecision.HEALTHY


class SequenceGuard:
    """Detect and repair a primary-key sequence that fell behind its table.

    Each check runs on its own connection and transaction:

    1. Resolve the sequence with ``pg_get_serial_sequence``. No sequence
       (externally assigned keys) is a no-op.
    2. ``LOCK TABLE ... IN SHARE ROW EXCLUSIVE MODE`` so no insert can land
       between reading ``max(key)`` and rewriting the sequence. The mode
       conflicts with itself, so concurrent guards on one table serialize.
    3. One statement reads max(key) and the sequence state and calls
       ``setval(seq, max_id + 1, false)`` when needed.

    The lock is released when the guard's transaction commits, before the
    caller's insert runs.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        target: SequenceTarget,
        *,
        lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS,
    ):
        self.engine = engine
        self.target = target
        self.lock_timeout_ms = lock_timeout_ms

    async def check(self, *, force: bool = False) -> SequenceCheckResult:
        """Best-effort check. Failures are logged and returned, never raised."""
        try:
            return await self.inspect_and_repair(force=force)
        except SequenceGuardError as e:
            logger.warning(
                "Sequence check failed, continuing without repair",
                target=str(self.target),
                force=force,
                error_type=type(e).__name__,
                error=str(e),
            )
            return SequenceCheckResult(outcome=SequenceCheckOutcome.FAILED, error=e)

    async def inspect_and_repair(self, *, force: bool = False) -> SequenceCheckResult:
        """Check the sequence and repair it if needed.

        Raises:
            SequenceResolutionFailure: The sequence lookup failed.
            SequenceReadFailure: The table lock or the sequence state could not be obtained.
            SequenceRepairFailure: The check-and-repair statement failed.
        """
        try:
            async with self.engine.begin() as conn:
                sequence_name = await self._resolve_sequence(conn)
                if sequence_name is None:
                    logger.debug("No sequence backs key column, skipping", target=str(self.target))
                    return SequenceCheckResult(outcome=SequenceCheckOutcome.NO_SEQUENCE)

                await self._lock_table(conn)
                row = await self._check_and_repair(conn, sequence_name, force=force)
        except DBAPIError as e:
            # Connect/commit failures outside the individual steps
            raise SequenceReadFailure(
                f"Sequence check could not reach the store: {e.orig or e}",
                table=self.target.table,
                column=self.target.key_column,
            ) from e

        state = SequenceState(
            last_value=int(row["last_value"]),
            is_called=bool(row["is_called"]),
            start_value=int(row["start_value"]),
        )
        max_id = int(row["max_id"])
        repaired_to = row["repaired_to"]
        decision = decide_repair(state, max_id, force=force)

        if (repaired_to is not None) != (decision in (RepairDecision.REPAIR, RepairDecision.FORCED_REPAIR)):
            logger.warning(
                "Sequence repair disagrees with expected decision",
                target=str(self.target),
                decision=decision.value,
                repaired_to=repaired_to,
            )

        if repaired_to is not None:
            logger.info(
                "Repaired primary key sequence",
                target=str(self.target),
                sequence=sequence_name,
                forced=force,
                max_id=max_id,
                previous_last_value=state.last_value,
                previous_is_called=state.is_called,
                next_value=int(repaired_to),
            )
            outcome = SequenceCheckOutcome.REPAIRED
        elif decision == RepairDecision.SKIP_FRESH:
            outcome = SequenceCheckOutcome.SKIPPED_FRESH
        else:
            outcome = SequenceCheckOutcome.HEALTHY

        return SequenceCheckResult(
            outcome=outcome,
            sequence_name=sequence_name,
            max_id=max_id,
            state=state,
            repaired_to=int(repaired_to) if repaired_to is not None else None,
        )

    def _quoted_table(self, conn: AsyncConnection) -> str:
        preparer = conn.dialect.identifier_preparer
        table = preparer.quote(self.target.table)
        if self.target.schema:
            return f"{preparer.quote_schema(self.target.schema)}.{table}"
        return table

    async def _resolve_sequence(self, conn: AsyncConnection) -> str | None:
        try:
            result = await conn.execute(
                RESOLVE_SEQUENCE_SQL,
                {"table_name": self._quoted_table(conn), "column_name": self.target.key_column},
            )
            sequence_name: str | None = result.scalar_one_or_none()
        except DBAPIError as e:
            raise SequenceResolutionFailure(
                f"Could not resolve key sequence: {e.orig or e}",
                table=self.target.table,
                column=self.target.key_column,
            ) from e
        return sequence_name

    async def _lock_table(self, conn: AsyncConnection) -> None:
        try:
            # SET cannot take bind parameters; the timeout is an int we own
            await conn.execute(text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'"))
            await conn.execute(text(f"LOCK TABLE {self._quoted_table(conn)} IN SHARE ROW EXCLUSIVE MODE"))
        except DBAPIError as e:
            raise SequenceReadFailure(
                f"Could not lock table for sequence check: {e.orig or e}",
                table=self.target.table,
                column=self.target.key_column,
            ) from e

    async def _check_and_repair(self, conn: AsyncConnection, sequence_name: str, *, force: bool) -> Any:
        preparer = conn.dialect.identifier_preparer
        # sequence_name comes back from pg_get_serial_sequence already quoted
        statement = text(
            CHECK_AND_REPAIR_SQL.format(
                column=preparer.quote(self.target.key_column),
                table=self._quoted_table(conn),
                sequence=sequence_name,
            )
        ).bindparams(bindparam("force", type_=Boolean))
        try:
            result = await conn.execute(statement, {"sequence_name": sequence_name, "force": force})
            row = result.mappings().one_or_none()
        except DBAPIError as e:
            raise SequenceRepairFailure(
                f"Sequence check-and-repair statement failed: {e.orig or e}",
                table=self.target.table,
                column=self.target.key_column,
            ) from e
        if row is None:
            raise SequenceReadFailure(
                f"Sequence {sequence_name} returned no state",
                table=self.target.table,
                column=self.target.key_column,
            )
        return row
