"""Insert with one sequence repair and one retry on primary-key conflict.

Flow:
    check(force=False) -> insert
        success            -> value
        PK conflict        -> check(force=True) -> insert once more
                                  success -> value
                                  failure -> RETRY_EXHAUSTED (both errors kept)
        any other failure  -> OTHER, no repair, no retry

Usage:
    inserter = InsertWithRetry(guard, SequenceTarget.for_model(Category))
    result = await inserter.run(insert_category)
    category = result.unwrap()
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bookdragon.db.exceptions import (
    InsertFailedError,
    PrimaryKeyConflictError,
    RetryExhaustedError,
)
from bookdragon.db.sequence_guard import SequenceCheckResult, SequenceTarget

logger = structlog.get_logger(__name__)

T = TypeVar("T")

PG_UNIQUE_VIOLATION = "23505"


class SequenceChecker(Protocol):
    """Anything that can check (and repair) a key sequence. See SequenceGuard."""

    async def check(self, *, force: bool = False) -> SequenceCheckResult: ...


class InsertErrorKind(StrEnum):
    """Why an insert ended in failure."""

    PRIMARY_KEY_CONFLICT = "primary_key_conflict"
    OTHER = "other"
    RETRY_EXHAUSTED = "retry_exhausted"


def _error_sources(exc: BaseException) -> list[Any]:
    """DBAPI exception, its driver cause and psycopg diagnostics, in lookup order."""
    orig = getattr(exc, "orig", None)
    sources: list[Any] = []
    for candidate in (orig, getattr(orig, "__cause__", None), getattr(orig, "diag", None)):
        if candidate is not None:
            sources.append(candidate)
    return sources


def _first_attr(exc: BaseException, *names: str) -> Any:
    for source in _error_sources(exc):
        for name in names:
            value = getattr(source, name, None)
            if value:
                return value
    return None


def pg_error_details(exc: BaseException) -> dict[str, Any]:
    """Extract Postgres diagnostics (asyncpg or psycopg) for structured logging."""
    return {
        "sqlstate": _first_attr(exc, "sqlstate", "pgcode"),
        "constraint": _first_attr(exc, "constraint_name"),
        "table": _first_attr(exc, "table_name"),
        "column": _first_attr(exc, "column_name"),
        "detail": _first_attr(exc, "detail", "message_detail"),
        "message": _first_attr(exc, "message", "message_primary") or str(getattr(exc, "orig", exc)),
    }


def classify_insert_error(exc: BaseException, target: SequenceTarget) -> InsertErrorKind:
    """Classify an insert failure against the guarded primary-key constraint.

    Only a unique violation (SQLSTATE 23505) on ``target.constraint_name`` is
    a primary-key conflict. Everything else, including unique violations on
    other constraints, is OTHER.
    """
    if not isinstance(exc, IntegrityError):
        return InsertErrorKind.OTHER

    sqlstate = _first_attr(exc, "sqlstate", "pgcode")
    if sqlstate is not None and sqlstate != PG_UNIQUE_VIOLATION:
        return InsertErrorKind.OTHER

    constraint = _first_attr(exc, "constraint_name")
    if constraint is not None:
        if constraint == target.constraint_name:
            return InsertErrorKind.PRIMARY_KEY_CONFLICT
        return InsertErrorKind.OTHER

    # Driver without structured diagnostics: Postgres quotes the constraint name
    if f'"{target.constraint_name}"' in str(exc):
        return InsertErrorKind.PRIMARY_KEY_CONFLICT
    return InsertErrorKind.OTHER


@dataclass
class InsertFailure:
    """Final failure of an insert. ``first_error`` is set only after a retry."""

    kind: InsertErrorKind
    error: BaseException
    first_error: BaseException | None = None

    def __post_init__(self) -> None:
        if self.kind == InsertErrorKind.RETRY_EXHAUSTED and self.first_error is None:
            raise ValueError("RETRY_EXHAUSTED failures must carry the first attempt's error")


@dataclass
class InsertResult(Generic[T]):
    """Typed outcome of InsertWithRetry.run()."""

    value: T | None = None
    failure: InsertFailure | None = None
    attempts: int = 0
    repairs: list[SequenceCheckResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        """Return the inserted value or raise the matching DatabaseError."""
        if self.failure is None:
            return self.value  # type: ignore[return-value]
        failure = self.failure
        if failure.kind == InsertErrorKind.RETRY_EXHAUSTED and failure.first_error is not None:
            raise RetryExhaustedError(
                f"Insert failed after sequence repair and retry: {failure.error}",
                first_error=failure.first_error,
                retry_error=failure.error,
            ) from failure.error
        if failure.kind == InsertErrorKind.PRIMARY_KEY_CONFLICT:
            raise PrimaryKeyConflictError(
                f"Insert failed on primary key conflict: {failure.error}", error=failure.error
            ) from failure.error
        raise InsertFailedError(f"Insert failed: {failure.error}", error=failure.error) from failure.error


class InsertWithRetry:
    """Run an insert with a sequence check before it and one retry after a PK conflict.

    The ``insert`` callable must perform the insert and commit, and must leave
    the session usable when it raises (roll back before re-raising).
    Without a guard, no check runs and PK conflicts are not retried.
    """

    def __init__(self, guard: SequenceChecker | None, target: SequenceTarget):
        self.guard = guard
        self.target = target

    async def run(self, insert: Callable[[], Awaitable[T]]) -> InsertResult[T]:
        result: InsertResult[T] = InsertResult()

        if self.guard is not None:
            result.repairs.append(await self.guard.check(force=False))

        first_error = await self._attempt(insert, result)
        if first_error is None:
            return result

        kind = classify_insert_error(first_error, self.target)
        if kind != InsertErrorKind.PRIMARY_KEY_CONFLICT or self.guard is None:
            result.failure = InsertFailure(kind=kind, error=first_error)
            return result

        logger.warning(
            "Primary key conflict on insert, forcing sequence repair and retrying once",
            target=str(self.target),
            constraint=self.target.constraint_name,
            error=str(first_error),
        )
        result.repairs.append(await self.guard.check(force=True))

        retry_error = await self._attempt(insert, result)
        if retry_error is None:
            logger.info("Insert succeeded after sequence repair", target=str(self.target))
            return result

        logger.error(
            "Insert failed after sequence repair and retry",
            target=str(self.target),
            first_error=str(first_error),
            retry_error=str(retry_error),
            **pg_error_details(retry_error),
        )
        result.failure = InsertFailure(
            kind=InsertErrorKind.RETRY_EXHAUSTED,
            error=retry_error,
            first_error=first_error,
        )
        return result

    async def _attempt(self, insert: Callable[[], Awaitable[T]], result: InsertResult[T]) -> SQLAlchemyError | None:
        result.attempts += 1
        try:
            result.value = await insert()
        except SQLAlchemyError as e:
            return e
        return None
