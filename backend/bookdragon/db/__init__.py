"""Database package: sessions, key-sequence guard and insert retry."""

from bookdragon.db.insert_retry import InsertErrorKind, InsertResult, InsertWithRetry, classify_insert_error
from bookdragon.db.sequence_guard import (
    SequenceCheckOutcome,
    SequenceCheckResult,
    SequenceGuard,
    SequenceState,
    SequenceTarget,
    decide_repair,
)

__all__ = [
    "InsertErrorKind",
    "InsertResult",
    "InsertWithRetry",
    "SequenceCheckOutcome",
    "SequenceCheckResult",
    "SequenceGuard",
    "SequenceState",
    "SequenceTarget",
    "classify_insert_error",
    "decide_repair",
]
