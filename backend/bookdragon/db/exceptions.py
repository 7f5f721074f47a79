"""Database-related exceptions."""


class SequenceGuardError(Exception):
    """Base class for key-sequence inspection/repair failures.

    Absorbed by SequenceGuard.check(); raised by inspect_and_repair().
    """

    def __init__(self, message: str, *, table: str, column: str):
        self.table = table
        self.column = column
        super().__init__(f"{message} ({table}.{column})")


class SequenceResolutionFailure(SequenceGuardError):
    """The sequence backing the key column could not be identified."""

    pass


class SequenceReadFailure(SequenceGuardError):
    """The sequence state could not be read."""

    pass


class SequenceRepairFailure(SequenceGuardError):
    """The atomic check-and-repair statement failed."""

    pass


class DatabaseError(Exception):
    """Base class for insert failures surfaced to callers."""

    pass


class InsertFailedError(DatabaseError):
    """Insert failed for a reason other than a key-sequence collision.

    Raised for NOT NULL / FK / other unique violations and connectivity errors.
    """

    def __init__(self, message: str, *, error: BaseException | None = None):
        self.error = error
        super().__init__(message)


class PrimaryKeyConflictError(InsertFailedError):
    """Insert failed because the generated primary key already exists."""

    pass


class RetryExhaustedError(InsertFailedError):
    """The single post-repair retry failed as well.

    Carries both failures for diagnosis.
    """

    def __init__(self, message: str, *, first_error: BaseException, retry_error: BaseException):
        self.first_error = first_error
        self.retry_error = retry_error
        super().__init__(message, error=retry_error)
