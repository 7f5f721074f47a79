"""Base service exceptions.

These exceptions are raised by the service layer and should be caught
by the web layer and converted to appropriate responses.
"""


class ServiceError(Exception):
    """Base service exception."""

    pass


class NotFoundError(ServiceError):
    """Resource not found."""

    pass


class ValidationError(ServiceError):
    """Validation error."""

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class SaveError(ServiceError):
    """The store rejected a write. Shown to users as a generic "could not save"."""

    pass
