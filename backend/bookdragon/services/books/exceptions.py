"""Book domain exceptions."""

from bookdragon.services.exceptions import NotFoundError, SaveError


class BookNotFound(NotFoundError):
    """Book not found (or not owned by the requesting user)."""

    pass


class BookSaveError(SaveError):
    """Book could not be saved."""

    pass
