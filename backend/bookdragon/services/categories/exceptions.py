"""Category domain exceptions."""

from bookdragon.services.exceptions import NotFoundError, SaveError


class CategoryNotFound(NotFoundError):
    """Category not found."""

    pass


class CategorySaveError(SaveError):
    """Category could not be saved."""

    pass
