from bookdragon.services.categories.category_service import CATEGORY_SEQUENCE_TARGET, CategoryService
from bookdragon.services.categories.exceptions import CategoryNotFound, CategorySaveError

__all__ = [
    "CATEGORY_SEQUENCE_TARGET",
    "CategoryNotFound",
    "CategorySaveError",
    "CategoryService",
]
