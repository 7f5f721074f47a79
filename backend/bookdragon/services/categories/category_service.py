"""Category management service.

Category inserts go through InsertWithRetry: the Categories key sequence is
checked before every insert and force-repaired once after a primary-key
conflict, so sequence drift never reaches the user.
"""

from typing import Any

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import select

from bookdragon.config import settings
from bookdragon.db.insert_retry import InsertWithRetry, SequenceChecker, pg_error_details
from bookdragon.db.sequence_guard import SequenceGuard, SequenceTarget
from bookdragon.models.category import (
    CATEGORY_DESCRIPTION_MAX_LENGTH,
    CATEGORY_NAME_MAX_LENGTH,
    Category,
)
from bookdragon.services.categories.exceptions import CategoryNotFound, CategorySaveError
from bookdragon.services.exceptions import ValidationError

logger = structlog.get_logger(__name__)

CATEGORY_SEQUENCE_TARGET = SequenceTarget.for_model(Category)

DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    ("Fantasy", "Magical worlds and epic quests"),
    ("Science Fiction", "Futuristic tech and space adventures"),
    ("Mystery", "Whodunits and detective tales"),
    ("Thriller", "Edge-of-your-seat suspense"),
    ("Romance", "Love stories and relationships"),
    ("Historical", "Stories set in the past"),
    ("Horror", "Frightening and supernatural"),
    ("Non-Fiction", "Real events and factual works"),
    ("Biography", "Life stories of notable people"),
    ("Young Adult", "Fiction aimed at teen readers"),
]


def normalize_category_fields(name: str | None, description: str | None) -> tuple[str, str | None]:
    """Trim and validate category input. Empty descriptions become None."""
    name = (name or "").strip()
    description = (description or "").strip() or None

    if not name:
        raise ValidationError("Name is required.", field="name")
    if len(name) > CATEGORY_NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be at most {CATEGORY_NAME_MAX_LENGTH} characters.", field="name")
    if description is not None and len(description) > CATEGORY_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description must be at most {CATEGORY_DESCRIPTION_MAX_LENGTH} characters.",
            field="description",
        )
    return name, description


class CategoryService:
    """Service for category management operations."""

    def __init__(self, session: AsyncSession, guard: SequenceChecker | None = None):
        self.session = session
        self.guard = guard

    @classmethod
    def for_session(cls, session: AsyncSession) -> "CategoryService":
        """Build the service with a sequence guard on the session's engine (if enabled)."""
        guard = None
        if settings.sequence_guard_enabled and isinstance(session.bind, AsyncEngine):
            guard = SequenceGuard(session.bind, CATEGORY_SEQUENCE_TARGET)
        return cls(session, guard)

    async def list_categories(self) -> list[Category]:
        """List all categories ordered by name."""
        result = await self.session.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def get_category(self, category_id: int) -> Category:
        category = await self.session.get(Category, category_id)
        if category is None:
            raise CategoryNotFound()
        return category

    async def category_exists(self, category_id: int) -> bool:
        statement = select(func.count()).select_from(Category).where(Category.id == category_id)
        result = await self.session.execute(statement)
        return (result.scalar() or 0) > 0

    async def create_category(self, name: str | None, description: str | None = None) -> Category:
        """Create a category, healing the key sequence if it drifted.

        Raises:
            ValidationError: Invalid name/description (nothing is sent to the store).
            CategorySaveError: The insert failed, including after repair and retry.
        """
        name, description = normalize_category_fields(name, description)
        logger.info(
            "Creating category",
            name=name,
            description_length=len(description) if description else 0,
        )
        category = Category(name=name, description=description)

        async def insert() -> Category:
            self.session.add(category)
            try:
                await self.session.commit()
            except SQLAlchemyError:
                await self.session.rollback()
                raise
            return category

        result = await InsertWithRetry(self.guard, CATEGORY_SEQUENCE_TARGET).run(insert)
        if result.failure is not None:
            self._log_save_failure("create", result.failure.error, category, kind=result.failure.kind.value)
            raise CategorySaveError("A database error occurred saving the category.") from result.failure.error

        logger.info("Created category", category_id=category.id, name=category.name, attempts=result.attempts)
        return category

    async def update_category(self, category_id: int, name: str | None, description: str | None = None) -> Category:
        """Update name/description of an existing category."""
        name, description = normalize_category_fields(name, description)
        category = await self.get_category(category_id)
        category.name = name
        category.description = description

        try:
            await self.session.commit()
        except StaleDataError:
            await self.session.rollback()
            if not await self.category_exists(category_id):
                logger.warning("Category disappeared during update", category_id=category_id)
                raise CategoryNotFound() from None
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            self._log_save_failure("update", e, category)
            raise CategorySaveError("A database error occurred updating the category.") from e

        logger.info("Updated category", category_id=category.id, name=category.name)
        return category

    async def delete_category(self, category_id: int) -> None:
        """Delete a category and, through the foreign key, its books. Missing categories are ignored."""
        category = await self.session.get(Category, category_id)
        if category is not None:
            await self.session.delete(category)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            if category is not None:
                self._log_save_failure("delete", e, category)
            raise CategorySaveError("A database error occurred deleting the category.") from e
        logger.info("Deleted category", category_id=category_id, existed=category is not None)

    async def seed_categories(self) -> int:
        """Insert the default categories into an empty table. Returns rows inserted."""
        count_result = await self.session.execute(select(func.count()).select_from(Category))
        if (count_result.scalar() or 0) > 0:
            logger.debug("Categories already present, skipping seed")
            return 0

        self.session.add_all([Category(name=name, description=desc) for name, desc in DEFAULT_CATEGORIES])
        await self.session.commit()
        logger.info("Seeded default categories", count=len(DEFAULT_CATEGORIES))

        if self.guard is not None:
            await self.guard.check()
        return len(DEFAULT_CATEGORIES)

    def _log_save_failure(self, operation: str, error: BaseException, category: Category, **extra: Any) -> None:
        logger.error(
            "Category save failed",
            operation=operation,
            category_id=category.id,
            name=category.name,
            error_type=type(error).__name__,
            **pg_error_details(error),
            **extra,
        )
