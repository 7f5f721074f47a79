"""Book catalogue service.

Every read and write is scoped to the owning user.
"""

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from bookdragon.config import settings
from bookdragon.db.insert_retry import pg_error_details
from bookdragon.models.book import RATING_REASON_MAX_LENGTH, Book
from bookdragon.models.enums import BookSortField
from bookdragon.services.books.exceptions import BookNotFound, BookSaveError
from bookdragon.services.exceptions import ValidationError
from bookdragon.services.images import CoverUpload

logger = structlog.get_logger(__name__)

# Fields a caller may change through update_book()
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "author",
        "genre",
        "published_date",
        "description",
        "page_count",
        "cover_image_url",
        "category_id",
        "book_type",
        "rating",
        "rating_reason",
        "have_read",
        "is_wishlist",
    }
)

SORT_COLUMNS: dict[BookSortField, Any] = {
    BookSortField.TITLE: Book.title,
    BookSortField.AUTHOR: Book.author,
    BookSortField.PUBLISHED_DATE: Book.published_date,
    BookSortField.RATING: Book.rating,
    BookSortField.ADDED: Book.id,
}


@dataclass
class BookQuery:
    """Filter, sort and paging options for list_books()."""

    category_id: int | None = None
    search: str | None = None
    have_read: bool | None = None
    is_wishlist: bool | None = None
    sort: BookSortField = BookSortField.TITLE
    descending: bool = False
    page: int = 1
    page_size: int = field(default_factory=lambda: settings.books_page_size)


@dataclass
class PagedBookList:
    """One page of books plus paging info."""

    books: list[Book]
    page_number: int
    total_pages: int
    total: int


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def validate_book(book: Book) -> None:
    if not (book.title or "").strip():
        raise ValidationError("Title is required.", field="title")
    if book.category_id is None or book.category_id < 1:
        raise ValidationError("Please select a category.", field="category_id")
    if book.rating is not None and not 0 <= book.rating <= 5:
        raise ValidationError("Rating must be between 0 and 5.", field="rating")
    if book.rating_reason and len(book.rating_reason) > RATING_REASON_MAX_LENGTH:
        raise ValidationError(
            f"Rating reason must be at most {RATING_REASON_MAX_LENGTH} characters.",
            field="rating_reason",
        )
    if book.page_count < 0:
        raise ValidationError("Page count cannot be negative.", field="page_count")


class BookService:
    """Service for the per-user book catalogue."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _owned(self, user_id: str) -> Any:
        return select(Book).where(Book.user_id == user_id)

    async def list_books(self, user_id: str, query: BookQuery | None = None) -> PagedBookList:
        """Filter, sort and paginate the user's books."""
        query = query or BookQuery()
        filters: list[Any] = [Book.user_id == user_id]
        if query.category_id is not None:
            filters.append(Book.category_id == query.category_id)
        if query.have_read is not None:
            filters.append(Book.have_read == query.have_read)
        if query.is_wishlist is not None:
            filters.append(Book.is_wishlist == query.is_wishlist)
        if query.search and query.search.strip():
            pattern = f"%{query.search.strip()}%"
            filters.append(or_(Book.title.ilike(pattern), Book.author.ilike(pattern)))  # type: ignore[attr-defined,union-attr]

        count_statement = select(func.count()).select_from(Book).where(*filters)
        count_result = await self.session.execute(count_statement)
        total = count_result.scalar() or 0

        page_size = max(query.page_size, 1)
        total_pages = max(math.ceil(total / page_size), 1)
        page = min(max(query.page, 1), total_pages)

        sort_column = SORT_COLUMNS[query.sort]
        order = sort_column.desc().nulls_last() if query.descending else sort_column.asc().nulls_last()
        statement = (
            select(Book)
            .where(*filters)
            .order_by(order, Book.id)  # type: ignore[arg-type]
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(statement)
        books = list(result.scalars().all())

        return PagedBookList(books=books, page_number=page, total_pages=total_pages, total=total)

    async def search_books(self, user_id: str, term: str) -> list[Book]:
        """Case-insensitive title/author search within the user's books."""
        pattern = f"%{term.strip()}%"
        statement = (
            self._owned(user_id)
            .where(or_(Book.title.ilike(pattern), Book.author.ilike(pattern)))  # type: ignore[attr-defined,union-attr]
            .order_by(Book.title)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def get_book(self, user_id: str, book_id: int) -> Book:
        statement = self._owned(user_id).where(Book.id == book_id)
        result = await self.session.execute(statement)
        book = result.scalars().first()
        if not book:
            raise BookNotFound()
        return book

    async def add_book(self, book: Book, cover: CoverUpload | None = None) -> Book:
        """Add a book. A naive published date is taken as UTC."""
        book.title = (book.title or "").strip()
        validate_book(book)
        book.published_date = ensure_utc(book.published_date)
        if cover is not None:
            book.image_data = cover.data
            book.image_type = cover.content_type

        self.session.add(book)
        await self._commit("create", book)
        logger.info("Added book", book_id=book.id, user_id=book.user_id, category_id=book.category_id)
        return book

    async def update_book(
        self,
        user_id: str,
        book_id: int,
        changes: dict[str, Any],
        cover: CoverUpload | None = None,
    ) -> Book:
        """Apply field changes; the stored cover is kept unless a new one is uploaded."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        book = await self.get_book(user_id, book_id)
        # Validate a detached copy so a rejected update leaves the stored book clean
        candidate = Book(**{**book.model_dump(), **changes})
        candidate.title = (candidate.title or "").strip()
        validate_book(candidate)

        for key in changes:
            setattr(book, key, getattr(candidate, key))
        book.title = candidate.title
        book.published_date = ensure_utc(candidate.published_date)
        if cover is not None:
            book.image_data = cover.data
            book.image_type = cover.content_type

        await self._commit("update", book)
        logger.info("Updated book", book_id=book.id, user_id=user_id, fields=sorted(changes))
        return book

    async def delete_book(self, user_id: str, book_id: int) -> None:
        book = await self.get_book(user_id, book_id)
        await self.session.delete(book)
        await self.session.commit()
        logger.info("Deleted book", book_id=book_id, user_id=user_id)

    async def _commit(self, operation: str, book: Book) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Book save failed",
                operation=operation,
                book_id=book.id,
                title=book.title,
                error_type=type(e).__name__,
                **pg_error_details(e),
            )
            raise BookSaveError("A database error occurred saving the book.") from e
