"""Enum definitions for database models."""

from enum import IntEnum, StrEnum


class BookType(IntEnum):
    """Format of a catalogued book. Stored as its integer value."""

    PHYSICAL = 0
    EBOOK = 1
    AUDIOBOOK = 2


class BookSortField(StrEnum):
    """Columns the book list can be ordered by."""

    TITLE = "title"
    AUTHOR = "author"
    PUBLISHED_DATE = "published_date"
    RATING = "rating"
    ADDED = "added"
