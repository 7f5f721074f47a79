"""Database models."""

from sqlmodel import SQLModel

from bookdragon.models.book import Book
from bookdragon.models.category import Category
from bookdragon.models.enums import BookSortField, BookType

__all__ = [
    "SQLModel",
    "Book",
    "BookSortField",
    "BookType",
    "Category",
]
