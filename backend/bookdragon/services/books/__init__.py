from bookdragon.services.books.book_service import BookQuery, BookService, PagedBookList
from bookdragon.services.books.exceptions import BookNotFound, BookSaveError

__all__ = [
    "BookNotFound",
    "BookQuery",
    "BookSaveError",
    "BookService",
    "PagedBookList",
]
