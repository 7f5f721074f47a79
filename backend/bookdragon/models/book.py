"""Book database model."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Identity, Integer, LargeBinary, PrimaryKeyConstraint
from sqlmodel import Field, SQLModel

from bookdragon.models.enums import BookType
from bookdragon.models.types import IntEnumType


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


RATING_REASON_MAX_LENGTH = 500


class Book(SQLModel, table=True):
    """A book owned by (or wished for by) a single user."""

    __tablename__ = "Books"
    __table_args__ = (PrimaryKeyConstraint(name="PK_Books"),)

    id: int | None = Field(
        default=None,
        sa_column=Column("Id", Integer, Identity(always=False), primary_key=True),
    )
    title: str = Field(sa_column_kwargs={"name": "Title"})
    author: str | None = Field(default=None, sa_column_kwargs={"name": "Author"})
    genre: str | None = Field(default=None, sa_column_kwargs={"name": "Genre"})
    published_date: datetime = Field(
        default_factory=_utc_now,
        sa_column=Column("PublishedDate", DateTime(timezone=True), nullable=False),
    )
    description: str | None = Field(default=None, sa_column_kwargs={"name": "Description"})
    page_count: int = Field(default=0, sa_column_kwargs={"name": "PageCount"})
    cover_image_url: str | None = Field(default=None, sa_column_kwargs={"name": "CoverImageUrl"})

    # Deleting a category deletes its books
    category_id: int = Field(
        sa_column=Column(
            "CategoryId",
            Integer,
            ForeignKey("Categories.Id", name="FK_Books_Categories_CategoryId", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    book_type: BookType = Field(
        default=BookType.PHYSICAL,
        sa_column=Column("BookType", IntEnumType(BookType), nullable=False, server_default="0"),
    )
    rating: int | None = Field(default=None, sa_column_kwargs={"name": "Rating"})  # 0-5 stars
    rating_reason: str | None = Field(
        default=None,
        max_length=RATING_REASON_MAX_LENGTH,
        sa_column_kwargs={"name": "RatingReason"},
    )
    have_read: bool = Field(default=False, sa_column_kwargs={"name": "HaveRead"})
    is_wishlist: bool = Field(default=False, sa_column_kwargs={"name": "IsWishlist"})

    # Cover image bytes uploaded by the user (takes precedence over cover_image_url)
    image_data: bytes | None = Field(default=None, sa_column=Column("ImageData", LargeBinary, nullable=True))
    image_type: str | None = Field(default=None, sa_column_kwargs={"name": "ImageType"})

    # Owner (identity user id, managed outside this service)
    user_id: str = Field(index=True, sa_column_kwargs={"name": "UserId"})
