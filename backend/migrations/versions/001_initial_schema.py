"""Initial schema: Categories and Books.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Identity keys ("GENERATED BY DEFAULT") with named PK constraints;
    # insert conflicts are classified by constraint name
    op.create_table(
        "Categories",
        sa.Column("Id", sa.Integer(), sa.Identity(always=False), nullable=False),
        sa.Column("Name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("Description", sqlmodel.sql.sqltypes.AutoString(length=200), nullable=True),
        sa.PrimaryKeyConstraint("Id", name="PK_Categories"),
    )

    op.create_table(
        "Books",
        sa.Column("Id", sa.Integer(), sa.Identity(always=False), nullable=False),
        sa.Column("Title", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("Author", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("Genre", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("PublishedDate", sa.DateTime(timezone=True), nullable=False),
        sa.Column("Description", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("PageCount", sa.Integer(), nullable=False),
        sa.Column("CoverImageUrl", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("CategoryId", sa.Integer(), nullable=False),
        sa.Column("BookType", sa.Integer(), server_default="0", nullable=False),
        sa.Column("Rating", sa.Integer(), nullable=True),
        sa.Column("RatingReason", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("HaveRead", sa.Boolean(), nullable=False),
        sa.Column("IsWishlist", sa.Boolean(), nullable=False),
        sa.Column("ImageData", sa.LargeBinary(), nullable=True),
        sa.Column("ImageType", sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column("UserId", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.ForeignKeyConstraint(
            ["CategoryId"],
            ["Categories.Id"],
            name="FK_Books_Categories_CategoryId",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("Id", name="PK_Books"),
    )
    op.create_index(op.f("ix_Books_CategoryId"), "Books", ["CategoryId"], unique=False)
    op.create_index(op.f("ix_Books_UserId"), "Books", ["UserId"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_Books_UserId"), table_name="Books")
    op.drop_index(op.f("ix_Books_CategoryId"), table_name="Books")
    op.drop_table("Books")
    op.drop_table("Categories")
