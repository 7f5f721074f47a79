"""Category database model."""

from sqlalchemy import Column, Identity, Integer, PrimaryKeyConstraint
from sqlmodel import Field, SQLModel

# Named primary key; insert conflicts are classified by this name
CATEGORY_PK_CONSTRAINT = PrimaryKeyConstraint(name="PK_Categories")

CATEGORY_NAME_MAX_LENGTH = 100
CATEGORY_DESCRIPTION_MAX_LENGTH = 200


class Category(SQLModel, table=True):
    """Book category ("Fantasy", "Mystery", ...)."""

    __tablename__ = "Categories"
    __table_args__ = (CATEGORY_PK_CONSTRAINT,)

    # Identity column: its backing sequence can drift behind max("Id")
    # after rows are inserted with explicit keys (imports, restores)
    id: int | None = Field(
        default=None,
        sa_column=Column("Id", Integer, Identity(always=False), primary_key=True),
    )
    name: str = Field(max_length=CATEGORY_NAME_MAX_LENGTH, sa_column_kwargs={"name": "Name"})
    description: str | None = Field(
        default=None,
        max_length=CATEGORY_DESCRIPTION_MAX_LENGTH,
        sa_column_kwargs={"name": "Description"},
    )
