"""Resync key sequences after importing rows with explicit ids.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Data restored from the previous deployment keeps its original ids, which
    # leaves the identity sequences behind max("Id"). Move them to max + 1;
    # empty tables keep their fresh sequence.
    for table in ("Categories", "Books"):
        op.execute(
            f"""
            SELECT setval(pg_get_serial_sequence('"{table}"', 'Id'), max("Id") + 1, false)
            FROM "{table}"
            HAVING max("Id") IS NOT NULL
            """
        )


def downgrade() -> None:
    # Sequence positions are not restored
    pass
