"""Add sealed signature column to users.

Revision ID: b8d4f0e2a3c5
Revises: a7c3e9d1f2b4
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b8d4f0e2a3c5"
down_revision: Union[str, Sequence[str], None] = "a7c3e9d1f2b4"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _column_exists(table: str, column: str) -> bool:
    return column in {c["name"] for c in sa.inspect(op.get_bind()).get_columns(table)}


def upgrade() -> None:
    if not _column_exists("users", "signature"):
        op.add_column("users", sa.Column("signature", sa.Text(), nullable=True))


def downgrade() -> None:
    if _column_exists("users", "signature"):
        with op.batch_alter_table("users") as batch_op:
            batch_op.drop_column("signature")
