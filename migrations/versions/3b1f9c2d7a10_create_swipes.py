"""create swipes

Revision ID: 3b1f9c2d7a10
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1f9c2d7a10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the swipe archive table."""
    op.create_table(
        "swipes",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("card_id", sa.Integer(), nullable=False),
        sa.Column("door_id", sa.Text(), nullable=False),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_swipes_card_id", "swipes", ["card_id"])
    op.create_index("idx_swipes_time", "swipes", ["time"])


def downgrade() -> None:
    """Drop the swipe archive table."""
    op.drop_index("idx_swipes_time", table_name="swipes")
    op.drop_index("idx_swipes_card_id", table_name="swipes")
    op.drop_table("swipes")
