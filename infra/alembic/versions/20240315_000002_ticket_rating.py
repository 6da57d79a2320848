"""Ticket ratings; presence moves to the realtime hub."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20240315_000002"
down_revision = "20240301_000001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("tickets", sa.Column("rating_score", sa.Integer(), nullable=True))
    op.add_column("tickets", sa.Column("rating_feedback", sa.Text(), nullable=True))
    op.add_column("tickets", sa.Column("rated_by", sa.String(length=255), nullable=True))
    op.add_column("tickets", sa.Column("rated_at", sa.TIMESTAMP(timezone=True), nullable=True))
    op.create_check_constraint(
        "ck_tickets_rating_score_range",
        "tickets",
        "rating_score IS NULL OR (rating_score BETWEEN 1 AND 5)",
    )
    op.drop_column("users", "is_online")


def downgrade() -> None:
    op.add_column(
        "users",
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.drop_constraint("ck_tickets_rating_score_range", "tickets", type_="check")
    op.drop_column("tickets", "rated_at")
    op.drop_column("tickets", "rated_by")
    op.drop_column("tickets", "rating_feedback")
    op.drop_column("tickets", "rating_score")
