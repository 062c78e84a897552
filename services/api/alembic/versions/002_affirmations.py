"""Add affirmations.

Revision ID: 002_affirmations
Revises: 001_initial
Create Date: 2026-10-19 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op

revision = "002_affirmations"
down_revision = "001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "dv_affirmations",
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("affirmation_id", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("is_pinned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_custom", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("identity_id", "affirmation_id", name="pk_dv_affirmations"),
    )
    op.create_index("ix_dv_affirmations_identity_category", "dv_affirmations", ["identity_id", "category"])


def downgrade() -> None:
    op.drop_index("ix_dv_affirmations_identity_category", table_name="dv_affirmations")
    op.drop_table("dv_affirmations")
