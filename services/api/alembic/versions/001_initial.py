"""Initial schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- dv_users ---
    op.create_table(
        "dv_users",
        sa.Column("identity_id", sa.String(255), primary_key=True),
        sa.Column("team_id", sa.String(255), nullable=True),
        sa.Column("user_token", sa.String(128), nullable=False),
        sa.Column("is_guest", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("guest_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("encrypted_access_token", sa.LargeBinary, nullable=True),
        sa.Column("encrypted_refresh_token", sa.LargeBinary, nullable=True),
        sa.Column("token_expires_in", sa.Integer, nullable=True),
        sa.Column("token_obtained_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token_type", sa.String(32), nullable=True),
        sa.Column("token_scope", sa.Text, nullable=True),
        sa.Column("habits", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("packages", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_dv_users_user_token", "dv_users", ["user_token"], unique=True)

    # --- dv_pkce_states ---
    op.create_table(
        "dv_pkce_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column("code_verifier", sa.String(128), nullable=False),
        sa.Column("poll_token", sa.String(128), nullable=True),
        sa.Column("return_to", sa.Text, nullable=True),
        sa.Column("origin", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_dv_pkce_states_created_at", "dv_pkce_states", ["created_at"])

    # --- dv_oauth_poll_tokens ---
    op.create_table(
        "dv_oauth_poll_tokens",
        sa.Column("poll_token", sa.String(128), primary_key=True),
        sa.Column("user_token", sa.String(128), nullable=True),
        sa.Column("identity_id", sa.String(255), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # --- dv_gift_codes ---
    op.create_table(
        "dv_gift_codes",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("duration_days", sa.Integer, nullable=False, server_default="30"),
        sa.Column("max_uses", sa.Integer, nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("used_count <= max_uses", name="ck_gift_code_usage"),
    )

    # --- dv_gift_code_redemptions ---
    op.create_table(
        "dv_gift_code_redemptions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(64), sa.ForeignKey("dv_gift_codes.code", ondelete="CASCADE"), nullable=False),
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_dv_gift_code_redemptions_code", "dv_gift_code_redemptions", ["code"])
    op.create_index("ix_dv_gift_code_redemptions_identity_id", "dv_gift_code_redemptions", ["identity_id"])
    op.create_unique_constraint("uq_gift_code_identity", "dv_gift_code_redemptions", ["code", "identity_id"])

    # --- dv_user_settings ---
    op.create_table(
        "dv_user_settings",
        sa.Column("identity_id", sa.String(255), primary_key=True),
        sa.Column("home_timezone", sa.String(64), nullable=True),
        sa.Column("gender", sa.String(32), nullable=False, server_default="prefer_not_to_say"),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("weight_kg", sa.Float, nullable=True),
        sa.Column("height_cm", sa.Float, nullable=True),
        sa.Column("date_of_birth", sa.Date, nullable=True),
        sa.Column("subscription_plan_id", sa.String(64), nullable=True),
        sa.Column("subscription_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("subscription_source", sa.String(32), nullable=True),
        sa.Column("subscription_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # --- dv_boards ---
    op.create_table(
        "dv_boards",
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("board_id", sa.String(255), nullable=False),
        sa.Column("board_json", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("identity_id", "board_id", name="pk_dv_boards"),
    )

    # --- dv_habit_completions ---
    op.create_table(
        "dv_habit_completions",
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("board_id", sa.String(255), nullable=False),
        sa.Column("component_id", sa.String(255), nullable=False),
        sa.Column("habit_id", sa.String(255), nullable=False),
        sa.Column("logical_date", sa.Date, nullable=False),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint(
            "identity_id", "board_id", "component_id", "habit_id", "logical_date",
            name="pk_dv_habit_completions",
        ),
    )
    op.create_index("ix_dv_habit_completions_logical_date", "dv_habit_completions", ["logical_date"])

    # --- dv_checklist_events ---
    op.create_table(
        "dv_checklist_events",
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("board_id", sa.String(255), nullable=False),
        sa.Column("component_id", sa.String(255), nullable=False),
        sa.Column("task_id", sa.String(255), nullable=False),
        sa.Column("item_id", sa.String(255), nullable=False),
        sa.Column("logical_date", sa.Date, nullable=False),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint(
            "identity_id", "board_id", "component_id", "task_id", "item_id", "logical_date",
            name="pk_dv_checklist_events",
        ),
    )
    op.create_index("ix_dv_checklist_events_logical_date", "dv_checklist_events", ["logical_date"])

    # --- dv_export_jobs ---
    export_state = postgresql.ENUM(
        "submitted", "polling", "completed", "failed", "timed_out", name="export_state"
    )
    op.create_table(
        "dv_export_jobs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("identity_id", sa.String(255), nullable=False),
        sa.Column("package_id", sa.String(64), nullable=True),
        sa.Column("design_id", sa.String(255), nullable=False),
        sa.Column("format", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("provider_job_id", sa.String(255), nullable=True),
        sa.Column("state", export_state, nullable=False, server_default="submitted"),
        sa.Column("provider_status", sa.String(32), nullable=True),
        sa.Column("urls", postgresql.JSONB, nullable=True),
        sa.Column("error", postgresql.JSONB, nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_dv_export_jobs_identity_id", "dv_export_jobs", ["identity_id"])

    # --- dv_template_images ---
    op.create_table(
        "dv_template_images",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("content_type", sa.String(64), nullable=False, server_default="image/png"),
        sa.Column("bytes", sa.LargeBinary, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("dv_template_images")
    op.drop_table("dv_export_jobs")
    op.execute("DROP TYPE IF EXISTS export_state")
    op.drop_table("dv_checklist_events")
    op.drop_table("dv_habit_completions")
    op.drop_table("dv_boards")
    op.drop_table("dv_user_settings")
    op.drop_table("dv_gift_code_redemptions")
    op.drop_table("dv_gift_codes")
    op.drop_table("dv_oauth_poll_tokens")
    op.drop_table("dv_pkce_states")
    op.drop_table("dv_users")
