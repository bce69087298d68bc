"""add reward links and completions

Revision ID: 0002_add_reward_links
Revises: 0001_init_core
Create Date: 2026-10-19T14:03:27.114520Z
"""
from alembic import op
import sqlalchemy as sa

revision = "0002_add_reward_links"
down_revision = "0001_init_core"
branch_labels = None
depends_on = None


def upgrade():
    if op.get_bind().dialect.name == "postgresql":
        op.execute("ALTER TYPE ledgerentrytype ADD VALUE IF NOT EXISTS 'reward'")

    op.create_table(
        "reward_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("coins", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "reward_completions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("link_id", sa.Integer(), sa.ForeignKey("reward_links.id", ondelete="SET NULL"), nullable=True),
        sa.Column("link_title", sa.String(length=100), nullable=False),
        sa.Column("coins_earned", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reward_completions_user_id", "reward_completions", ["user_id"])
    op.create_index("ix_reward_completions_link_id", "reward_completions", ["link_id"])


def downgrade():
    # Postgres cannot drop an enum value; 'reward' stays on ledgerentrytype.
    op.drop_index("ix_reward_completions_link_id", table_name="reward_completions")
    op.drop_index("ix_reward_completions_user_id", table_name="reward_completions")
    op.drop_table("reward_completions")
    op.drop_table("reward_links")
