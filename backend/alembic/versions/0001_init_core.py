"""init core tables

Revision ID: 0001_init_core
Revises: 
Create Date: 2026-10-19T09:12:41.508112Z
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("server_slots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("purchased_ram_mb", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purchased_cpu_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purchased_storage_mb", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("panel_user_id", sa.String(length=32), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("coins >= 0", name="ck_users_coins_non_negative"),
        sa.CheckConstraint("server_slots >= 1", name="ck_users_server_slots_min"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "servers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("remote_id", sa.String(length=32), nullable=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("ram_mb", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cpu_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("storage_mb", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("public_address", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_servers_user_id", "servers", ["user_id"])
    op.create_index("ix_servers_remote_id", "servers", ["remote_id"])

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "entry_type",
            sa.Enum("resource_purchase", "slot_purchase", "coin_adjustment", "resource_grant", name="ledgerentrytype"),
            nullable=False,
        ),
        sa.Column("resource_type", sa.String(length=16), nullable=True),
        sa.Column("resource_amount", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_ledger_transactions_user_id", "ledger_transactions", ["user_id"])

    op.create_table(
        "panel_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("panel_url", sa.String(length=255), nullable=False),
        sa.Column("api_key", sa.Text(), nullable=False),
        sa.Column("last_connected_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "panel_eggs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("egg_id", sa.Integer(), nullable=False),
        sa.Column("nest_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=191), nullable=False),
        sa.Column("docker_image", sa.String(length=255), nullable=True),
        sa.Column("startup_command", sa.Text(), nullable=True),
        sa.Column("environment_variables", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_panel_eggs_egg_id", "panel_eggs", ["egg_id"], unique=True)

    op.create_table(
        "panel_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("allocation_id", sa.Integer(), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("ip_alias", sa.String(length=255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("node_id", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_panel_allocations_allocation_id", "panel_allocations", ["allocation_id"], unique=True)

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("app_settings")
    op.drop_index("ix_panel_allocations_allocation_id", table_name="panel_allocations")
    op.drop_table("panel_allocations")
    op.drop_index("ix_panel_eggs_egg_id", table_name="panel_eggs")
    op.drop_table("panel_eggs")
    op.drop_table("panel_config")
    op.drop_index("ix_ledger_transactions_user_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_index("ix_servers_remote_id", table_name="servers")
    op.drop_index("ix_servers_user_id", table_name="servers")
    op.drop_table("servers")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
    sa.Enum(name="ledgerentrytype").drop(op.get_bind(), checkfirst=True)
