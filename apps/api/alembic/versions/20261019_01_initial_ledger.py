"""Initial ledger tables for the mart and accrual services.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ("NEW", "REGISTERED", "PROCESSING", "INVALID", "PROCESSED")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("login", sa.String(), nullable=False),
        sa.Column("current_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("withdrawn", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("current_balance >= 0", name="ck_users_current_balance_non_negative"),
        sa.CheckConstraint("withdrawn >= 0", name="ck_users_withdrawn_non_negative"),
    )
    op.create_index("ix_users_login", "users", ["login"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_orders_user_id_users"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="order_status_enum"),
            nullable=False,
            server_default="NEW",
        ),
        sa.Column("accrual", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_orders_number", "orders", ["number"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])

    op.create_table(
        "withdrawals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_withdrawals_user_id_users"),
            nullable=False,
        ),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("sum", sa.Numeric(14, 2), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_withdrawals_user_id", "withdrawals", ["user_id"])

    op.create_table(
        "accrual_orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("number", sa.String(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="accrual_order_status_enum"),
            nullable=False,
            server_default="REGISTERED",
        ),
        sa.Column("accrual", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("goods", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_accrual_orders_number", "accrual_orders", ["number"], unique=True)

    op.create_table(
        "reward_mechanics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("match", sa.String(), nullable=False),
        sa.Column("reward", sa.Numeric(12, 2), nullable=False),
        sa.Column("reward_type", sa.Enum("PERCENT", "POINTS", name="reward_type_enum"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_reward_mechanics_match", "reward_mechanics", ["match"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_reward_mechanics_match", table_name="reward_mechanics")
    op.drop_table("reward_mechanics")
    op.drop_index("ix_accrual_orders_number", table_name="accrual_orders")
    op.drop_table("accrual_orders")
    op.drop_index("ix_withdrawals_user_id", table_name="withdrawals")
    op.drop_table("withdrawals")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_index("ix_orders_number", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_users_login", table_name="users")
    op.drop_table("users")

    sa.Enum(name="reward_type_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="accrual_order_status_enum").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="order_status_enum").drop(op.get_bind(), checkfirst=True)
