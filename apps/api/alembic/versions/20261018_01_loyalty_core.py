"""Create tenants, customers and the loyalty ledger tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


tier_level_enum = postgresql.ENUM(
    "bronze", "silver", "gold", "platinum", name="loyalty_tier_level", create_type=False
)
transaction_type_enum = postgresql.ENUM(
    "earned", "redeemed", "birthday_bonus", "adjusted", name="loyalty_points_transaction_type", create_type=False
)
reward_type_enum = postgresql.ENUM(
    "discount_percentage",
    "discount_fixed",
    "free_product",
    "points_multiplier",
    name="loyalty_reward_type",
    create_type=False,
)
offer_type_enum = postgresql.ENUM(
    "discount_percentage",
    "discount_fixed",
    "buy_x_get_y",
    "points_multiplier",
    name="loyalty_offer_type",
    create_type=False,
)
_ENUMS = (tier_level_enum, transaction_type_enum, reward_type_enum, offer_type_enum)


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in _ENUMS:
            enum.create(bind, checkfirst=True)

    op.create_table(
        "tenants",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("points_per_unit", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("current_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", tier_level_enum, nullable=False, server_default="bronze"),
        sa.Column("tier_upgraded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_sequence", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("current_balance >= 0", name="ck_customers_non_negative_balance"),
        sa.CheckConstraint("lifetime_points >= 0", name="ck_customers_non_negative_lifetime_points"),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])

    op.create_table(
        "loyalty_points_transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("transaction_type", transaction_type_enum, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("related_sale_id", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("bonus_day", sa.Date(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("customer_id", "sequence", name="uq_loyalty_points_transactions_customer_sequence"),
        sa.UniqueConstraint(
            "customer_id",
            "transaction_type",
            "bonus_day",
            name="uq_loyalty_points_transactions_customer_type_day",
        ),
        sa.CheckConstraint("points <> 0", name="ck_loyalty_points_transactions_non_zero_points"),
    )
    op.create_index("ix_loyalty_points_transactions_tenant_id", "loyalty_points_transactions", ["tenant_id"])
    op.create_index("ix_loyalty_points_transactions_customer_id", "loyalty_points_transactions", ["customer_id"])
    op.create_index(
        "ix_loyalty_points_transactions_related_sale_id", "loyalty_points_transactions", ["related_sale_id"]
    )

    op.create_table(
        "loyalty_tier_configs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tier", tier_level_enum, nullable=False),
        sa.Column("minimum_lifetime_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_multiplier", sa.Numeric(6, 2), nullable=False, server_default="1"),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("birthday_bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "tier", name="uq_loyalty_tier_configs_tenant_tier"),
    )
    op.create_index("ix_loyalty_tier_configs_tenant_id", "loyalty_tier_configs", ["tenant_id"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", _uuid(), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "transaction_id",
            _uuid(),
            sa.ForeignKey("loyalty_points_transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reward_type", reward_type_enum, nullable=False),
        sa.Column("reward_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("transaction_id", name="uq_loyalty_rewards_transaction_id"),
    )
    op.create_index("ix_loyalty_rewards_tenant_id", "loyalty_rewards", ["tenant_id"])
    op.create_index("ix_loyalty_rewards_customer_id", "loyalty_rewards", ["customer_id"])

    op.create_table(
        "loyalty_offers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("tenant_id", _uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("offer_type", offer_type_enum, nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("minimum_purchase", sa.Numeric(12, 2), nullable=True),
        sa.Column("required_tier", tier_level_enum, nullable=False, server_default="bronze"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_loyalty_offers_tenant_id", "loyalty_offers", ["tenant_id"])


def downgrade() -> None:
    op.drop_table("loyalty_offers")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_tier_configs")
    op.drop_table("loyalty_points_transactions")
    op.drop_table("customers")
    op.drop_table("tenants")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in reversed(_ENUMS):
            enum.drop(bind, checkfirst=True)
