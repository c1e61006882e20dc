"""create store, product, order and payment audit tables

Revision ID: 3a1c9e07b2d4
Revises:
Create Date: 2026-09-28 11:42:10.183604

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a1c9e07b2d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "store",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=True),
        sa.Column("subscription_plan", sa.String(32), nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(32), nullable=False, server_default="inactive"),
        sa.Column("subscription_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("product_limit", sa.Integer(), nullable=True, server_default="10"),
        sa.Column("last_payment_reference", sa.String(128), nullable=True),
        sa.Column("last_payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_store_public_id", "store", ["public_id"], unique=True)
    op.create_index("ix_store_owner_id", "store", ["owner_id"])
    op.create_index("ix_store_last_payment_reference", "store", ["last_payment_reference"])

    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("store.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("inventory_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("inventory_quantity >= 0", name="ck_product_inventory_non_negative"),
    )
    op.create_index("ix_product_public_id", "product", ["public_id"], unique=True)
    op.create_index("ix_product_store_id", "product", ["store_id"])

    op.create_table(
        "suborder",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("store.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("reference", sa.String(128), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("payment_status", sa.String(32), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        sa.Column("shipping_info", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_suborder_public_id", "suborder", ["public_id"], unique=True)
    op.create_index("ix_suborder_store_id", "suborder", ["store_id"])
    op.create_index("ix_suborder_user_id", "suborder", ["user_id"])
    op.create_index("ix_suborder_reference", "suborder", ["reference"])

    op.create_table(
        "suborderitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sub_order_id", sa.Integer(), sa.ForeignKey("suborder.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_at_purchase", sa.Numeric(12, 2), nullable=False),
        sa.Column("item_total", sa.Numeric(12, 2), nullable=False),
    )
    op.create_index("ix_suborderitem_sub_order_id", "suborderitem", ["sub_order_id"])

    op.create_table(
        "mainorder",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("reference", sa.String(128), nullable=False),
        sa.Column("sub_order_ids", sa.JSON(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivery_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("grand_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("shipping_info", sa.JSON(), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("payment_status", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_mainorder_public_id", "mainorder", ["public_id"], unique=True)
    op.create_index("ix_mainorder_user_id", "mainorder", ["user_id"])

    op.create_table(
        "paymentauditlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reference", sa.String(128), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("event", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("expected_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("error", sa.String(1024), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_paymentauditlog_reference", "paymentauditlog", ["reference"])
    op.create_index("ix_paymentauditlog_event_created_at", "paymentauditlog", ["event", "created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("paymentauditlog")
    op.drop_table("mainorder")
    op.drop_table("suborderitem")
    op.drop_table("suborder")
    op.drop_table("product")
    op.drop_table("store")
