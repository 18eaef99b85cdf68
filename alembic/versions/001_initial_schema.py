"""initial schema: products, stores and the three audit tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17

For databases created by the app's startup create_all: run
`alembic stamp 001_initial`. For new databases: `alembic upgrade head`.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False, unique=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("image_url", sa.Text()),
        sa.Column("needs_sync", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced", sa.DateTime()),
        sa.Column("last_modified", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonneg"),
    )
    op.create_index("ix_products_name", "products", ["product_name"])
    op.create_index("ix_products_category", "products", ["category"])

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_name", sa.String(255), nullable=False),
        sa.Column("store_domain", sa.String(255), nullable=False, unique=True),
        sa.Column("access_token", sa.String(500), nullable=False),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_sync", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "stock_audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("old_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255)),
        sa.Column("source", sa.String(20)),
        sa.Column("batch_id", sa.String(64)),
        sa.Column("notes", sa.Text()),
        sa.Column("user_name", sa.String(255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_audits_sku", "stock_audits", ["sku"])
    op.create_index("ix_stock_audit_sku_time", "stock_audits", ["sku", "created_at"])
    op.create_index("ix_stock_audit_action_time", "stock_audits", ["action", "created_at"])
    op.create_index("ix_stock_audit_batch", "stock_audits", ["batch_id"])

    op.create_table(
        "sync_audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("store_name", sa.String(255), nullable=False),
        sa.Column("store_domain", sa.String(255), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("old_quantity", sa.Integer()),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text()),
        sa.Column("sync_type", sa.String(10), nullable=False, server_default="full"),
        sa.Column("shopify_product_id", sa.String(50)),
        sa.Column("shopify_variant_id", sa.String(50)),
        sa.Column("sync_duration_ms", sa.Integer()),
        sa.Column("user_name", sa.String(255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sync_audits_sku", "sync_audits", ["sku"])
    op.create_index("ix_sync_audit_sku_time", "sync_audits", ["sku", "created_at"])
    op.create_index("ix_sync_audit_store_time", "sync_audits", ["store_domain", "created_at"])
    op.create_index("ix_sync_audit_action_time", "sync_audits", ["action", "created_at"])

    op.create_table(
        "stock_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("change", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_log_sku_action", "stock_logs", ["sku", "action"])
    op.create_index("ix_stock_log_time", "stock_logs", ["created_at"])


def downgrade() -> None:
    for table in ("stock_logs", "sync_audits", "stock_audits", "stores", "products"):
        op.drop_table(table)
