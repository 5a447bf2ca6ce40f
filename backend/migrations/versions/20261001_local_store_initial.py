"""Local store: cached catalog, offline sale queue, sync log, meta

Revision ID: 20261001_local_store
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_local_store"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("barcode", sa.String(length=128), nullable=True),
        sa.Column("sku", sa.String(length=128), nullable=True),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("wholesale_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.String(length=40), nullable=True),
    )
    op.create_index("ix_products_name", "products", ["name"])
    op.create_index("ix_products_barcode", "products", ["barcode"])
    op.create_index("ix_products_category_id", "products", ["category_id"])

    op.create_table(
        "inventory",
        sa.Column("product_id", sa.String(length=64), primary_key=True),
        sa.Column("branch_id", sa.String(length=64), primary_key=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.String(length=40), nullable=True),
    )
    op.create_index("ix_inventory_product", "inventory", ["product_id"])
    op.create_index("ix_inventory_branch", "inventory", ["branch_id"])

    op.create_table(
        "branches",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("parent_id", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_categories_parent_id", "categories", ["parent_id"])
    op.create_table(
        "customers",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_customers_name", "customers", ["name"])
    op.create_index("ix_customers_phone", "customers", ["phone"])
    op.create_table(
        "records",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_records_branch_id", "records", ["branch_id"])
    op.create_table(
        "payment_methods",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "pending_sales",
        sa.Column("local_id", sa.String(length=64), primary_key=True),
        sa.Column("temp_invoice_number", sa.String(length=64), nullable=False),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_type", sa.String(length=32), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("profit", sa.Numeric(12, 2), nullable=False),
        sa.Column("credit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=128), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("branch_name", sa.String(length=255), nullable=True),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("record_id", sa.String(length=64), nullable=True),
        sa.Column("record_name", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.String(length=40), nullable=False),
        sa.Column("synced_at", sa.String(length=40), nullable=True),
        sa.Column("sync_status", sa.String(length=16), nullable=False),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("temp_invoice_number", name="uq_pending_sales_temp_number"),
    )
    op.create_index("ix_pending_sales_created_at", "pending_sales", ["created_at"])
    op.create_index("ix_pending_sales_sync_status", "pending_sales", ["sync_status"])
    op.create_index("ix_pending_sales_status_created", "pending_sales", ["sync_status", "created_at"])

    op.create_table(
        "pending_sale_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("local_id", sa.String(length=64), sa.ForeignKey("pending_sales.local_id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("cost_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("selected_colors", sa.JSON(), nullable=True),
        sa.UniqueConstraint("local_id", "line_number", name="uq_pending_sale_items_line"),
    )
    op.create_index("ix_pending_sale_items_local_id", "pending_sale_items", ["local_id"])

    op.create_table(
        "pending_sale_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("local_id", sa.String(length=64), sa.ForeignKey("pending_sales.local_id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method_id", sa.String(length=64), nullable=False),
        sa.Column("payment_method_name", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_pending_sale_payments_local_id", "pending_sale_payments", ["local_id"])

    op.create_table(
        "sync_log",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("local_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("timestamp", sa.String(length=40), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_sync_log_local_id", "sync_log", ["local_id"])
    op.create_index("ix_sync_log_timestamp", "sync_log", ["timestamp"])

    op.create_table(
        "meta",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
    )


def downgrade():
    for table in (
        "meta",
        "sync_log",
        "pending_sale_payments",
        "pending_sale_items",
        "pending_sales",
        "payment_methods",
        "records",
        "customers",
        "categories",
        "branches",
        "inventory",
        "products",
    ):
        op.drop_table(table)
