# Overview: Alembic migration for the initial till schema.

"""Initial schema: products, sales, audit logs, customers, invoice sequences

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("upc", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_upc", ["upc"], unique=False)
        batch_op.create_index("ix_products_name", ["name"], unique=False)
        batch_op.create_index("ix_products_active", ["is_active"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("quantity_added", sa.Integer(), nullable=False),
        sa.Column("settled_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("movement_type", sa.String(32), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_movement_type", ["movement_type"], unique=False)
        batch_op.create_index("ix_stock_movements_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_stock_movements_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("upc", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("seller_name", sa.String(128), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("invoice_number", sa.String(64), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_mobile", sa.String(32), nullable=True),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("customer_trn", sa.String(64), nullable=True),
        sa.Column("invoice_type", sa.String(16), nullable=True),
        sa.Column("order_comment", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=True),
        _timestamp("created_at"),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_sales_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_sales_invoice_number", ["invoice_number"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_created", ["created_at"], unique=False)
        batch_op.create_index("ix_sales_seller_created", ["seller_name", "created_at"], unique=False)

    op.create_table(
        "invoice_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "sales_undo_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("sale_data", sa.JSON(), nullable=False),
        sa.Column("undone_by", sa.String(128), nullable=False),
        sa.Column("reason", sa.String(512), nullable=False),
        _timestamp("undone_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales_undo_log", schema=None) as batch_op:
        batch_op.create_index("ix_sales_undo_log_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sales_undo_log_undone_at", ["undone_at"], unique=False)

    op.create_table(
        "invoice_edit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False, server_default=""),
        sa.Column("transaction_id", sa.String(160), nullable=False),
        sa.Column("edited_by", sa.String(128), nullable=False),
        _timestamp("edited_at"),
        sa.Column("changes_summary", sa.JSON(), nullable=False),
        sa.Column("previous_data", sa.JSON(), nullable=False),
        sa.Column("new_data", sa.JSON(), nullable=False),
        sa.Column("edit_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("invoice_edit_logs", schema=None) as batch_op:
        batch_op.create_index("ix_invoice_edit_logs_invoice_number", ["invoice_number"], unique=False)
        batch_op.create_index("ix_invoice_edit_logs_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_invoice_edit_logs_edited_at", ["edited_at"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("mobile", sa.String(32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("trn", sa.String(64), nullable=True),
        sa.Column("type", sa.String(16), nullable=False, server_default="retail"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_mobile", ["mobile"], unique=False)
        batch_op.create_index("ix_customers_name", ["name"], unique=False)


def downgrade():
    op.drop_table("customers")
    op.drop_table("invoice_edit_logs")
    op.drop_table("sales_undo_log")
    op.drop_table("invoice_sequences")
    op.drop_table("sales")
    op.drop_table("stock_movements")
    op.drop_table("products")
