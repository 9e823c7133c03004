"""initial schema

Revision ID: 202510170900
Revises:
Create Date: 2025-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510170900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("owner_id", name="uq_user_owner"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("period", sa.Text()),
        sa.Column("amount", sa.Float()),
        sa.Column("categories", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_budgets_owner", "budgets", ["owner_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Float()),
        sa.Column("category", sa.Text()),
        sa.Column("date", sa.DateTime()),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transactions_owner", "transactions", ["owner_id"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("name_key", sa.String(length=200), nullable=False),
        sa.Column("emoji", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("owner_id", "name_key", name="uq_category_owner_name"),
    )
    op.create_index("ix_categories_owner", "categories", ["owner_id"])


def downgrade():
    op.drop_index("ix_categories_owner", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_transactions_created_at", table_name="transactions")
    op.drop_index("ix_transactions_owner", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budgets_owner", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("users")
