"""categories, expenses and expense segments

Revision ID: 202610161200
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610161200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("name_key", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column(
            "active", sa.Boolean(), nullable=False, server_default=sa.text("1")
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name_key", name="uq_category_name_key"),
    )
    op.create_index("ix_categories_active_name", "categories", ["active", "name"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("vendor", sa.String(length=255), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "type",
            sa.Enum("expense", "invoice", name="expensetype"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "submitted",
                "pending_review",
                "approved",
                "rejected",
                name="expensestatus",
            ),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_owner_date", "expenses", ["owner_id", "date"])

    op.create_table(
        "expense_segments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("percentage_bps", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_segment_amount_positive"),
        sa.CheckConstraint(
            "percentage_bps >= 0 AND percentage_bps <= 10000",
            name="ck_segment_percentage_range",
        ),
        sa.UniqueConstraint(
            "expense_id", "category", name="uq_segment_expense_category"
        ),
    )
    op.create_index(
        "ix_expense_segments_expense", "expense_segments", ["expense_id", "id"]
    )


def downgrade() -> None:
    op.drop_index("ix_expense_segments_expense", table_name="expense_segments")
    op.drop_table("expense_segments")
    op.drop_index("ix_expenses_owner_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_categories_active_name", table_name="categories")
    op.drop_table("categories")
