"""initial schema

Revision ID: 202410180000
Revises:
Create Date: 2024-10-18 00:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410180000"
down_revision = None
branch_labels = None
depends_on = None

CATEGORY_VALUES = (
    "Housing",
    "Transportation",
    "Food",
    "Utilities",
    "Healthcare",
    "Entertainment",
    "Education",
    "Shopping",
    "Income",
    "Other",
)


def _category_column(name: str = "category") -> sa.Column:
    return sa.Column(
        name,
        sa.Enum(*CATEGORY_VALUES, name="category", native_enum=False, length=32),
        nullable=False,
    )


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _category_column(),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "type",
            sa.Enum("income", "expense", name="transactiontype", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("pdf_source", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])

    op.create_table(
        "monthly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("total_income", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column(
            "total_expenses", sa.Numeric(15, 2), nullable=False, server_default="0"
        ),
        sa.Column("net_balance", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_summary_user_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_summary_month_range"),
    )

    op.create_table(
        "category_breakdowns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "summary_id",
            sa.Integer(),
            sa.ForeignKey("monthly_summaries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _category_column(),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.UniqueConstraint("summary_id", "category", name="uq_breakdown_category"),
    )
    op.create_index(
        "ix_category_breakdowns_summary_id", "category_breakdowns", ["summary_id"]
    )


def downgrade():
    op.drop_index("ix_category_breakdowns_summary_id", table_name="category_breakdowns")
    op.drop_table("category_breakdowns")
    op.drop_table("monthly_summaries")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("users")
