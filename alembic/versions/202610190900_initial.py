"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    transaction_type = sa.Enum("income", "expense", "transfer", name="transactiontype")

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        sa.Column("default_account_id", sa.String(length=36)),
        *_timestamps(),
    )
    op.create_index("ix_users_group", "users", ["group_id"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=30)),
        sa.Column("user_ids", sa.JSON(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        *_timestamps(),
    )
    op.create_index("ix_accounts_group", "accounts", ["group_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("key", sa.String(length=60), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=40)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        *_timestamps(),
        sa.UniqueConstraint("group_id", "key", name="uq_category_group_key"),
    )

    op.create_table(
        "recurring_series",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False, server_default=""),
        sa.Column(
            "account_id", sa.String(length=36), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "frequency",
            sa.Enum("once", "weekly", "biweekly", "monthly", "yearly", name="frequency"),
            nullable=False,
        ),
        sa.Column("due_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("total_executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("user_ids", sa.JSON(), nullable=False),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_series_amount_positive"),
        sa.CheckConstraint("type != 'transfer'", name="ck_series_not_transfer"),
        sa.CheckConstraint("due_day >= 1 AND due_day <= 31", name="ck_series_due_day"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("category", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "account_id", sa.String(length=36), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("to_account_id", sa.String(length=36), sa.ForeignKey("accounts.id")),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id")),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        sa.Column(
            "recurring_series_id",
            sa.String(length=36),
            sa.ForeignKey("recurring_series.id"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "(type = 'transfer') = (to_account_id IS NOT NULL)",
            name="ck_transactions_transfer_target",
        ),
    )
    op.create_index("ix_transactions_group_date", "transactions", ["group_id", "date"])
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index("ix_transactions_series", "transactions", ["recurring_series_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("description", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("monthly", "annually", name="budgettype"), nullable=False
        ),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_user", "budgets", ["user_id"])

    op.create_table(
        "budget_periods",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        *_timestamps(),
    )
    op.create_index(
        "ix_budget_periods_user_start", "budget_periods", ["user_id", "start_date"]
    )


def downgrade():
    op.drop_index("ix_budget_periods_user_start", table_name="budget_periods")
    op.drop_table("budget_periods")
    op.drop_index("ix_budgets_user", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_series", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("ix_transactions_group_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("recurring_series")
    op.drop_table("categories")
    op.drop_index("ix_accounts_group", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_users_group", table_name="users")
    op.drop_table("users")
    op.drop_table("groups")
