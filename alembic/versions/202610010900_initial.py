"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "notifications_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "frequency",
            sa.Enum("weekly", "biweekly", "monthly", "yearly", name="frequency"),
        ),
        sa.Column(
            "recurring_series_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("end_date", sa.Date()),
        sa.Column("paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_generated", sa.Date()),
        sa.Column("day_of_month", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_series_id", "date", name="uq_txn_series_occurrence"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_transactions_day_of_month",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_recurring", "transactions", ["user_id", "is_recurring"]
    )

    op.create_table(
        "debt_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "kind", sa.Enum("revolving", "installment", name="debtkind"), nullable=False
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "interest_rate", sa.Numeric(7, 3), nullable=False, server_default="0"
        ),
        sa.Column(
            "min_payment_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("due_date", sa.Date()),
        sa.Column("due_day", sa.Integer()),
        sa.Column("autopay", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("balance_cents >= 0", name="ck_debt_balance_positive"),
        sa.CheckConstraint("limit_cents >= 0", name="ck_debt_limit_positive"),
        sa.CheckConstraint(
            "min_payment_cents >= 0", name="ck_debt_min_payment_positive"
        ),
    )

    op.create_table(
        "debt_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("debt_accounts.id"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("interest_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("note", sa.String(length=120)),
        *_timestamps(),
    )
    op.create_index(
        "ix_debt_payments_account_date", "debt_payments", ["account_id", "date"]
    )

    op.create_table(
        "user_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column(
            "bill_reminders", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "loan_reminders", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "autopay_alerts", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("loan_notify_days", sa.Integer(), nullable=False, server_default="3"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_user_settings_user"),
    )


def downgrade():
    op.drop_table("user_settings")
    op.drop_index("ix_debt_payments_account_date", table_name="debt_payments")
    op.drop_table("debt_payments")
    op.drop_table("debt_accounts")
    op.drop_index("ix_transactions_user_recurring", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
