"""initial schema

Revision ID: 202610011200
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "owners",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=9)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column(
            "owner_id", sa.String(length=36), sa.ForeignKey("owners.id"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_card_closing_day_range"
        ),
        sa.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_card_due_day_range"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("group_id", sa.String(length=36)),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column("billing_date", sa.Date(), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "payment_method",
            sa.Enum(
                "CREDIT_CARD",
                "PIX",
                "BOLETO",
                "CASH",
                "DEBIT_CARD",
                name="paymentmethod",
            ),
            nullable=False,
        ),
        sa.Column("category_id", sa.String(length=36), sa.ForeignKey("categories.id")),
        sa.Column("owner_id", sa.String(length=36), sa.ForeignKey("owners.id")),
        sa.Column("card_id", sa.String(length=36), sa.ForeignKey("credit_cards.id")),
        sa.Column(
            "installment_current", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column(
            "installment_total", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "installment_current BETWEEN 1 AND installment_total",
            name="ck_transactions_installment_position",
        ),
    )
    op.create_index("ix_transactions_billing_date", "transactions", ["billing_date"])
    op.create_index("ix_transactions_group", "transactions", ["group_id"])


def downgrade():
    op.drop_index("ix_transactions_group", table_name="transactions")
    op.drop_index("ix_transactions_billing_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("credit_cards")
    op.drop_table("categories")
    op.drop_table("owners")
