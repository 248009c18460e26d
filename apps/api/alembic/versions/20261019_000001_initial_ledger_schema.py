"""create card ledger schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gr_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("group_name", sa.String(), nullable=True),
        sa.Column("guardian_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_members_gr_number"), "members", ["gr_number"], unique=True)

    op.create_table(
        "cards",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("card_number", sa.Integer(), nullable=False),
        sa.Column("photo_url", sa.String(), nullable=True),
        sa.Column("qr_data", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("card_number"),
    )
    op.create_index(op.f("ix_cards_member_id"), "cards", ["member_id"], unique=False)
    op.create_index(
        "uq_cards_member_active",
        "cards",
        ["member_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("balance", MONEY, server_default="0", nullable=False),
        sa.Column("carried_balance", MONEY, server_default="0", nullable=False),
        sa.Column("daily_limit", MONEY, nullable=True),
        sa.Column("daily_spent", MONEY, server_default="0", nullable=False),
        sa.Column("last_spent_reset", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("member_id"),
    )
    op.create_index(op.f("ix_accounts_last_spent_reset"), "accounts", ["last_spent_reset"], unique=False)

    op.create_table(
        "stores",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("store_name", sa.String(), nullable=False),
        sa.Column("store_type", sa.String(), nullable=True),
        sa.Column("owner_name", sa.String(), nullable=True),
        sa.Column("mobile_number", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_name"),
        sa.UniqueConstraint("mobile_number"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "store_settlements",
        sa.Column("store_id", sa.String(), nullable=False),
        sa.Column("pending_amount", MONEY, server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("store_id"),
    )

    op.create_table(
        "recharges",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("recharge_type", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_recharges_member_id"), "recharges", ["member_id"], unique=False)
    op.create_index(op.f("ix_recharges_created_at"), "recharges", ["created_at"], unique=False)
    op.create_index("ix_recharges_member_created", "recharges", ["member_id", "created_at"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("card_id", sa.String(), nullable=True),
        sa.Column("store_id", sa.String(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.ForeignKeyConstraint(["card_id"], ["cards.id"]),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transactions_created_at"), "transactions", ["created_at"], unique=False)
    op.create_index("ix_transactions_member_created", "transactions", ["member_id", "created_at"], unique=False)
    op.create_index("ix_transactions_store_created", "transactions", ["store_id", "created_at"], unique=False)

    op.create_table(
        "settlements",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("store_id", sa.String(), nullable=False),
        sa.Column("total_transaction_amount", MONEY, nullable=False),
        sa.Column("settled_amount", MONEY, server_default="0", nullable=False),
        sa.Column("pending_amount", MONEY, nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_settlements_created_at"), "settlements", ["created_at"], unique=False)
    op.create_index("ix_settlements_store_created", "settlements", ["store_id", "created_at"], unique=False)

    op.create_table(
        "settlement_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("settlement_id", sa.String(), nullable=False),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["settlement_id"], ["settlements.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_settlement_logs_settlement_id"), "settlement_logs", ["settlement_id"], unique=False)
    op.create_index(op.f("ix_settlement_logs_created_at"), "settlement_logs", ["created_at"], unique=False)

    op.create_table(
        "daily_limit_history",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.String(), nullable=False),
        sa.Column("old_limit", MONEY, nullable=True),
        sa.Column("new_limit", MONEY, nullable=True),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_daily_limit_history_member_id"), "daily_limit_history", ["member_id"], unique=False)

    op.create_table(
        "maintenance_runs",
        sa.Column("job_name", sa.String(), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("run_count", sa.Integer(), nullable=False),
        sa.Column("last_result", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("job_name"),
    )


def downgrade() -> None:
    op.drop_table("maintenance_runs")
    op.drop_index(op.f("ix_daily_limit_history_member_id"), table_name="daily_limit_history")
    op.drop_table("daily_limit_history")
    op.drop_index(op.f("ix_settlement_logs_created_at"), table_name="settlement_logs")
    op.drop_index(op.f("ix_settlement_logs_settlement_id"), table_name="settlement_logs")
    op.drop_table("settlement_logs")
    op.drop_index("ix_settlements_store_created", table_name="settlements")
    op.drop_index(op.f("ix_settlements_created_at"), table_name="settlements")
    op.drop_table("settlements")
    op.drop_index("ix_transactions_store_created", table_name="transactions")
    op.drop_index("ix_transactions_member_created", table_name="transactions")
    op.drop_index(op.f("ix_transactions_created_at"), table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recharges_member_created", table_name="recharges")
    op.drop_index(op.f("ix_recharges_created_at"), table_name="recharges")
    op.drop_index(op.f("ix_recharges_member_id"), table_name="recharges")
    op.drop_table("recharges")
    op.drop_table("store_settlements")
    op.drop_table("stores")
    op.drop_index(op.f("ix_accounts_last_spent_reset"), table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("uq_cards_member_active", table_name="cards")
    op.drop_index(op.f("ix_cards_member_id"), table_name="cards")
    op.drop_table("cards")
    op.drop_index(op.f("ix_members_gr_number"), table_name="members")
    op.drop_table("members")
