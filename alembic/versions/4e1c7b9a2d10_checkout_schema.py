"""checkout schema: prospects, packages, transactions, payment_logs, clubready_config

Revision ID: 4e1c7b9a2d10
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "4e1c7b9a2d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, table_name: str) -> bool:
    insp = sa.inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "clubready_config"):
        op.create_table(
            "clubready_config",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("api_key", sa.String(length=255), nullable=True),
            sa.Column("store_id", sa.String(length=50), nullable=True),
            sa.Column("chain_id", sa.String(length=50), nullable=True),
            sa.Column("api_url", sa.String(length=255), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
        )

    if not _table_exists(bind, "prospects"):
        op.create_table(
            "prospects",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("clubready_user_id", sa.String(length=100), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("last_synced_at", sa.TIMESTAMP(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.UniqueConstraint("clubready_user_id", name="uq_prospects_clubready_user_id"),
        )

    if not _table_exists(bind, "packages"):
        op.create_table(
            "packages",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("clubready_package_id", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("price", sa.Numeric(10, 2), nullable=False),
            sa.Column("duration_months", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.UniqueConstraint("clubready_package_id", name="uq_packages_clubready_package_id"),
        )

    if not _table_exists(bind, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("prospect_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("prospects.id"), nullable=False),
            sa.Column("package_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("packages.id"), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=30), nullable=True),
            sa.Column("clubready_transaction_id", sa.String(length=100), nullable=True),
            sa.Column("last_four", sa.String(length=4), nullable=True),
            sa.Column("error_message", sa.String(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.Column("completed_at", sa.TIMESTAMP(), nullable=True),
            sa.CheckConstraint(
                "status IN ('pending', 'completed', 'failed')",
                name="ck_transactions_status",
            ),
        )

    if not _table_exists(bind, "payment_logs"):
        op.create_table(
            "payment_logs",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("endpoint", sa.String(length=255), nullable=True),
            sa.Column("step", sa.String(length=50), nullable=True),
            sa.Column("api_url", sa.Text(), nullable=True),
            sa.Column("request_headers", sa.JSON(), nullable=True),
            sa.Column("request_body", sa.JSON(), nullable=True),
            sa.Column("request_data", sa.JSON(), nullable=True),
            sa.Column("response_data", sa.JSON(), nullable=True),
            sa.Column("http_status", sa.Integer(), nullable=True),
            sa.Column("status_code", sa.Integer(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("clubready_request_id", sa.String(length=100), nullable=True),
            sa.Column("transaction_id", postgresql.UUID(as_uuid=True), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
        )

    insp = sa.inspect(bind)
    indexes = {ix["name"] for ix in insp.get_indexes("payment_logs")}
    if "ix_payment_logs_transaction_id" not in indexes:
        op.create_index("ix_payment_logs_transaction_id", "payment_logs", ["transaction_id"])


def downgrade() -> None:
    bind = op.get_bind()

    if _table_exists(bind, "payment_logs"):
        insp = sa.inspect(bind)
        indexes = {ix["name"] for ix in insp.get_indexes("payment_logs")}
        if "ix_payment_logs_transaction_id" in indexes:
            op.drop_index("ix_payment_logs_transaction_id", table_name="payment_logs")
        op.drop_table("payment_logs")

    for table_name in ("transactions", "packages", "prospects", "clubready_config"):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
