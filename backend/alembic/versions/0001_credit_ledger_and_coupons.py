"""credit ledger, coupons and scans

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "tenant_credit_balances",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_received", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_tenant_credit_balances_non_negative"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("transaction_type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
        sa.Column("reference_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reference_type", sa.String(length=40), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_credit_transactions_tenant_id", "credit_transactions", ["tenant_id"])

    op.create_table(
        "credit_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("requested_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("requested_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("processed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_credit_requests_tenant_id", "credit_requests", ["tenant_id"])

    op.create_table(
        "tenant_coupon_sequences",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "coupon_batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("verification_app_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("batch_name", sa.String(length=255), nullable=True),
        sa.Column("total_coupons", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_status", sa.String(length=20), nullable=False, server_default="created"),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_coupon_batches_tenant_id", "coupon_batches", ["tenant_id"])

    op.create_table(
        "coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("verification_app_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupon_batches.id"), nullable=True),
        sa.Column("coupon_code", sa.String(length=20), nullable=False),
        sa.Column("coupon_reference", sa.String(length=40), nullable=False),
        sa.Column("reference_number", sa.Integer(), nullable=False),
        sa.Column("discount_type", sa.String(length=20), nullable=False, server_default="FIXED_AMOUNT"),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("credit_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("total_usage_limit", sa.Integer(), nullable=True),
        sa.Column("current_usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_scans_per_code", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("qr_code_url", sa.String(length=1000), nullable=True),
        sa.Column("printed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("printed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activation_note", sa.String(length=500), nullable=True),
        sa.Column("deactivation_reason", sa.String(length=500), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("tenant_id", "coupon_reference", name="uq_coupons_tenant_reference"),
    )
    op.create_index("ix_coupons_coupon_code", "coupons", ["coupon_code"], unique=True)
    op.create_index("ix_coupons_tenant_id", "coupons", ["tenant_id"])
    op.create_index("ix_coupons_verification_app_id", "coupons", ["verification_app_id"])
    op.create_index("ix_coupons_batch_id", "coupons", ["batch_id"])
    op.create_index("ix_coupons_tenant_reference_number", "coupons", ["tenant_id", "reference_number"])
    op.create_index("ix_coupons_tenant_status", "coupons", ["tenant_id", "status"])

    op.create_table(
        "scans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id"), nullable=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scan_status", sa.String(length=20), nullable=False),
        sa.Column("location_lat", sa.Numeric(10, 7), nullable=True),
        sa.Column("location_lng", sa.Numeric(10, 7), nullable=True),
        sa.Column("device_info", sa.String(length=500), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("scanned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_scans_tenant_id", "scans", ["tenant_id"])
    op.create_index("ix_scans_coupon_status", "scans", ["coupon_id", "scan_status"])


def downgrade() -> None:
    op.drop_index("ix_scans_coupon_status", table_name="scans")
    op.drop_index("ix_scans_tenant_id", table_name="scans")
    op.drop_table("scans")
    for index in (
        "ix_coupons_tenant_status",
        "ix_coupons_tenant_reference_number",
        "ix_coupons_batch_id",
        "ix_coupons_verification_app_id",
        "ix_coupons_tenant_id",
        "ix_coupons_coupon_code",
    ):
        op.drop_index(index, table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_coupon_batches_tenant_id", table_name="coupon_batches")
    op.drop_table("coupon_batches")
    op.drop_table("tenant_coupon_sequences")
    op.drop_index("ix_credit_requests_tenant_id", table_name="credit_requests")
    op.drop_table("credit_requests")
    op.drop_index("ix_credit_transactions_tenant_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("tenant_credit_balances")
