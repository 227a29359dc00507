"""Create partner financial report and withdrawal request tables.

Revision ID: 001_fin_partner_financials
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001_fin_partner_financials"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create fin_partner_financial_reports and fin_partner_withdrawal_requests."""

    # fin_partner_financial_reports
    op.create_table(
        "fin_partner_financial_reports",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.String(255), nullable=False),
        sa.Column("partner_invitation_id", sa.String(255), nullable=False),
        sa.Column("report_month", sa.Date, nullable=False),
        sa.Column("report_type", sa.String(20), nullable=False, server_default="monthly"),
        sa.Column("total_revenue", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_expenses", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("net_profit", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("roi_percentage", sa.Numeric(18, 4), nullable=True),
        sa.Column("partner_investment_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("partner_share_percentage", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("partner_profit_share", sa.Numeric(18, 2), nullable=True),
        sa.Column("partner_roi_percentage", sa.Numeric(18, 4), nullable=True),
        sa.Column("balance", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("report_data", JSONB, nullable=False, server_default="{}"),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "organization_id",
            "partner_invitation_id",
            "report_month",
            "report_type",
            name="uq_fin_partner_financial_reports_key",
        ),
    )
    op.create_index(
        "ix_fin_partner_financial_reports_organization_id",
        "fin_partner_financial_reports",
        ["organization_id"],
    )
    op.create_index(
        "ix_fin_partner_financial_reports_partner_invitation_id",
        "fin_partner_financial_reports",
        ["partner_invitation_id"],
    )

    # fin_partner_withdrawal_requests
    op.create_table(
        "fin_partner_withdrawal_requests",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.String(255), nullable=False),
        sa.Column("partner_invitation_id", sa.String(255), nullable=False),
        sa.Column("financial_report_id", UUID(as_uuid=True), nullable=True),
        sa.Column("requested_by", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_transfer_id", sa.String(255), nullable=True),
        sa.Column("platform_fee_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'processing', 'completed', 'rejected')",
            name="ck_fin_partner_withdrawal_requests_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_fin_partner_withdrawal_requests_amount_positive"),
    )
    op.create_index(
        "ix_fin_partner_withdrawal_requests_org_partner",
        "fin_partner_withdrawal_requests",
        ["organization_id", "partner_invitation_id"],
    )
    op.create_index(
        "ix_fin_partner_withdrawal_requests_financial_report_id",
        "fin_partner_withdrawal_requests",
        ["financial_report_id"],
    )


def downgrade() -> None:
    """Drop the partner financials tables."""
    op.drop_table("fin_partner_withdrawal_requests")
    op.drop_table("fin_partner_financial_reports")
