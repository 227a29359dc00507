"""SQLAlchemy ORM models for the partner financials service.

Tables owned by this service use the ``fin_`` prefix and are created by the
bundled Alembic migrations:

  FinancialReport      one monthly report per (organization, partner, month, type)
  WithdrawalRequest    partner payout request moving through the withdrawal workflow

The remaining classes map the host application's tables. They are the ledger
data source (projects, transactions, revenue, expenses) and the partner terms
source (partner_invitations, partner_access, users,
organization_partner_settings). The only write this service makes to them is
one ``transactions`` row per completed payout.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from partner_financials.database import Base, TimestampMixin

# Money is NUMERIC(18,2), percentages NUMERIC(18,4), never FLOAT.
Money = Numeric(18, 2)
Percentage = Numeric(18, 4)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class FinancialReport(TimestampMixin, Base):
    """Monthly financial report for one partner of an organization.

    Written exclusively through an upsert on the unique key, so regenerating
    a month updates the aggregate fields in place.

    Table: fin_partner_financial_reports
    """

    __tablename__ = "fin_partner_financial_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    partner_invitation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    report_month: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="First day of the reported calendar month; immutable once created",
    )
    report_type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    # Organization-wide figures
    total_revenue: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_expenses: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    net_profit: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    roi_percentage: Mapped[Decimal | None] = mapped_column(
        Percentage,
        nullable=True,
        comment="net_profit / total_expenses * 100; NULL when there were no expenses",
    )

    # Partner-specific figures
    partner_investment_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    partner_share_percentage: Mapped[Decimal] = mapped_column(
        Percentage, nullable=False, default=Decimal("0")
    )
    partner_profit_share: Mapped[Decimal | None] = mapped_column(
        Money,
        nullable=True,
        comment="NULL when the partner has no recorded investment (not applicable)",
    )
    partner_roi_percentage: Mapped[Decimal | None] = mapped_column(Percentage, nullable=True)
    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        default=Decimal("0"),
        comment="Profit share still available after completed withdrawals",
    )

    report_data: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "partner_invitation_id",
            "report_month",
            "report_type",
            name="uq_fin_partner_financial_reports_key",
        ),
    )


class WithdrawalRequest(TimestampMixin, Base):
    """A partner's request to withdraw part of their profit share.

    Status moves pending -> approved -> processing -> completed, or ends in
    rejected from pending/approved. Every status write is conditional on the
    expected current status.

    Table: fin_partner_withdrawal_requests
    """

    __tablename__ = "fin_partner_withdrawal_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False)
    partner_invitation_id: Mapped[str] = mapped_column(String(255), nullable=False)
    financial_report_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending | approved | processing | completed | rejected",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform_fee_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    __table_args__ = (
        Index(
            "ix_fin_partner_withdrawal_requests_org_partner",
            "organization_id",
            "partner_invitation_id",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'processing', 'completed', 'rejected')",
            name="ck_fin_partner_withdrawal_requests_status",
        ),
        CheckConstraint("amount > 0", name="ck_fin_partner_withdrawal_requests_amount_positive"),
    )


# ---------------------------------------------------------------------------
# Host application tables
# ---------------------------------------------------------------------------


class Project(Base):
    """Organization project; only used to resolve transaction ownership."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)


class Transaction(Base):
    """Payment transaction.

    Project payments count as revenue. Partner payouts are written with no
    project and ``type="payment"``, so they never reach the ledger.
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(50))
    details: Mapped[dict | None] = mapped_column("metadata", JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ManualRevenue(Base):
    """Manually entered revenue; ``amount`` is free-form and parsed leniently."""

    __tablename__ = "revenue"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    amount: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class Expense(Base):
    """Organization expense; only Approved and Paid expenses count."""

    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    amount: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PartnerInvitation(Base):
    """Partner relationship with an organization and its investment terms."""

    __tablename__ = "partner_invitations"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50))
    investment_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    share_percentage: Mapped[Decimal | None] = mapped_column(Percentage, nullable=True)
    stripe_connect_onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)


class PartnerAccess(Base):
    """Link between a partner invitation and the partner's user account."""

    __tablename__ = "partner_access"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    partner_invitation_id: Mapped[str] = mapped_column(String(255), index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)


class PartnerUser(Base):
    """User account; only the Stripe Connect payout account is read."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    stripe_connect_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)


class OrganizationPartnerSettings(Base):
    """Per-partner visibility switches set by the organization."""

    __tablename__ = "organization_partner_settings"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    partner_invitation_id: Mapped[str] = mapped_column(String(255), index=True)
    can_see_revenue: Mapped[bool] = mapped_column(Boolean, default=False)
    can_see_roi: Mapped[bool] = mapped_column(Boolean, default=False)
    can_see_balance: Mapped[bool] = mapped_column(Boolean, default=False)
    can_see_monthly_reports: Mapped[bool] = mapped_column(Boolean, default=False)
