"""Pydantic request and response schemas for the partner financials API.

All API inputs and outputs are typed Pydantic models, never raw dicts.
Money and percentages are Decimals and serialize as JSON strings.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class GenerateReportRequest(BaseModel):
    """Request body for generating (or regenerating) a monthly report."""

    month: str = Field(
        ...,
        description="Report month as YYYY-MM (a YYYY-MM-DD date selects its month)",
        examples=["2024-03"],
    )


class FinancialReportResponse(BaseModel):
    """Response schema for a stored monthly financial report."""

    id: uuid.UUID
    organization_id: str
    partner_invitation_id: str
    report_month: date
    report_type: str
    total_revenue: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    roi_percentage: Decimal | None
    partner_investment_amount: Decimal
    partner_share_percentage: Decimal
    partner_profit_share: Decimal | None
    partner_roi_percentage: Decimal | None
    balance: Decimal
    report_data: dict[str, Any]
    sent_at: datetime | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PartnerReportResponse(BaseModel):
    """A sent report as its partner sees it; hidden figures are null."""

    id: uuid.UUID
    organization_id: str
    partner_invitation_id: str
    report_month: date
    report_type: str
    total_revenue: Decimal | None
    total_expenses: Decimal | None
    net_profit: Decimal | None
    roi_percentage: Decimal | None
    partner_investment_amount: Decimal
    partner_share_percentage: Decimal
    partner_profit_share: Decimal | None
    partner_roi_percentage: Decimal | None
    balance: Decimal | None
    sent_at: datetime | None


class MonthlySummaryResponse(BaseModel):
    """Organization figures for one month of the overview."""

    month: str
    total_revenue: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    roi_percentage: Decimal | None
    is_profit: bool


class MonthlyOverviewResponse(BaseModel):
    """Organization overview across recent months, oldest first."""

    organization_id: str
    months: list[MonthlySummaryResponse]


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


class CreateWithdrawalRequest(BaseModel):
    """Request body for a partner withdrawal request."""

    partner_invitation_id: str = Field(..., max_length=255)
    amount: Decimal = Field(..., description="Requested payout amount; must be positive")
    report_id: uuid.UUID | None = Field(
        default=None,
        description="Financial report whose profit share the withdrawal draws on",
    )
    organization_id: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)


class RejectWithdrawalRequest(BaseModel):
    """Request body for rejecting a withdrawal request."""

    reason: str | None = Field(default=None, max_length=2000)


class WithdrawalRequestResponse(BaseModel):
    """Response schema for a withdrawal request."""

    id: uuid.UUID
    organization_id: str
    partner_invitation_id: str
    financial_report_id: uuid.UUID | None
    requested_by: str | None
    amount: Decimal
    status: str
    notes: str | None
    rejection_reason: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    processed_at: datetime | None
    stripe_transfer_id: str | None
    platform_fee_amount: Decimal | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
