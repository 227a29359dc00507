"""FastAPI router for the partner financials API.

All routes are thin: they validate inputs, call services, and return
Pydantic response models. No business logic belongs here.

Endpoints:
  POST   /api/v1/partner-financials/organizations/{org}/partners/{inv}/reports      Generate a monthly report
  GET    /api/v1/partner-financials/organizations/{org}/partners/{inv}/reports      List a partner's reports
  POST   /api/v1/partner-financials/reports/{id}/send                              Send a report to the partner
  GET    /api/v1/partner-financials/partners/{inv}/reports                         Reports as the partner sees them
  GET    /api/v1/partner-financials/organizations/{org}/overview                   Monthly organization overview
  POST   /api/v1/partner-financials/withdrawals                                    Create a withdrawal request
  POST   /api/v1/partner-financials/withdrawals/{id}/approve                       Approve a withdrawal
  POST   /api/v1/partner-financials/withdrawals/{id}/reject                        Reject a withdrawal
  POST   /api/v1/partner-financials/withdrawals/{id}/process                       Pay out an approved withdrawal
  POST   /api/v1/partner-financials/withdrawals/{id}/reconcile                     Resolve a payout stuck in processing
  GET    /api/v1/partner-financials/organizations/{org}/partners/{inv}/withdrawals  List a partner's withdrawals
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from partner_financials.adapters.notifier import WebhookNotifier
from partner_financials.adapters.repositories import (
    FinancialReportRepository,
    LedgerSourceRepository,
    PartnerTermsRepository,
    WithdrawalRequestRepository,
)
from partner_financials.adapters.stripe_transfers import StripeTransferGateway
from partner_financials.api.auth import get_current_user_id
from partner_financials.api.schemas import (
    CreateWithdrawalRequest,
    FinancialReportResponse,
    GenerateReportRequest,
    MonthlyOverviewResponse,
    MonthlySummaryResponse,
    PartnerReportResponse,
    RejectWithdrawalRequest,
    WithdrawalRequestResponse,
)
from partner_financials.core.ledger import LedgerReader
from partner_financials.core.services import ReportService, WithdrawalService
from partner_financials.database import get_db_session
from partner_financials.settings import Settings

router = APIRouter(prefix="/partner-financials", tags=["partner-financials"])
settings = Settings()


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_report_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ReportService:
    """Build ReportService with all required dependencies."""
    return ReportService(
        ledger_reader=LedgerReader(
            LedgerSourceRepository(session),
            timeout_seconds=settings.ledger_read_timeout_seconds,
        ),
        terms_source=PartnerTermsRepository(session),
        report_repo=FinancialReportRepository(session),
        withdrawal_repo=WithdrawalRequestRepository(session),
        notifier=WebhookNotifier(settings),
        settings=settings,
    )


def get_withdrawal_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WithdrawalService:
    """Build WithdrawalService with all required dependencies."""
    return WithdrawalService(
        withdrawal_repo=WithdrawalRequestRepository(session),
        report_repo=FinancialReportRepository(session),
        terms_source=PartnerTermsRepository(session),
        transfer_gateway=StripeTransferGateway(settings),
        notifier=WebhookNotifier(settings),
        settings=settings,
    )


# ---------------------------------------------------------------------------
# Report endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/organizations/{organization_id}/partners/{partner_invitation_id}/reports",
    response_model=FinancialReportResponse,
    status_code=201,
    summary="Generate a monthly financial report",
)
async def generate_report(
    organization_id: str,
    partner_invitation_id: str,
    request: GenerateReportRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[ReportService, Depends(get_report_service)],
) -> FinancialReportResponse:
    """Compute the partner's report for a month and store it.

    Regenerating the same month updates the existing report in place.
    """
    report = await service.generate_report(
        organization_id=organization_id,
        partner_invitation_id=partner_invitation_id,
        month=request.month,
        actor_id=user_id,
    )
    return FinancialReportResponse.model_validate(report)


@router.get(
    "/organizations/{organization_id}/partners/{partner_invitation_id}/reports",
    response_model=list[FinancialReportResponse],
    summary="List a partner's financial reports",
)
async def list_reports(
    organization_id: str,
    partner_invitation_id: str,
    service: Annotated[ReportService, Depends(get_report_service)],
) -> list[FinancialReportResponse]:
    """Reports of one partner, newest month first."""
    reports = await service.list_reports(organization_id, partner_invitation_id)
    return [FinancialReportResponse.model_validate(r) for r in reports]


@router.post(
    "/reports/{report_id}/send",
    response_model=FinancialReportResponse,
    summary="Send a report to the partner",
)
async def send_report(
    report_id: uuid.UUID,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[ReportService, Depends(get_report_service)],
) -> FinancialReportResponse:
    """Mark the report as sent and notify the partner.

    Only the first send records sent_at and notifies; repeats return the report unchanged.
    """
    report = await service.send_report(report_id)
    return FinancialReportResponse.model_validate(report)


@router.get(
    "/partners/{partner_invitation_id}/reports",
    response_model=list[PartnerReportResponse],
    summary="List sent reports as the partner sees them",
)
async def list_partner_reports(
    partner_invitation_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[ReportService, Depends(get_report_service)],
) -> list[PartnerReportResponse]:
    """Partner-facing listing; figures hidden by the organization are null."""
    views = await service.list_partner_reports(partner_invitation_id, viewer_id=user_id)
    return [PartnerReportResponse.model_validate(v) for v in views]


@router.get(
    "/organizations/{organization_id}/overview",
    response_model=MonthlyOverviewResponse,
    summary="Monthly organization overview",
)
async def get_monthly_overview(
    organization_id: str,
    service: Annotated[ReportService, Depends(get_report_service)],
    months: Annotated[int | None, Query(description="Number of months (1-24)")] = None,
    until: Annotated[str | None, Query(description="Last month as YYYY-MM (default: current)")] = None,
) -> MonthlyOverviewResponse:
    """Revenue, expenses, profit and ROI for recent months, oldest first."""
    summaries = await service.get_monthly_overview(organization_id, months=months, until=until)
    return MonthlyOverviewResponse(
        organization_id=organization_id,
        months=[
            MonthlySummaryResponse(
                month=str(s.month),
                total_revenue=s.total_revenue,
                total_expenses=s.total_expenses,
                net_profit=s.net_profit,
                roi_percentage=s.roi_percentage,
                is_profit=s.is_profit,
            )
            for s in summaries
        ],
    )


# ---------------------------------------------------------------------------
# Withdrawal endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/withdrawals",
    response_model=WithdrawalRequestResponse,
    status_code=201,
    summary="Create a withdrawal request",
)
async def create_withdrawal_request(
    request: CreateWithdrawalRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> WithdrawalRequestResponse:
    """Request a payout from a report's profit share."""
    withdrawal = await service.create_withdrawal_request(
        partner_invitation_id=request.partner_invitation_id,
        amount=request.amount,
        report_id=request.report_id,
        notes=request.notes,
        organization_id=request.organization_id,
        requested_by=user_id,
    )
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.post(
    "/withdrawals/{request_id}/approve",
    response_model=WithdrawalRequestResponse,
    summary="Approve a pending withdrawal",
)
async def approve_withdrawal(
    request_id: uuid.UUID,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> WithdrawalRequestResponse:
    withdrawal = await service.approve_withdrawal(request_id, actor_id=user_id)
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.post(
    "/withdrawals/{request_id}/reject",
    response_model=WithdrawalRequestResponse,
    summary="Reject a pending or approved withdrawal",
)
async def reject_withdrawal(
    request_id: uuid.UUID,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
    request: RejectWithdrawalRequest | None = None,
) -> WithdrawalRequestResponse:
    withdrawal = await service.reject_withdrawal(
        request_id,
        reason=request.reason if request is not None else None,
        actor_id=user_id,
    )
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.post(
    "/withdrawals/{request_id}/process",
    response_model=WithdrawalRequestResponse,
    summary="Transfer an approved withdrawal to the partner",
)
async def process_withdrawal(
    request_id: uuid.UUID,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> WithdrawalRequestResponse:
    """Pay out an approved withdrawal through Stripe Connect.

    A failed transfer leaves the request approved so it can be retried.
    """
    withdrawal = await service.process_withdrawal(request_id, actor_id=user_id)
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.post(
    "/withdrawals/{request_id}/reconcile",
    response_model=WithdrawalRequestResponse,
    summary="Resolve a withdrawal stuck in processing",
)
async def reconcile_withdrawal(
    request_id: uuid.UUID,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> WithdrawalRequestResponse:
    """Complete the request if its transfer exists, otherwise return it to approved."""
    withdrawal = await service.reconcile_withdrawal(request_id, actor_id=user_id)
    return WithdrawalRequestResponse.model_validate(withdrawal)


@router.get(
    "/organizations/{organization_id}/partners/{partner_invitation_id}/withdrawals",
    response_model=list[WithdrawalRequestResponse],
    summary="List a partner's withdrawal requests",
)
async def list_withdrawals(
    organization_id: str,
    partner_invitation_id: str,
    service: Annotated[WithdrawalService, Depends(get_withdrawal_service)],
) -> list[WithdrawalRequestResponse]:
    """Withdrawal requests of one partner, newest first."""
    withdrawals = await service.list_withdrawals(organization_id, partner_invitation_id)
    return [WithdrawalRequestResponse.model_validate(w) for w in withdrawals]
