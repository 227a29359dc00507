"""Business logic services for the partner financials engine.

All services depend on the interfaces in core/interfaces.py and receive their
collaborators via constructor injection. No framework code (FastAPI) belongs
here.

Key invariants:
- ReportService: one report per (organization, partner, month, type); regeneration
  updates the row in place and never touches sent_at, created_by or report_month.
- ReportService: sent_at is written once (first send wins) and only the first send notifies.
- WithdrawalService: every status write is a compare-and-swap on the expected source
  status; process claims the row (approved -> processing) before calling the
  payment processor, so concurrent calls trigger at most one transfer.
- WithdrawalService: a failed transfer puts the request back to approved. A
  request left in processing (cancelled call, failed release) is resolved by
  reconcile_withdrawal, which looks the transfer up by its idempotency key.
- Notifications are sent after commit and a failing notifier never fails the
  operation.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import DBAPIError

from partner_financials.core.aggregator import (
    ZERO,
    MonthlySummary,
    ReportComputation,
    aggregate,
    quantize_money,
    summarize_month,
)
from partner_financials.core.interfaces import (
    IFinancialReportRepository,
    INotifier,
    IPartnerTermsSource,
    ITransferGateway,
    IWithdrawalRequestRepository,
    PartnerTerms,
    PartnerVisibility,
    TransferResult,
)
from partner_financials.core.ledger import LedgerReader
from partner_financials.core.models import FinancialReport, WithdrawalRequest
from partner_financials.core.month import ReportMonth
from partner_financials.core.workflow import WithdrawalAction, WithdrawalStatus, next_status
from partner_financials.database import utcnow
from partner_financials.errors import (
    InvalidTransitionError,
    NotFoundError,
    OwnershipMismatchError,
    UpstreamUnavailableError,
    ValidationError,
)
from partner_financials.observability import get_logger
from partner_financials.settings import Settings

logger = get_logger(__name__)

ACCEPTED_INVITATION_STATUS = "accepted"
MAX_OVERVIEW_MONTHS = 24

EVENT_REPORT_SENT = "partner_financial_report"
EVENT_WITHDRAWAL_APPROVED = "withdrawal_approved"
EVENT_WITHDRAWAL_REJECTED = "withdrawal_rejected"
EVENT_WITHDRAWAL_COMPLETED = "withdrawal_completed"


def transfer_idempotency_key(request_id: uuid.UUID) -> str:
    """Idempotency key shared by every payout attempt for one withdrawal."""
    return f"withdrawal-{request_id}"


def _coerce_month(month: ReportMonth | str) -> ReportMonth:
    return month if isinstance(month, ReportMonth) else ReportMonth.parse(month)


def _coerce_amount(amount: Decimal | int | str) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid withdrawal amount {amount!r}", context={"amount": str(amount)}) from None
    if not value.is_finite() or value <= ZERO:
        raise ValidationError(
            "Withdrawal amount must be greater than 0",
            context={"amount": str(amount)},
        )
    return quantize_money(value)


async def _load_terms(source: IPartnerTermsSource, invitation_id: str) -> PartnerTerms:
    """Fetch partner terms, mapping store failures and absence to engine errors."""
    try:
        terms = await source.get_partner_terms(invitation_id)
    except (DBAPIError, OSError) as exc:
        logger.error("partner_terms_read_failed", partner_invitation_id=invitation_id, error=str(exc))
        raise UpstreamUnavailableError(
            "Partner terms could not be read",
            context={"partner_invitation_id": invitation_id},
        ) from exc
    if terms is None:
        raise NotFoundError(
            f"Partner invitation {invitation_id} not found",
            context={"partner_invitation_id": invitation_id},
        )
    return terms


async def _deliver(notifier: INotifier, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
    """Send a notification after the state change has been committed.

    A failing notifier is logged and never fails the operation that triggered it.
    """
    try:
        await notifier.notify(user_id, event_type, payload)
    except Exception as exc:
        logger.warning(
            "partner_notification_failed",
            event_type=event_type,
            user_id=user_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )


# Report fields controlled by each visibility switch.
_REVENUE_FIELDS = ("total_revenue", "total_expenses", "net_profit")
_ROI_FIELDS = ("roi_percentage", "partner_roi_percentage")
_BALANCE_FIELDS = ("balance",)

_PARTNER_VIEW_FIELDS = (
    "id",
    "organization_id",
    "partner_invitation_id",
    "report_month",
    "report_type",
    *_REVENUE_FIELDS,
    *_ROI_FIELDS,
    "partner_investment_amount",
    "partner_share_percentage",
    "partner_profit_share",
    *_BALANCE_FIELDS,
    "sent_at",
)


def redact_for_partner(report: FinancialReport, visibility: PartnerVisibility) -> dict[str, Any]:
    """Report fields as a partner may see them; hidden figures are None.

    The stored report is never modified.
    """
    view = {name: getattr(report, name) for name in _PARTNER_VIEW_FIELDS}
    hidden: list[str] = []
    if not visibility.can_see_revenue:
        hidden.extend(_REVENUE_FIELDS)
    if not visibility.can_see_roi:
        hidden.extend(_ROI_FIELDS)
    if not visibility.can_see_balance:
        hidden.extend(_BALANCE_FIELDS)
    for name in hidden:
        view[name] = None
    return view


class ReportService:
    """Generate, store, send and list partner financial reports.

    Reads the ledger through the LedgerReader, reduces it with the pure
    aggregator and persists the result through an idempotent upsert.
    """

    def __init__(
        self,
        ledger_reader: LedgerReader,
        terms_source: IPartnerTermsSource,
        report_repo: IFinancialReportRepository,
        withdrawal_repo: IWithdrawalRequestRepository,
        notifier: INotifier,
        settings: Settings,
    ) -> None:
        """Initialize ReportService with required dependencies."""
        self._ledger_reader = ledger_reader
        self._terms_source = terms_source
        self._report_repo = report_repo
        self._withdrawal_repo = withdrawal_repo
        self._notifier = notifier
        self._settings = settings

    async def generate_report(
        self,
        organization_id: str,
        partner_invitation_id: str,
        month: ReportMonth | str,
        actor_id: str | None = None,
    ) -> FinancialReport:
        """Compute and store the monthly report for one partner.

        Args:
            organization_id: Organization whose ledger is aggregated.
            partner_invitation_id: Partner the report is for.
            month: Report month (``YYYY-MM`` or ReportMonth).
            actor_id: User generating the report; recorded as created_by on insert.

        Returns:
            The stored FinancialReport.

        Raises:
            ValidationError: Malformed month or invalid partner terms.
            NotFoundError: Unknown partner invitation.
            OwnershipMismatchError: Invitation belongs to another organization.
            UpstreamUnavailableError: The ledger could not be read completely.
        """
        report_month = _coerce_month(month)
        terms = await _load_terms(self._terms_source, partner_invitation_id)
        if terms.organization_id != organization_id:
            raise OwnershipMismatchError(
                "Partner invitation belongs to a different organization",
                context={
                    "organization_id": organization_id,
                    "partner_invitation_id": partner_invitation_id,
                },
            )

        entries = await self._ledger_reader.read_ledger(organization_id, report_month)
        computation = aggregate(entries, terms)
        report = await self.upsert_report(
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            month=report_month,
            computation=computation,
            actor_id=actor_id,
        )

        logger.info(
            "financial_report_generated",
            report_id=str(report.id),
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            month=str(report_month),
            total_revenue=str(computation.total_revenue),
            total_expenses=str(computation.total_expenses),
            net_profit=str(computation.net_profit),
            partner_profit_share=str(computation.partner_profit_share),
        )
        return report

    async def upsert_report(
        self,
        organization_id: str,
        partner_invitation_id: str,
        month: ReportMonth,
        computation: ReportComputation,
        actor_id: str | None,
    ) -> FinancialReport:
        """Insert or update the report keyed on (organization, partner, month, type).

        The balance is the profit share minus withdrawals already completed
        against an existing report for the same key.
        """
        report_type = self._settings.report_type
        existing = await self._report_repo.get_by_key(
            organization_id, partner_invitation_id, month.first_day, report_type
        )
        withdrawn = (
            await self._withdrawal_repo.sum_completed_for_report(existing.id)
            if existing is not None
            else ZERO
        )
        share = computation.partner_profit_share
        balance = (share - withdrawn) if share is not None else ZERO

        values: dict[str, Any] = {
            "total_revenue": computation.total_revenue,
            "total_expenses": computation.total_expenses,
            "net_profit": computation.net_profit,
            "roi_percentage": computation.roi_percentage,
            "partner_investment_amount": computation.partner_investment_amount,
            "partner_share_percentage": computation.partner_share_percentage,
            "partner_profit_share": computation.partner_profit_share,
            "partner_roi_percentage": computation.partner_roi_percentage,
            "balance": balance,
            "report_data": computation.report_data(balance),
        }
        return await self._report_repo.upsert(
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            report_month=month.first_day,
            report_type=report_type,
            values=values,
            created_by=actor_id,
        )

    async def send_report(self, report_id: uuid.UUID) -> FinancialReport:
        """Mark a report as sent and notify the partner on the first send.

        Repeated sends are no-ops that return the current row.

        Raises:
            NotFoundError: Unknown report.
        """
        report = await self._get_report(report_id)
        if report.sent_at is not None:
            logger.info("financial_report_already_sent", report_id=str(report_id))
            return report

        first_send = await self._report_repo.mark_sent(report_id, utcnow())
        await self._report_repo.checkpoint()
        report = await self._get_report(report_id)
        if not first_send:
            return report

        logger.info(
            "financial_report_sent",
            report_id=str(report_id),
            partner_invitation_id=report.partner_invitation_id,
        )
        await self._notify_partner(report)
        return report

    async def list_reports(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[FinancialReport]:
        """Reports of one partner, newest month first."""
        return await self._report_repo.list_for_partner(organization_id, partner_invitation_id)

    async def list_partner_reports(
        self,
        partner_invitation_id: str,
        viewer_id: str,
    ) -> list[dict[str, Any]]:
        """Sent reports as the partner sees them, newest month first.

        Figures the organization has hidden from the partner come back as None.
        Nothing is returned while monthly reports are switched off.

        Args:
            partner_invitation_id: Partner whose reports are listed.
            viewer_id: User asking; must be the partner's linked user.

        Raises:
            NotFoundError: Unknown partner invitation.
            OwnershipMismatchError: The viewer is not the partner.
        """
        terms = await _load_terms(self._terms_source, partner_invitation_id)
        if terms.user_id is None or terms.user_id != viewer_id:
            raise OwnershipMismatchError(
                "Reports can only be viewed by the partner they belong to",
                context={"partner_invitation_id": partner_invitation_id},
            )
        if not terms.visibility.can_see_monthly_reports:
            logger.info("partner_reports_hidden", partner_invitation_id=partner_invitation_id)
            return []

        reports = await self._report_repo.list_for_partner(terms.organization_id, partner_invitation_id)
        return [redact_for_partner(r, terms.visibility) for r in reports if r.sent_at is not None]

    async def get_monthly_overview(
        self,
        organization_id: str,
        months: int | None = None,
        until: ReportMonth | str | None = None,
    ) -> list[MonthlySummary]:
        """Organization revenue, expenses, profit and ROI for recent months, oldest first.

        Raises:
            ValidationError: ``months`` outside 1..24 or malformed ``until``.
            UpstreamUnavailableError: The ledger could not be read.
        """
        count = months if months is not None else self._settings.overview_months
        if not 1 <= count <= MAX_OVERVIEW_MONTHS:
            raise ValidationError(
                f"months must be between 1 and {MAX_OVERVIEW_MONTHS}",
                context={"months": count},
            )
        last = _coerce_month(until) if until is not None else ReportMonth.current()

        summaries: list[MonthlySummary] = []
        for offset in range(count - 1, -1, -1):
            month = last.shift(-offset)
            entries = await self._ledger_reader.read_ledger(organization_id, month)
            summaries.append(summarize_month(entries, month))
        return summaries

    async def _get_report(self, report_id: uuid.UUID) -> FinancialReport:
        report = await self._report_repo.get_by_id(report_id)
        if report is None:
            raise NotFoundError(f"Financial report {report_id} not found", context={"report_id": str(report_id)})
        return report

    async def _notify_partner(self, report: FinancialReport) -> None:
        try:
            terms = await _load_terms(self._terms_source, report.partner_invitation_id)
        except (NotFoundError, UpstreamUnavailableError) as exc:
            # The report is already marked sent; a missing recipient only skips the alert.
            logger.warning(
                "report_notification_skipped",
                report_id=str(report.id),
                reason=exc.error_code,
            )
            return
        if terms.user_id is None:
            logger.info("report_notification_no_linked_user", report_id=str(report.id))
            return
        await _deliver(
            self._notifier,
            terms.user_id,
            EVENT_REPORT_SENT,
            {
                "title": "New Financial Report Available",
                "report_id": str(report.id),
                "report_month": report.report_month.isoformat(),
                "partner_invitation_id": report.partner_invitation_id,
                "organization_id": report.organization_id,
            },
        )


class WithdrawalService:
    """Partner withdrawal requests and their approval/payout workflow."""

    def __init__(
        self,
        withdrawal_repo: IWithdrawalRequestRepository,
        report_repo: IFinancialReportRepository,
        terms_source: IPartnerTermsSource,
        transfer_gateway: ITransferGateway,
        notifier: INotifier,
        settings: Settings,
    ) -> None:
        """Initialize WithdrawalService with required dependencies."""
        self._withdrawal_repo = withdrawal_repo
        self._report_repo = report_repo
        self._terms_source = terms_source
        self._transfer_gateway = transfer_gateway
        self._notifier = notifier
        self._settings = settings

    async def create_withdrawal_request(
        self,
        partner_invitation_id: str,
        amount: Decimal | int | str,
        report_id: uuid.UUID | None = None,
        notes: str | None = None,
        organization_id: str | None = None,
        requested_by: str | None = None,
    ) -> WithdrawalRequest:
        """Create a pending withdrawal request for a partner.

        Args:
            partner_invitation_id: Partner raising the request.
            amount: Requested payout; must be positive.
            report_id: Report whose profit share the request draws on.
            notes: Free-form note from the partner.
            organization_id: Expected organization; checked against the invitation.
            requested_by: Partner user id; defaults to the invitation's linked user.

        Returns:
            The persisted request in status pending.

        Raises:
            ValidationError: Bad amount, inactive partner, or amount above the
                available profit share.
            NotFoundError: Unknown invitation or report.
            OwnershipMismatchError: Report or organization does not match the invitation.
        """
        value = _coerce_amount(amount)
        terms = await _load_terms(self._terms_source, partner_invitation_id)
        if terms.status != ACCEPTED_INVITATION_STATUS:
            raise ValidationError(
                "Partner invitation has not been accepted",
                context={"partner_invitation_id": partner_invitation_id, "status": terms.status},
            )
        if not terms.payout_onboarding_completed:
            raise ValidationError(
                "Partner has not completed payout account onboarding",
                context={"partner_invitation_id": partner_invitation_id},
                recovery_hint="Ask the partner to finish setting up their payout account",
            )
        if organization_id is not None and organization_id != terms.organization_id:
            raise OwnershipMismatchError(
                "Organization does not match the partner invitation",
                context={"organization_id": organization_id, "partner_invitation_id": partner_invitation_id},
            )

        if report_id is not None:
            report = await self._get_report(report_id)
            if (
                report.partner_invitation_id != partner_invitation_id
                or report.organization_id != terms.organization_id
            ):
                raise OwnershipMismatchError(
                    "Financial report belongs to a different partner",
                    context={"report_id": str(report_id), "partner_invitation_id": partner_invitation_id},
                )
            await self._check_available(report, value)

        request = await self._withdrawal_repo.create(
            WithdrawalRequest(
                organization_id=terms.organization_id,
                partner_invitation_id=partner_invitation_id,
                financial_report_id=report_id,
                requested_by=requested_by or terms.user_id,
                amount=value,
                status=WithdrawalStatus.PENDING.value,
                notes=notes,
            )
        )
        logger.info(
            "withdrawal_requested",
            withdrawal_request_id=str(request.id),
            partner_invitation_id=partner_invitation_id,
            report_id=str(report_id) if report_id else None,
            amount=str(value),
        )
        return request

    async def approve_withdrawal(
        self,
        request_id: uuid.UUID,
        actor_id: str | None = None,
    ) -> WithdrawalRequest:
        """pending -> approved, after re-checking the available profit share.

        Raises:
            InvalidTransitionError: Request is not pending.
            ValidationError: Amount now exceeds the available profit share.
        """
        request = await self._get_request(request_id)
        next_status(str(request_id), request.status, WithdrawalAction.APPROVE)
        if request.financial_report_id is not None:
            report = await self._get_report(request.financial_report_id)
            await self._check_available(report, request.amount, exclude_request_id=request.id)

        updated = await self._transition(
            request_id,
            WithdrawalStatus.PENDING,
            WithdrawalStatus.APPROVED,
            WithdrawalAction.APPROVE,
            {"reviewed_by": actor_id, "reviewed_at": utcnow()},
        )
        await self._withdrawal_repo.checkpoint()
        logger.info("withdrawal_approved", withdrawal_request_id=str(request_id), actor_id=actor_id)
        await self._notify(updated, EVENT_WITHDRAWAL_APPROVED)
        return updated

    async def reject_withdrawal(
        self,
        request_id: uuid.UUID,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> WithdrawalRequest:
        """pending|approved -> rejected. Never rejects a request whose transfer is in flight.

        Raises:
            InvalidTransitionError: Request is processing, completed or already rejected.
        """
        request = await self._get_request(request_id)
        next_status(str(request_id), request.status, WithdrawalAction.REJECT)
        reason = reason.strip() if reason else None

        updated = await self._transition(
            request_id,
            WithdrawalStatus(request.status),
            WithdrawalStatus.REJECTED,
            WithdrawalAction.REJECT,
            {
                "rejection_reason": reason or None,
                "reviewed_by": actor_id,
                "reviewed_at": utcnow(),
            },
        )
        await self._withdrawal_repo.checkpoint()
        logger.info(
            "withdrawal_rejected",
            withdrawal_request_id=str(request_id),
            actor_id=actor_id,
            has_reason=bool(reason),
        )
        await self._notify(updated, EVENT_WITHDRAWAL_REJECTED)
        return updated

    async def process_withdrawal(
        self,
        request_id: uuid.UUID,
        actor_id: str | None = None,
    ) -> WithdrawalRequest:
        """approved -> processing -> completed, transferring the funds.

        On a failed transfer the request returns to approved and the error is
        re-raised so the caller can decide whether to retry. A cancelled call
        leaves the request in processing for reconcile_withdrawal.

        Raises:
            InvalidTransitionError: Request is not approved (including already completed).
            ValidationError: Partner has no payout account.
            TransferDeclinedError: The payment processor refused the transfer.
            UpstreamUnavailableError: The payment processor could not be reached.
        """
        request = await self._get_request(request_id)
        next_status(str(request_id), request.status, WithdrawalAction.PROCESS)
        terms = await _load_terms(self._terms_source, request.partner_invitation_id)
        if not terms.payout_account_id:
            raise ValidationError(
                "Partner has not set up a payout account",
                context={"withdrawal_request_id": str(request_id)},
                recovery_hint="Ask the partner to connect a payout account before processing",
            )

        claimed = await self._transition(
            request_id,
            WithdrawalStatus.APPROVED,
            WithdrawalStatus.PROCESSING,
            WithdrawalAction.PROCESS,
        )
        await self._withdrawal_repo.checkpoint()

        try:
            result = await self._transfer_gateway.transfer(
                destination_account_id=terms.payout_account_id,
                amount=claimed.amount,
                idempotency_key=transfer_idempotency_key(request_id),
                metadata={
                    "withdrawal_request_id": str(request_id),
                    "partner_invitation_id": claimed.partner_invitation_id,
                    "organization_id": claimed.organization_id,
                    "type": "partner_withdrawal",
                },
            )
        except asyncio.CancelledError:
            logger.warning("withdrawal_transfer_interrupted", withdrawal_request_id=str(request_id))
            raise
        except Exception as exc:
            await self._release(request_id)
            logger.warning(
                "withdrawal_transfer_failed",
                withdrawal_request_id=str(request_id),
                error_code=getattr(exc, "error_code", type(exc).__name__),
                error=str(exc),
            )
            raise

        return await self._complete(request_id, result, actor_id)

    async def reconcile_withdrawal(
        self,
        request_id: uuid.UUID,
        actor_id: str | None = None,
    ) -> WithdrawalRequest:
        """Resolve a request left in processing by an interrupted payout.

        The payment processor is asked for the transfer made with the request's
        idempotency key. If it exists the request is completed with it;
        otherwise the request goes back to approved and can be processed again.
        Requests whose claim is younger than ``reconcile_after_seconds`` may
        still have a transfer in flight and are refused.

        Raises:
            InvalidTransitionError: Request is not processing.
            ValidationError: The payout may still be in flight.
            UpstreamUnavailableError: The payment processor could not be reached.
        """
        request = await self._get_request(request_id)
        next_status(str(request_id), request.status, WithdrawalAction.COMPLETE)
        claimed_at = request.updated_at
        if claimed_at is not None and claimed_at.tzinfo is None:
            claimed_at = claimed_at.replace(tzinfo=timezone.utc)
        settle_by = utcnow() - timedelta(seconds=self._settings.reconcile_after_seconds)
        if claimed_at is not None and claimed_at > settle_by:
            raise ValidationError(
                "Withdrawal payout may still be in flight",
                context={
                    "withdrawal_request_id": str(request_id),
                    "reconcile_after_seconds": self._settings.reconcile_after_seconds,
                },
                recovery_hint="Retry once the payout timeout has passed",
            )

        result = await self._transfer_gateway.find_transfer(transfer_idempotency_key(request_id))
        if result is not None:
            logger.info(
                "withdrawal_reconciled_with_transfer",
                withdrawal_request_id=str(request_id),
                stripe_transfer_id=result.transfer_id,
            )
            return await self._complete(request_id, result, actor_id)

        released = await self._release(request_id)
        if released is None:
            current = await self._withdrawal_repo.get_by_id(request_id)
            raise InvalidTransitionError(
                str(request_id),
                current.status if current is not None else None,
                WithdrawalAction.RELEASE.value,
            )
        logger.info("withdrawal_reconciled_without_transfer", withdrawal_request_id=str(request_id), actor_id=actor_id)
        return released

    async def _release(self, request_id: uuid.UUID) -> WithdrawalRequest | None:
        """processing -> approved, committed immediately."""
        released = await self._withdrawal_repo.transition(
            request_id,
            WithdrawalStatus.PROCESSING.value,
            WithdrawalStatus.APPROVED.value,
        )
        await self._withdrawal_repo.checkpoint()
        return released

    async def _complete(
        self,
        request_id: uuid.UUID,
        result: TransferResult,
        actor_id: str | None,
    ) -> WithdrawalRequest:
        """processing -> completed, with the balance decrement and payout record in one commit."""
        completed = await self._withdrawal_repo.transition(
            request_id,
            WithdrawalStatus.PROCESSING.value,
            WithdrawalStatus.COMPLETED.value,
            {
                "processed_at": utcnow(),
                "stripe_transfer_id": result.transfer_id,
                "platform_fee_amount": result.fee_amount,
            },
        )
        if completed is None:
            logger.critical(
                "withdrawal_transferred_but_not_completed",
                withdrawal_request_id=str(request_id),
                stripe_transfer_id=result.transfer_id,
            )
            raise InvalidTransitionError(str(request_id), None, WithdrawalAction.COMPLETE.value)
        if completed.financial_report_id is not None:
            await self._report_repo.adjust_balance(completed.financial_report_id, -completed.amount)
        await self._withdrawal_repo.record_payout_transaction(
            completed,
            result.transfer_id,
            actor_id or completed.reviewed_by,
        )
        await self._withdrawal_repo.checkpoint()

        logger.info(
            "withdrawal_completed",
            withdrawal_request_id=str(request_id),
            stripe_transfer_id=result.transfer_id,
            amount=str(completed.amount),
            platform_fee_amount=str(result.fee_amount),
            actor_id=actor_id,
        )
        await self._notify(completed, EVENT_WITHDRAWAL_COMPLETED)
        return completed

    async def list_withdrawals(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[WithdrawalRequest]:
        """Withdrawal requests of one partner, newest first."""
        return await self._withdrawal_repo.list_for_partner(organization_id, partner_invitation_id)

    async def _get_request(self, request_id: uuid.UUID) -> WithdrawalRequest:
        request = await self._withdrawal_repo.get_by_id(request_id)
        if request is None:
            raise NotFoundError(
                f"Withdrawal request {request_id} not found",
                context={"withdrawal_request_id": str(request_id)},
            )
        return request

    async def _get_report(self, report_id: uuid.UUID) -> FinancialReport:
        report = await self._report_repo.get_by_id(report_id)
        if report is None:
            raise NotFoundError(f"Financial report {report_id} not found", context={"report_id": str(report_id)})
        return report

    async def _check_available(
        self,
        report: FinancialReport,
        amount: Decimal,
        exclude_request_id: uuid.UUID | None = None,
    ) -> None:
        """Reject ``amount`` if it exceeds the report's uncommitted profit share."""
        if report.partner_profit_share is None:
            raise ValidationError(
                "The report has no partner profit share to withdraw from",
                context={"report_id": str(report.id)},
            )
        committed = await self._withdrawal_repo.sum_committed_for_report(
            report.id, exclude_request_id=exclude_request_id
        )
        available = report.partner_profit_share - committed
        if amount > available:
            raise ValidationError(
                f"Withdrawal amount {amount} exceeds available profit share of {available}",
                context={
                    "report_id": str(report.id),
                    "amount": str(amount),
                    "available": str(available),
                    "partner_profit_share": str(report.partner_profit_share),
                },
            )

    async def _transition(
        self,
        request_id: uuid.UUID,
        expected: WithdrawalStatus,
        target: WithdrawalStatus,
        action: WithdrawalAction,
        values: dict[str, Any] | None = None,
    ) -> WithdrawalRequest:
        updated = await self._withdrawal_repo.transition(request_id, expected.value, target.value, values)
        if updated is None:
            # Lost a race: report the status the winner left behind.
            current = await self._withdrawal_repo.get_by_id(request_id)
            raise InvalidTransitionError(
                str(request_id),
                current.status if current is not None else None,
                action.value,
            )
        return updated

    async def _notify(self, request: WithdrawalRequest, event_type: str) -> None:
        if request.requested_by is None:
            return
        payload: dict[str, Any] = {
            "withdrawal_request_id": str(request.id),
            "partner_invitation_id": request.partner_invitation_id,
            "organization_id": request.organization_id,
            "amount": str(request.amount),
            "status": request.status,
        }
        if request.rejection_reason:
            payload["rejection_reason"] = request.rejection_reason
        if request.stripe_transfer_id:
            payload["stripe_transfer_id"] = request.stripe_transfer_id
        await _deliver(self._notifier, request.requested_by, event_type, payload)
