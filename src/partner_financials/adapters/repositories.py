"""SQLAlchemy repositories for the partner financials service.

All repositories extend BaseRepository and implement the interfaces defined
in core/interfaces.py. Report writes go through a native INSERT .. ON CONFLICT
upsert and withdrawal status writes are conditional UPDATEs, so concurrent
callers never need an application-level lock.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from partner_financials.core.interfaces import LedgerRecord, PartnerTerms, PartnerVisibility
from partner_financials.core.models import (
    Expense,
    FinancialReport,
    ManualRevenue,
    OrganizationPartnerSettings,
    PartnerAccess,
    PartnerInvitation,
    PartnerUser,
    Project,
    Transaction,
    WithdrawalRequest,
)
from partner_financials.core.workflow import WithdrawalStatus
from partner_financials.database import BaseRepository, utcnow
from partner_financials.observability import get_logger

logger = get_logger(__name__)

PAYOUT_TRANSACTION_TYPE = "payment"

_REPORT_KEY = ("organization_id", "partner_invitation_id", "report_month", "report_type")

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


class FinancialReportRepository(BaseRepository[FinancialReport]):
    """Repository for fin_partner_financial_reports."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, FinancialReport)

    async def upsert(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
        values: dict[str, Any],
        created_by: str | None,
    ) -> FinancialReport:
        """Insert a report or update the existing row for the same key.

        On conflict only the computed fields in ``values`` and updated_at are
        overwritten; id, created_at, created_by and sent_at keep their
        original values.

        Args:
            organization_id: Organization of the report.
            partner_invitation_id: Partner of the report.
            report_month: First day of the reported month.
            report_type: Report type, e.g. ``monthly``.
            values: Computed report columns.
            created_by: Actor recorded on first insert.

        Returns:
            The stored FinancialReport, re-read from the database.
        """
        dialect = self._session.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Report upsert is not supported on dialect {dialect!r}")

        now = utcnow()
        stmt = insert(FinancialReport).values(
            id=uuid.uuid4(),
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            report_month=report_month,
            report_type=report_type,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_REPORT_KEY),
            set_={**values, "updated_at": now},
        ).returning(FinancialReport.id)

        result = await self._session.execute(stmt)
        report_id = result.scalar_one()
        report = await self.get_by_id(report_id)
        if report is None:
            raise RuntimeError(f"Upserted financial report {report_id} could not be re-read")

        logger.debug(
            "financial_report_upserted",
            report_id=str(report_id),
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            report_month=report_month.isoformat(),
        )
        return report

    async def get_by_key(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
    ) -> FinancialReport | None:
        """Return the report with the given unique key, or None."""
        query = select(FinancialReport).where(
            FinancialReport.organization_id == organization_id,
            FinancialReport.partner_invitation_id == partner_invitation_id,
            FinancialReport.report_month == report_month,
            FinancialReport.report_type == report_type,
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def mark_sent(self, report_id: uuid.UUID, sent_at: datetime) -> bool:
        """Set sent_at unless it is already set.

        Returns:
            True when this call recorded the send, False when the report was
            already sent (or does not exist).
        """
        stmt = (
            update(FinancialReport)
            .where(FinancialReport.id == report_id, FinancialReport.sent_at.is_(None))
            .values(sent_at=sent_at, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def adjust_balance(self, report_id: uuid.UUID, delta: Decimal) -> None:
        """Add ``delta`` to the stored balance in a single UPDATE."""
        stmt = (
            update(FinancialReport)
            .where(FinancialReport.id == report_id)
            .values(balance=FinancialReport.balance + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def list_for_partner(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[FinancialReport]:
        """List a partner's reports.

        Args:
            organization_id: Organization filter.
            partner_invitation_id: Partner filter.

        Returns:
            Reports ordered by report_month descending.
        """
        query = (
            select(FinancialReport)
            .where(
                FinancialReport.organization_id == organization_id,
                FinancialReport.partner_invitation_id == partner_invitation_id,
            )
            .order_by(FinancialReport.report_month.desc(), FinancialReport.report_type)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())


class WithdrawalRequestRepository(BaseRepository[WithdrawalRequest]):
    """Repository for fin_partner_withdrawal_requests."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, WithdrawalRequest)

    async def transition(
        self,
        request_id: uuid.UUID,
        expected_status: str,
        new_status: str,
        values: dict[str, Any] | None = None,
    ) -> WithdrawalRequest | None:
        """Compare-and-swap the status of a withdrawal request.

        Args:
            request_id: Request to update.
            expected_status: Status the row must currently have.
            new_status: Status to write.
            values: Extra columns written in the same UPDATE.

        Returns:
            The updated request, or None if the row was not in ``expected_status``.
        """
        stmt = (
            update(WithdrawalRequest)
            .where(
                WithdrawalRequest.id == request_id,
                WithdrawalRequest.status == expected_status,
            )
            .values(status=new_status, updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "withdrawal_transition_conflict",
                withdrawal_request_id=str(request_id),
                expected_status=expected_status,
                new_status=new_status,
            )
            return None
        return await self.get_by_id(request_id)

    async def sum_committed_for_report(
        self,
        report_id: uuid.UUID,
        exclude_request_id: uuid.UUID | None = None,
    ) -> Decimal:
        """Sum of all non-rejected request amounts drawn on a report."""
        query = select(func.coalesce(func.sum(WithdrawalRequest.amount), 0)).where(
            WithdrawalRequest.financial_report_id == report_id,
            WithdrawalRequest.status != WithdrawalStatus.REJECTED.value,
        )
        if exclude_request_id is not None:
            query = query.where(WithdrawalRequest.id != exclude_request_id)

        result = await self._session.execute(query)
        return _to_decimal(result.scalar())

    async def sum_completed_for_report(self, report_id: uuid.UUID) -> Decimal:
        """Sum of completed request amounts drawn on a report."""
        query = select(func.coalesce(func.sum(WithdrawalRequest.amount), 0)).where(
            WithdrawalRequest.financial_report_id == report_id,
            WithdrawalRequest.status == WithdrawalStatus.COMPLETED.value,
        )
        result = await self._session.execute(query)
        return _to_decimal(result.scalar())

    async def record_payout_transaction(
        self,
        request: WithdrawalRequest,
        transfer_id: str,
        recorded_by: str | None,
    ) -> None:
        """Add the completed payout to the host transactions table.

        The row has no project, so the ledger never counts it as revenue. It is
        flushed with the completion and committed in the same transaction.
        """
        self._session.add(
            Transaction(
                id=str(uuid.uuid4()),
                project_id=None,
                user_id=recorded_by,
                amount=request.amount,
                type=PAYOUT_TRANSACTION_TYPE,
                status=WithdrawalStatus.COMPLETED.value,
                details={
                    "withdrawal_request_id": str(request.id),
                    "partner_invitation_id": request.partner_invitation_id,
                    "organization_id": request.organization_id,
                    "stripe_transfer_id": transfer_id,
                    "type": "partner_withdrawal",
                },
                created_at=utcnow(),
            )
        )
        await self._session.flush()

    async def list_for_partner(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[WithdrawalRequest]:
        """List a partner's withdrawal requests, newest first."""
        query = (
            select(WithdrawalRequest)
            .where(
                WithdrawalRequest.organization_id == organization_id,
                WithdrawalRequest.partner_invitation_id == partner_invitation_id,
            )
            .order_by(WithdrawalRequest.created_at.desc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())


class LedgerSourceRepository:
    """Read-only access to the host application's financial records.

    Implements ILedgerSource. Amounts are returned exactly as stored; the
    Ledger Reader decides how to parse them.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        self._session = session

    async def list_project_ids(self, organization_id: str) -> list[str]:
        result = await self._session.execute(
            select(Project.id).where(Project.organization_id == organization_id)
        )
        return [str(project_id) for project_id in result.scalars().all()]

    async def list_transactions(
        self,
        project_ids: list[str],
        status: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        """Transactions of the given projects with ``status`` and a positive amount.

        Args:
            project_ids: Projects to include; must not be empty.
            status: Transaction status filter.
            period_start: Window start (inclusive).
            period_end: Window end (exclusive).
        """
        query = (
            select(Transaction.id, Transaction.amount, Transaction.created_at)
            .where(
                Transaction.project_id.in_(project_ids),
                Transaction.status == status,
                Transaction.amount > 0,
                Transaction.created_at >= period_start,
                Transaction.created_at < period_end,
            )
            .order_by(Transaction.created_at)
        )
        result = await self._session.execute(query)
        return [LedgerRecord(str(row.id), row.amount, row.created_at) for row in result]

    async def list_manual_revenue(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        query = (
            select(ManualRevenue.id, ManualRevenue.amount, ManualRevenue.created_at)
            .where(
                ManualRevenue.organization_id == organization_id,
                ManualRevenue.created_at >= period_start,
                ManualRevenue.created_at < period_end,
            )
            .order_by(ManualRevenue.created_at)
        )
        result = await self._session.execute(query)
        return [LedgerRecord(str(row.id), row.amount, row.created_at) for row in result]

    async def list_expenses(
        self,
        organization_id: str,
        statuses: tuple[str, ...],
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        query = (
            select(Expense.id, Expense.amount, Expense.created_at)
            .where(
                Expense.organization_id == organization_id,
                Expense.status.in_(statuses),
                Expense.created_at >= period_start,
                Expense.created_at < period_end,
            )
            .order_by(Expense.created_at)
        )
        result = await self._session.execute(query)
        return [LedgerRecord(str(row.id), row.amount, row.created_at) for row in result]


class PartnerTermsRepository:
    """Resolves partner terms from partner_invitations, partner_access, users and partner settings."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        self._session = session

    async def get_partner_terms(self, invitation_id: str) -> PartnerTerms | None:
        """Load the investment terms and payout details of an invitation.

        Args:
            invitation_id: Partner invitation primary key.

        Returns:
            PartnerTerms, or None if the invitation does not exist. user_id and
            payout_account_id are None while the partner has no linked account;
            visibility is all hidden while there is no settings row.
        """
        query = (
            select(
                PartnerInvitation,
                PartnerAccess.user_id,
                PartnerUser.stripe_connect_account_id,
                OrganizationPartnerSettings,
            )
            .outerjoin(PartnerAccess, PartnerAccess.partner_invitation_id == PartnerInvitation.id)
            .outerjoin(PartnerUser, PartnerUser.id == PartnerAccess.user_id)
            .outerjoin(
                OrganizationPartnerSettings,
                OrganizationPartnerSettings.partner_invitation_id == PartnerInvitation.id,
            )
            .where(PartnerInvitation.id == invitation_id)
            .limit(1)
        )
        row = (await self._session.execute(query)).first()
        if row is None:
            return None

        invitation, user_id, payout_account_id, partner_settings = row
        visibility = (
            PartnerVisibility(
                can_see_revenue=bool(partner_settings.can_see_revenue),
                can_see_roi=bool(partner_settings.can_see_roi),
                can_see_balance=bool(partner_settings.can_see_balance),
                can_see_monthly_reports=bool(partner_settings.can_see_monthly_reports),
            )
            if partner_settings is not None
            else PartnerVisibility()
        )
        return PartnerTerms(
            invitation_id=str(invitation.id),
            organization_id=str(invitation.organization_id),
            status=invitation.status,
            investment_amount=invitation.investment_amount,
            share_percentage=invitation.share_percentage,
            user_id=str(user_id) if user_id is not None else None,
            payout_account_id=payout_account_id,
            payout_onboarding_completed=bool(invitation.stripe_connect_onboarding_completed),
            email=invitation.email,
            visibility=visibility,
        )
