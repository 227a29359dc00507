"""Repository tests for partner-financials.

Run against SQLite (aiosqlite) so that the native upsert and the conditional
status UPDATEs are exercised for real. Production runs on PostgreSQL, which
shares the ON CONFLICT syntax used here.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncIterator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from partner_financials.adapters.repositories import (
    FinancialReportRepository,
    LedgerSourceRepository,
    PartnerTermsRepository,
    WithdrawalRequestRepository,
)
from partner_financials.core.interfaces import PartnerVisibility
from partner_financials.core.ledger import LedgerReader
from partner_financials.core.models import (
    Expense,
    ManualRevenue,
    OrganizationPartnerSettings,
    PartnerAccess,
    PartnerInvitation,
    PartnerUser,
    Project,
    Transaction,
    WithdrawalRequest,
)
from partner_financials.core.services import ReportService
from partner_financials.database import Base
from partner_financials.settings import Settings

from conftest import INVITATION_ID, ORG_ID, PARTNER_USER_ID

MARCH = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)
START = datetime(2024, 3, 1, tzinfo=timezone.utc)
END = datetime(2024, 4, 1, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session() -> AsyncIterator[AsyncSession]:
    """In-memory database with every mapped table created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as db:
        yield db

    await engine.dispose()


def _values(net_profit: str = "8000.00", balance: str = "2000.00") -> dict:
    return {
        "total_revenue": Decimal("12000.00"),
        "total_expenses": Decimal("4000.00"),
        "net_profit": Decimal(net_profit),
        "roi_percentage": Decimal("200.0000"),
        "partner_investment_amount": Decimal("50000.00"),
        "partner_share_percentage": Decimal("25.0000"),
        "partner_profit_share": Decimal("2000.00"),
        "partner_roi_percentage": Decimal("4.0000"),
        "balance": Decimal(balance),
        "report_data": {"summary": {"net_profit": net_profit}},
    }


class TestFinancialReportRepository:
    """Tests for the report upsert and first-send behaviour."""

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates_in_place(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)

        first = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by="admin-1")
        first_id = first.id
        second = await repo.upsert(
            ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(net_profit="7000.00"), created_by="admin-2"
        )

        assert second.id == first_id
        assert second.net_profit == Decimal("7000.00")
        assert second.report_data == {"summary": {"net_profit": "7000.00"}}
        assert second.created_by == "admin-1"
        assert len(await repo.list_for_partner(ORG_ID, INVITATION_ID)) == 1

    @pytest.mark.asyncio
    async def test_upsert_does_not_touch_sent_at(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)
        report = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)
        sent_at = datetime(2024, 4, 2, 8, 0, tzinfo=timezone.utc)
        assert await repo.mark_sent(report.id, sent_at) is True

        updated = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)

        assert updated.sent_at is not None
        assert updated.sent_at.replace(tzinfo=None) == sent_at.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_different_months_are_different_reports(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)

        march = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)
        april = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 4, 1), "monthly", _values(), created_by=None)

        assert march.id != april.id
        listed = await repo.list_for_partner(ORG_ID, INVITATION_ID)
        assert [r.report_month for r in listed] == [date(2024, 4, 1), date(2024, 3, 1)]

    @pytest.mark.asyncio
    async def test_mark_sent_first_send_wins(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)
        report = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)

        assert await repo.mark_sent(report.id, datetime(2024, 4, 1, tzinfo=timezone.utc)) is True
        assert await repo.mark_sent(report.id, datetime(2024, 5, 1, tzinfo=timezone.utc)) is False

        stored = await repo.get_by_id(report.id)
        assert stored is not None
        assert stored.sent_at.month == 4

    @pytest.mark.asyncio
    async def test_adjust_balance(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)
        report = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)

        await repo.adjust_balance(report.id, Decimal("-750.25"))

        stored = await repo.get_by_id(report.id)
        assert stored is not None
        assert stored.balance == Decimal("1249.75")

    @pytest.mark.asyncio
    async def test_get_by_key(self, session: AsyncSession) -> None:
        repo = FinancialReportRepository(session)
        report = await repo.upsert(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly", _values(), created_by=None)

        found = await repo.get_by_key(ORG_ID, INVITATION_ID, date(2024, 3, 1), "monthly")

        assert found is not None and found.id == report.id
        assert await repo.get_by_key(ORG_ID, INVITATION_ID, date(2024, 2, 1), "monthly") is None


class TestWithdrawalRequestRepository:
    """Tests for compare-and-swap status writes and committed sums."""

    async def _create(
        self,
        repo: WithdrawalRequestRepository,
        amount: str,
        status: str = "pending",
        report_id: uuid.UUID | None = None,
    ) -> WithdrawalRequest:
        return await repo.create(
            WithdrawalRequest(
                organization_id=ORG_ID,
                partner_invitation_id=INVITATION_ID,
                financial_report_id=report_id,
                requested_by=PARTNER_USER_ID,
                amount=Decimal(amount),
                status=status,
            )
        )

    @pytest.mark.asyncio
    async def test_transition_applies_when_status_matches(self, session: AsyncSession) -> None:
        repo = WithdrawalRequestRepository(session)
        request = await self._create(repo, "100.00")

        updated = await repo.transition(request.id, "pending", "approved", {"reviewed_by": "admin-1"})

        assert updated is not None
        assert updated.status == "approved"
        assert updated.reviewed_by == "admin-1"

    @pytest.mark.asyncio
    async def test_transition_is_noop_when_status_differs(self, session: AsyncSession) -> None:
        repo = WithdrawalRequestRepository(session)
        request = await self._create(repo, "100.00")
        await repo.transition(request.id, "pending", "approved")

        assert await repo.transition(request.id, "pending", "approved") is None
        assert await repo.transition(request.id, "processing", "completed") is None

        stored = await repo.get_by_id(request.id)
        assert stored is not None and stored.status == "approved"

    @pytest.mark.asyncio
    async def test_sums_per_report(self, session: AsyncSession) -> None:
        repo = WithdrawalRequestRepository(session)
        report_id = uuid.uuid4()
        kept = await self._create(repo, "100.00", "pending", report_id)
        await self._create(repo, "250.50", "completed", report_id)
        await self._create(repo, "999.00", "rejected", report_id)
        await self._create(repo, "40.00", "approved", uuid.uuid4())

        assert await repo.sum_committed_for_report(report_id) == Decimal("350.50")
        assert await repo.sum_committed_for_report(report_id, exclude_request_id=kept.id) == Decimal("250.50")
        assert await repo.sum_completed_for_report(report_id) == Decimal("250.50")
        assert await repo.sum_completed_for_report(uuid.uuid4()) == Decimal("0")

    @pytest.mark.asyncio
    async def test_list_for_partner(self, session: AsyncSession) -> None:
        repo = WithdrawalRequestRepository(session)
        await self._create(repo, "10.00")
        await self._create(repo, "20.00")

        requests = await repo.list_for_partner(ORG_ID, INVITATION_ID)

        assert len(requests) == 2
        assert await repo.list_for_partner(ORG_ID, "inv-other") == []

    @pytest.mark.asyncio
    async def test_payout_transaction_stays_out_of_the_ledger(self, session: AsyncSession) -> None:
        session.add(Project(id="proj-1", organization_id=ORG_ID))
        repo = WithdrawalRequestRepository(session)
        request = await self._create(repo, "1000.00", "completed")

        await repo.record_payout_transaction(request, "tr_test_001", "admin-1")

        [row] = (await session.execute(select(Transaction))).scalars().all()
        assert row.project_id is None
        assert row.user_id == "admin-1"
        assert row.amount == Decimal("1000.00")
        assert row.type == "payment"
        assert row.status == "completed"
        assert row.details["withdrawal_request_id"] == str(request.id)
        assert row.details["stripe_transfer_id"] == "tr_test_001"
        ledger = LedgerSourceRepository(session)
        project_ids = await ledger.list_project_ids(ORG_ID)
        window_start = datetime(2000, 1, 1, tzinfo=timezone.utc)
        window_end = datetime(2100, 1, 1, tzinfo=timezone.utc)
        assert await ledger.list_transactions(project_ids, "completed", window_start, window_end) == []


class TestLedgerSourceRepository:
    """Tests for the host-table ledger queries."""

    @pytest_asyncio.fixture
    async def seeded(self, session: AsyncSession) -> AsyncSession:
        session.add_all(
            [
                Project(id="proj-1", organization_id=ORG_ID),
                Project(id="proj-x", organization_id="org-other"),
                Transaction(id="tx-1", project_id="proj-1", amount=Decimal("10000.00"), status="completed", created_at=MARCH),
                Transaction(id="tx-2", project_id="proj-1", amount=Decimal("50.00"), status="failed", created_at=MARCH),
                Transaction(id="tx-3", project_id="proj-1", amount=Decimal("-20.00"), status="completed", created_at=MARCH),
                Transaction(id="tx-4", project_id="proj-x", amount=Decimal("75.00"), status="completed", created_at=MARCH),
                Transaction(
                    id="tx-5",
                    project_id="proj-1",
                    amount=Decimal("30.00"),
                    status="completed",
                    created_at=datetime(2024, 4, 1, tzinfo=timezone.utc),
                ),
                ManualRevenue(id="rev-1", organization_id=ORG_ID, amount="2000", created_at=MARCH),
                ManualRevenue(id="rev-2", organization_id="org-other", amount="5", created_at=MARCH),
                Expense(id="exp-1", organization_id=ORG_ID, amount="2500", status="Approved", created_at=MARCH),
                Expense(id="exp-2", organization_id=ORG_ID, amount="1500", status="Paid", created_at=MARCH),
                Expense(id="exp-3", organization_id=ORG_ID, amount="800", status="Rejected", created_at=MARCH),
            ]
        )
        await session.flush()
        return session

    @pytest.mark.asyncio
    async def test_queries_filter_by_owner_status_and_window(self, seeded: AsyncSession) -> None:
        repo = LedgerSourceRepository(seeded)

        project_ids = await repo.list_project_ids(ORG_ID)
        transactions = await repo.list_transactions(project_ids, "completed", START, END)
        revenue = await repo.list_manual_revenue(ORG_ID, START, END)
        expenses = await repo.list_expenses(ORG_ID, ("Approved", "Paid"), START, END)

        assert project_ids == ["proj-1"]
        assert [r.record_id for r in transactions] == ["tx-1"]
        assert [r.record_id for r in revenue] == ["rev-1"]
        assert sorted(r.record_id for r in expenses) == ["exp-1", "exp-2"]
        assert revenue[0].amount == "2000"

    @pytest.mark.asyncio
    async def test_report_generation_end_to_end(self, seeded: AsyncSession) -> None:
        seeded.add_all(
            [
                PartnerInvitation(
                    id=INVITATION_ID,
                    organization_id=ORG_ID,
                    email="partner@example.com",
                    status="accepted",
                    investment_amount=Decimal("50000.00"),
                    share_percentage=Decimal("25.0000"),
                    stripe_connect_onboarding_completed=True,
                ),
            ]
        )
        await seeded.flush()
        service = ReportService(
            ledger_reader=LedgerReader(LedgerSourceRepository(seeded)),
            terms_source=PartnerTermsRepository(seeded),
            report_repo=FinancialReportRepository(seeded),
            withdrawal_repo=WithdrawalRequestRepository(seeded),
            notifier=AsyncMock(),
            settings=Settings(database_url="sqlite+aiosqlite:///:memory:"),
        )

        first = await service.generate_report(ORG_ID, INVITATION_ID, "2024-03", actor_id="admin-1")
        second = await service.generate_report(ORG_ID, INVITATION_ID, "2024-03", actor_id="admin-1")

        assert second.id == first.id
        assert second.total_revenue == Decimal("12000.00")
        assert second.total_expenses == Decimal("4000.00")
        assert second.net_profit == Decimal("8000.00")
        assert second.partner_profit_share == Decimal("2000.00")
        assert second.balance == Decimal("2000.00")


class TestPartnerTermsRepository:
    """Tests for resolving partner terms across invitation, access and user rows."""

    @pytest.mark.asyncio
    async def test_resolves_linked_user_and_payout_account(self, session: AsyncSession) -> None:
        session.add_all(
            [
                PartnerInvitation(
                    id=INVITATION_ID,
                    organization_id=ORG_ID,
                    email="partner@example.com",
                    status="accepted",
                    investment_amount=Decimal("50000.00"),
                    share_percentage=Decimal("25.0000"),
                    stripe_connect_onboarding_completed=True,
                ),
                PartnerAccess(id="access-1", partner_invitation_id=INVITATION_ID, user_id=PARTNER_USER_ID),
                PartnerUser(id=PARTNER_USER_ID, stripe_connect_account_id="acct_partner_001"),
            ]
        )
        await session.flush()

        terms = await PartnerTermsRepository(session).get_partner_terms(INVITATION_ID)

        assert terms is not None
        assert terms.organization_id == ORG_ID
        assert terms.investment_amount == Decimal("50000")
        assert terms.share_percentage == Decimal("25")
        assert terms.user_id == PARTNER_USER_ID
        assert terms.payout_account_id == "acct_partner_001"
        assert terms.payout_onboarding_completed is True
        assert terms.visibility == PartnerVisibility()

    @pytest.mark.asyncio
    async def test_invitation_without_linked_user(self, session: AsyncSession) -> None:
        session.add(
            PartnerInvitation(
                id=INVITATION_ID,
                organization_id=ORG_ID,
                status="pending",
                investment_amount=None,
                share_percentage=None,
                stripe_connect_onboarding_completed=False,
            )
        )
        await session.flush()

        terms = await PartnerTermsRepository(session).get_partner_terms(INVITATION_ID)

        assert terms is not None
        assert terms.user_id is None
        assert terms.payout_account_id is None
        assert terms.investment_amount is None
        assert terms.visibility == PartnerVisibility()

    @pytest.mark.asyncio
    async def test_reads_visibility_settings(self, session: AsyncSession) -> None:
        session.add_all(
            [
                PartnerInvitation(
                    id=INVITATION_ID,
                    organization_id=ORG_ID,
                    status="accepted",
                    investment_amount=Decimal("1000.00"),
                    share_percentage=Decimal("10.0000"),
                    stripe_connect_onboarding_completed=True,
                ),
                OrganizationPartnerSettings(
                    id="settings-1",
                    organization_id=ORG_ID,
                    partner_invitation_id=INVITATION_ID,
                    can_see_revenue=False,
                    can_see_roi=True,
                    can_see_balance=True,
                    can_see_monthly_reports=True,
                ),
            ]
        )
        await session.flush()

        terms = await PartnerTermsRepository(session).get_partner_terms(INVITATION_ID)

        assert terms is not None
        assert terms.visibility == PartnerVisibility(
            can_see_revenue=False, can_see_roi=True, can_see_balance=True, can_see_monthly_reports=True
        )

    @pytest.mark.asyncio
    async def test_unknown_invitation(self, session: AsyncSession) -> None:
        assert await PartnerTermsRepository(session).get_partner_terms("inv-missing") is None
