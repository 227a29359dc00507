"""Shared test fixtures for partner-financials tests."""

import os
import sys
from pathlib import Path

# Ensure the src/ layout is importable without installing the package.
_SRC_PATH = Path(__file__).parent.parent / "src"
if str(_SRC_PATH) not in sys.path:
    sys.path.insert(0, str(_SRC_PATH))

# Module-level Settings() in the router must not point at a real database.
os.environ.setdefault("PARTNER_FIN_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest

from partner_financials.core.interfaces import LedgerRecord, PartnerTerms, TransferResult
from partner_financials.core.models import FinancialReport, WithdrawalRequest
from partner_financials.settings import Settings

ORG_ID = "org-001"
INVITATION_ID = "inv-001"
PARTNER_USER_ID = "user-partner-001"
ADMIN_USER_ID = "user-admin-001"


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


class FakeLedgerSource:
    """ILedgerSource over in-memory record lists, filtering like the SQL adapter."""

    def __init__(self) -> None:
        self.projects: dict[str, list[str]] = {}
        self.transactions: list[tuple[str, str, LedgerRecord]] = []  # (project_id, status, record)
        self.manual_revenue: list[tuple[str, LedgerRecord]] = []
        self.expenses: list[tuple[str, str, LedgerRecord]] = []  # (organization_id, status, record)
        self.transaction_calls = 0

    async def list_project_ids(self, organization_id: str) -> list[str]:
        return list(self.projects.get(organization_id, []))

    async def list_transactions(
        self,
        project_ids: list[str],
        status: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        self.transaction_calls += 1
        return [
            record
            for project_id, record_status, record in self.transactions
            if project_id in project_ids
            and record_status == status
            and Decimal(str(record.amount)) > 0
            and period_start <= record.created_at < period_end
        ]

    async def list_manual_revenue(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        return [
            record
            for org, record in self.manual_revenue
            if org == organization_id and period_start <= record.created_at < period_end
        ]

    async def list_expenses(
        self,
        organization_id: str,
        statuses: tuple[str, ...],
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        return [
            record
            for org, status, record in self.expenses
            if org == organization_id and status in statuses and period_start <= record.created_at < period_end
        ]


class FakeTermsSource:
    """IPartnerTermsSource backed by a dict."""

    def __init__(self, *terms: PartnerTerms) -> None:
        self.terms = {t.invitation_id: t for t in terms}

    async def get_partner_terms(self, invitation_id: str) -> PartnerTerms | None:
        return self.terms.get(invitation_id)


class FakeReportRepository:
    """IFinancialReportRepository with the same upsert and first-send semantics as SQL."""

    def __init__(self) -> None:
        self.reports: dict[uuid.UUID, FinancialReport] = {}
        self.checkpoints = 0

    async def upsert(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
        values: dict[str, Any],
        created_by: str | None,
    ) -> FinancialReport:
        now = datetime.now(timezone.utc)
        existing = await self.get_by_key(organization_id, partner_invitation_id, report_month, report_type)
        if existing is not None:
            for key, value in values.items():
                setattr(existing, key, value)
            existing.updated_at = now
            return existing
        report = FinancialReport(
            id=uuid.uuid4(),
            organization_id=organization_id,
            partner_invitation_id=partner_invitation_id,
            report_month=report_month,
            report_type=report_type,
            created_by=created_by,
            sent_at=None,
            created_at=now,
            updated_at=now,
            **values,
        )
        self.reports[report.id] = report
        return report

    async def get_by_id(self, report_id: uuid.UUID) -> FinancialReport | None:
        return self.reports.get(report_id)

    async def get_by_key(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
    ) -> FinancialReport | None:
        for report in self.reports.values():
            if (
                report.organization_id == organization_id
                and report.partner_invitation_id == partner_invitation_id
                and report.report_month == report_month
                and report.report_type == report_type
            ):
                return report
        return None

    async def mark_sent(self, report_id: uuid.UUID, sent_at: datetime) -> bool:
        report = self.reports.get(report_id)
        if report is None or report.sent_at is not None:
            return False
        report.sent_at = sent_at
        return True

    async def adjust_balance(self, report_id: uuid.UUID, delta: Decimal) -> None:
        report = self.reports[report_id]
        report.balance = report.balance + delta

    async def list_for_partner(self, organization_id: str, partner_invitation_id: str) -> list[FinancialReport]:
        matches = [
            r
            for r in self.reports.values()
            if r.organization_id == organization_id and r.partner_invitation_id == partner_invitation_id
        ]
        return sorted(matches, key=lambda r: r.report_month, reverse=True)

    async def checkpoint(self) -> None:
        self.checkpoints += 1


class FakeWithdrawalRepository:
    """IWithdrawalRequestRepository with compare-and-swap status writes."""

    def __init__(self) -> None:
        self.requests: dict[uuid.UUID, WithdrawalRequest] = {}
        self.payouts: list[dict[str, Any]] = []
        self.checkpoints = 0

    async def create(self, request: WithdrawalRequest) -> WithdrawalRequest:
        now = datetime.now(timezone.utc)
        if request.id is None:
            request.id = uuid.uuid4()
        request.created_at = now
        request.updated_at = now
        self.requests[request.id] = request
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> WithdrawalRequest | None:
        return self.requests.get(request_id)

    async def transition(
        self,
        request_id: uuid.UUID,
        expected_status: str,
        new_status: str,
        values: dict[str, Any] | None = None,
    ) -> WithdrawalRequest | None:
        request = self.requests.get(request_id)
        if request is None or request.status != expected_status:
            return None
        request.status = new_status
        request.updated_at = datetime.now(timezone.utc)
        for key, value in (values or {}).items():
            setattr(request, key, value)
        return request

    async def sum_committed_for_report(
        self,
        report_id: uuid.UUID,
        exclude_request_id: uuid.UUID | None = None,
    ) -> Decimal:
        return sum(
            (
                r.amount
                for r in self.requests.values()
                if r.financial_report_id == report_id and r.status != "rejected" and r.id != exclude_request_id
            ),
            Decimal("0"),
        )

    async def sum_completed_for_report(self, report_id: uuid.UUID) -> Decimal:
        return sum(
            (r.amount for r in self.requests.values() if r.financial_report_id == report_id and r.status == "completed"),
            Decimal("0"),
        )

    async def record_payout_transaction(
        self, request: WithdrawalRequest, transfer_id: str, recorded_by: str | None
    ) -> None:
        self.payouts.append(
            {
                "withdrawal_request_id": request.id,
                "amount": request.amount,
                "stripe_transfer_id": transfer_id,
                "recorded_by": recorded_by,
            }
        )

    async def list_for_partner(self, organization_id: str, partner_invitation_id: str) -> list[WithdrawalRequest]:
        matches = [
            r
            for r in self.requests.values()
            if r.organization_id == organization_id and r.partner_invitation_id == partner_invitation_id
        ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)

    async def checkpoint(self) -> None:
        self.checkpoints += 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        log_format="console",
        stripe_secret_key="sk_test_123",
        platform_fee_percentage=Decimal("2.0"),
        notifier_webhook_url=None,
    )


@pytest.fixture
def partner_terms() -> PartnerTerms:
    """Accepted partner with 50,000 invested at a 25% share and a payout account."""
    return PartnerTerms(
        invitation_id=INVITATION_ID,
        organization_id=ORG_ID,
        status="accepted",
        investment_amount=Decimal("50000"),
        share_percentage=Decimal("25"),
        user_id=PARTNER_USER_ID,
        payout_account_id="acct_partner_001",
        payout_onboarding_completed=True,
        email="partner@example.com",
    )


@pytest.fixture
def march_2024_ledger() -> FakeLedgerSource:
    """Ledger with 10,000 transaction revenue, 2,000 manual revenue and 4,000 expenses in March 2024."""
    source = FakeLedgerSource()
    source.projects[ORG_ID] = ["proj-1", "proj-2"]
    march = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)
    source.transactions = [
        ("proj-1", "completed", LedgerRecord("tx-1", Decimal("6000.00"), march)),
        ("proj-2", "completed", LedgerRecord("tx-2", Decimal("4000.00"), march)),
        ("proj-1", "pending", LedgerRecord("tx-3", Decimal("999.00"), march)),
        ("proj-9", "completed", LedgerRecord("tx-4", Decimal("500.00"), march)),
    ]
    source.manual_revenue = [(ORG_ID, LedgerRecord("rev-1", "2000", march))]
    source.expenses = [
        (ORG_ID, "Approved", LedgerRecord("exp-1", "2500", march)),
        (ORG_ID, "Paid", LedgerRecord("exp-2", "1500.00", march)),
        (ORG_ID, "Pending", LedgerRecord("exp-3", "700", march)),
    ]
    return source


@pytest.fixture
def terms_source(partner_terms: PartnerTerms) -> FakeTermsSource:
    return FakeTermsSource(partner_terms)


@pytest.fixture
def report_repo() -> FakeReportRepository:
    return FakeReportRepository()


@pytest.fixture
def withdrawal_repo() -> FakeWithdrawalRepository:
    return FakeWithdrawalRepository()


@pytest.fixture
def mock_notifier() -> AsyncMock:
    """Notifier double; notify is an async no-op."""
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def mock_transfer_gateway() -> AsyncMock:
    """Transfer gateway that succeeds with a 2% fee."""
    gateway = AsyncMock()

    async def _transfer(destination_account_id, amount, idempotency_key, metadata=None):  # type: ignore[no-untyped-def]
        fee = (amount * Decimal("0.02")).quantize(Decimal("0.01"))
        return TransferResult(transfer_id="tr_test_001", amount=amount - fee, fee_amount=fee)

    gateway.transfer = AsyncMock(side_effect=_transfer)
    gateway.find_transfer = AsyncMock(return_value=None)
    return gateway
