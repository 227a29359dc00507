"""Abstract interfaces (Protocol classes) for the partner financials service.

Services depend on these interfaces, not on concrete implementations, so that
the ledger store, payment processor and notifier can be replaced by test
doubles without touching SQLAlchemy, Stripe or HTTP.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from partner_financials.core.models import FinancialReport, WithdrawalRequest


@dataclass(frozen=True)
class LedgerRecord:
    """A raw monetary record as returned by the ledger data source.

    ``amount`` is left as stored: manual revenue and expense amounts may be
    strings, blanks or NULL and are parsed by the Ledger Reader.
    """

    record_id: str
    amount: Any
    created_at: datetime


@dataclass(frozen=True)
class PartnerVisibility:
    """Report figures the organization lets a partner see.

    A partner without a settings row sees nothing.
    """

    can_see_revenue: bool = False
    can_see_roi: bool = False
    can_see_balance: bool = False
    can_see_monthly_reports: bool = False


@dataclass(frozen=True)
class PartnerTerms:
    """Investment terms and payout details of one partner invitation."""

    invitation_id: str
    organization_id: str
    status: str
    investment_amount: Decimal | None
    share_percentage: Decimal | None
    user_id: str | None = None
    payout_account_id: str | None = None
    payout_onboarding_completed: bool = False
    email: str | None = None
    visibility: PartnerVisibility = PartnerVisibility()


@dataclass(frozen=True)
class TransferResult:
    """Successful payment-processor transfer."""

    transfer_id: str
    amount: Decimal
    fee_amount: Decimal


@runtime_checkable
class ILedgerSource(Protocol):
    """Read-only access to the three financial record sources."""

    async def list_project_ids(self, organization_id: str) -> list[str]:
        """Ids of all projects owned by the organization."""
        ...

    async def list_transactions(
        self,
        project_ids: list[str],
        status: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        """Transactions of the projects with the given status and amount > 0 in [start, end)."""
        ...

    async def list_manual_revenue(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        """Manually entered revenue rows of the organization in [start, end)."""
        ...

    async def list_expenses(
        self,
        organization_id: str,
        statuses: tuple[str, ...],
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerRecord]:
        """Expense rows with one of the statuses in [start, end)."""
        ...


@runtime_checkable
class IPartnerTermsSource(Protocol):
    """Lookup of partner investment terms."""

    async def get_partner_terms(self, invitation_id: str) -> PartnerTerms | None:
        """Terms for the invitation, or None when it does not exist."""
        ...


@runtime_checkable
class IFinancialReportRepository(Protocol):
    """Persistence of monthly financial reports."""

    async def upsert(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
        values: dict[str, Any],
        created_by: str | None,
    ) -> FinancialReport:
        """Insert or update the report identified by the unique key."""
        ...

    async def get_by_id(self, report_id: uuid.UUID) -> FinancialReport | None:
        """Retrieve a report by primary key."""
        ...

    async def get_by_key(
        self,
        organization_id: str,
        partner_invitation_id: str,
        report_month: date,
        report_type: str,
    ) -> FinancialReport | None:
        """Retrieve a report by its unique (organization, partner, month, type) key."""
        ...

    async def mark_sent(self, report_id: uuid.UUID, sent_at: datetime) -> bool:
        """Set sent_at if it is still NULL. Returns True when this call set it."""
        ...

    async def adjust_balance(self, report_id: uuid.UUID, delta: Decimal) -> None:
        """Add ``delta`` (usually negative) to the report balance."""
        ...

    async def list_for_partner(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[FinancialReport]:
        """Reports for a partner, newest month first."""
        ...

    async def checkpoint(self) -> None:
        """Commit pending writes so they survive a later failure."""
        ...


@runtime_checkable
class IWithdrawalRequestRepository(Protocol):
    """Persistence of withdrawal requests with compare-and-swap status writes."""

    async def create(self, request: WithdrawalRequest) -> WithdrawalRequest:
        """Persist a new withdrawal request."""
        ...

    async def get_by_id(self, request_id: uuid.UUID) -> WithdrawalRequest | None:
        """Retrieve a withdrawal request by primary key (fresh read)."""
        ...

    async def transition(
        self,
        request_id: uuid.UUID,
        expected_status: str,
        new_status: str,
        values: dict[str, Any] | None = None,
    ) -> WithdrawalRequest | None:
        """Write ``new_status`` only if the current status is ``expected_status``.

        Returns the updated request, or None when the status did not match.
        """
        ...

    async def sum_committed_for_report(
        self,
        report_id: uuid.UUID,
        exclude_request_id: uuid.UUID | None = None,
    ) -> Decimal:
        """Total amount of non-rejected requests referencing the report."""
        ...

    async def sum_completed_for_report(self, report_id: uuid.UUID) -> Decimal:
        """Total amount of completed requests referencing the report."""
        ...

    async def record_payout_transaction(
        self,
        request: WithdrawalRequest,
        transfer_id: str,
        recorded_by: str | None,
    ) -> None:
        """Write the completed payout to the host transactions table."""
        ...

    async def list_for_partner(
        self,
        organization_id: str,
        partner_invitation_id: str,
    ) -> list[WithdrawalRequest]:
        """Requests for a partner, newest first."""
        ...

    async def checkpoint(self) -> None:
        """Commit pending writes so they survive a later failure."""
        ...


@runtime_checkable
class ITransferGateway(Protocol):
    """Payment-processor transfer capability."""

    async def transfer(
        self,
        destination_account_id: str,
        amount: Decimal,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """Transfer ``amount`` (minus platform fee) to the destination account.

        Raises:
            TransferDeclinedError: The processor refused the transfer.
            UpstreamUnavailableError: The processor could not be reached.
        """
        ...

    async def find_transfer(self, idempotency_key: str) -> TransferResult | None:
        """The transfer created with ``idempotency_key``, or None if there is none.

        Raises:
            UpstreamUnavailableError: The processor could not be reached.
        """
        ...


@runtime_checkable
class INotifier(Protocol):
    """Fire-and-forget partner notifications."""

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver an event to a user. Must never raise."""
        ...
