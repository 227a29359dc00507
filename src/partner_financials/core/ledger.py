"""Ledger Reader: turns the organization's financial records into ledger entries.

Three sources feed a monthly ledger:
  - completed project transactions with a positive amount  -> revenue/transaction
  - manually entered revenue rows                         -> revenue/manual_revenue
  - Approved or Paid expenses                             -> expense/expense

A failure of any source fails the whole read; a source is never replaced by
an empty result.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from partner_financials.core.interfaces import ILedgerSource, LedgerRecord
from partner_financials.core.month import ReportMonth
from partner_financials.errors import UpstreamUnavailableError
from partner_financials.observability import get_logger

logger = get_logger(__name__)

COMPLETED_TRANSACTION_STATUS = "completed"
COUNTED_EXPENSE_STATUSES: tuple[str, ...] = ("Approved", "Paid")

_ZERO = Decimal("0")


class Polarity(str, Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"


class LedgerSourceTag(str, Enum):
    TRANSACTION = "transaction"
    MANUAL_REVENUE = "manual_revenue"
    EXPENSE = "expense"


@dataclass(frozen=True)
class LedgerEntry:
    """A dated monetary amount with polarity and source tag."""

    polarity: Polarity
    source: LedgerSourceTag
    amount: Decimal
    occurred_at: datetime
    record_id: str

    def to_snapshot(self) -> dict[str, str]:
        """JSON-safe form stored in the report breakdown."""
        return {
            "source": self.source.value,
            "record_id": self.record_id,
            "amount": str(self.amount),
            "occurred_at": self.occurred_at.isoformat(),
        }


def parse_amount(value: Any) -> Decimal:
    """Parse a stored amount leniently: missing or non-numeric values count as zero."""
    if value is None or isinstance(value, bool):
        return _ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return _ZERO
    if not amount.is_finite():
        return _ZERO
    return amount


def _strict_amount(value: Any) -> Decimal:
    # Transaction amounts come from a numeric column filtered on amount > 0.
    return value if isinstance(value, Decimal) else Decimal(str(value))


class LedgerReader:
    """Reads the ledger of one organization for one calendar month.

    Args:
        source: Ledger data source.
        timeout_seconds: Upper bound for the whole read; exceeding it raises
            UpstreamUnavailableError.
    """

    def __init__(self, source: ILedgerSource, timeout_seconds: float = 15.0) -> None:
        self._source = source
        self._timeout_seconds = timeout_seconds

    async def read_ledger(self, organization_id: str, month: ReportMonth) -> list[LedgerEntry]:
        """Return every ledger entry of the organization in ``[month.start, month.end)``.

        Raises:
            UpstreamUnavailableError: If any source read fails or times out.
        """
        try:
            entries = await asyncio.wait_for(
                self._read(organization_id, month.start, month.end),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "ledger_read_timeout",
                organization_id=organization_id,
                month=str(month),
                timeout_seconds=self._timeout_seconds,
            )
            raise UpstreamUnavailableError(
                "Timed out reading the organization ledger",
                context={"organization_id": organization_id, "month": str(month)},
            ) from exc
        except (DBAPIError, PoolTimeoutError, OSError) as exc:
            logger.error(
                "ledger_read_failed",
                organization_id=organization_id,
                month=str(month),
                error=str(exc),
            )
            raise UpstreamUnavailableError(
                "Ledger data source is unavailable",
                context={"organization_id": organization_id, "month": str(month)},
            ) from exc

        logger.debug(
            "ledger_read",
            organization_id=organization_id,
            month=str(month),
            entry_count=len(entries),
        )
        return entries

    async def _read(
        self,
        organization_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> list[LedgerEntry]:
        entries: list[LedgerEntry] = []

        project_ids = await self._source.list_project_ids(organization_id)
        # An empty IN () must not turn into "no filter": skip the read instead.
        if project_ids:
            transactions = await self._source.list_transactions(
                project_ids=project_ids,
                status=COMPLETED_TRANSACTION_STATUS,
                period_start=period_start,
                period_end=period_end,
            )
            entries.extend(
                _entry(Polarity.REVENUE, LedgerSourceTag.TRANSACTION, record, _strict_amount(record.amount))
                for record in transactions
            )

        manual_revenue = await self._source.list_manual_revenue(
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
        )
        entries.extend(
            _entry(Polarity.REVENUE, LedgerSourceTag.MANUAL_REVENUE, record, parse_amount(record.amount))
            for record in manual_revenue
        )

        expenses = await self._source.list_expenses(
            organization_id=organization_id,
            statuses=COUNTED_EXPENSE_STATUSES,
            period_start=period_start,
            period_end=period_end,
        )
        entries.extend(
            _entry(Polarity.EXPENSE, LedgerSourceTag.EXPENSE, record, parse_amount(record.amount))
            for record in expenses
        )
        return entries


def _entry(
    polarity: Polarity,
    source: LedgerSourceTag,
    record: LedgerRecord,
    amount: Decimal,
) -> LedgerEntry:
    return LedgerEntry(
        polarity=polarity,
        source=source,
        amount=amount,
        occurred_at=record.created_at,
        record_id=str(record.record_id),
    )
