"""Aggregator: pure reduction of ledger entries into report figures.

Formulas:
    net_profit             = total_revenue - total_expenses
    roi_percentage         = net_profit / total_expenses * 100       (None if no expenses)
    partner_profit_share   = net_profit * share_percentage / 100      (None if no investment)
    partner_roi_percentage = partner_profit_share / investment * 100  (None if no investment)

All arithmetic is Decimal. Money is quantized to cents and percentages to four
decimal places, both ROUND_HALF_UP. No I/O happens here: identical inputs
always produce identical outputs.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from partner_financials.core.interfaces import PartnerTerms
from partner_financials.core.ledger import LedgerEntry, LedgerSourceTag, Polarity
from partner_financials.core.month import ReportMonth
from partner_financials.errors import ValidationError

CENTS = Decimal("0.01")
PERCENT_PLACES = Decimal("0.0001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def quantize_percent(value: Decimal) -> Decimal:
    return value.quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def _optional_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class MonthlySummary:
    """Organization-level figures for one month."""

    month: ReportMonth
    total_revenue: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    roi_percentage: Decimal | None

    @property
    def is_profit(self) -> bool:
        return self.net_profit >= ZERO


@dataclass(frozen=True)
class ReportComputation:
    """Everything the Report Store needs to write one monthly report."""

    total_revenue: Decimal
    total_expenses: Decimal
    net_profit: Decimal
    roi_percentage: Decimal | None
    partner_investment_amount: Decimal
    partner_share_percentage: Decimal
    partner_profit_share: Decimal | None
    partner_roi_percentage: Decimal | None
    revenue_breakdown: tuple[LedgerEntry, ...] = field(default=())
    expense_breakdown: tuple[LedgerEntry, ...] = field(default=())

    @property
    def partner_share_applicable(self) -> bool:
        """False when the partner has no recorded investment."""
        return self.partner_profit_share is not None

    def summary(self) -> dict[str, Any]:
        return {
            "total_revenue": str(self.total_revenue),
            "total_expenses": str(self.total_expenses),
            "net_profit": str(self.net_profit),
            "roi_percentage": _optional_str(self.roi_percentage),
            "partner_investment": str(self.partner_investment_amount),
            "partner_share": str(self.partner_share_percentage),
            "partner_profit_share": _optional_str(self.partner_profit_share),
            "partner_roi": _optional_str(self.partner_roi_percentage),
            "revenue_by_source": {
                tag.value: str(_sum(e for e in self.revenue_breakdown if e.source is tag))
                for tag in (LedgerSourceTag.TRANSACTION, LedgerSourceTag.MANUAL_REVENUE)
            },
        }

    def report_data(self, balance: Decimal) -> dict[str, Any]:
        """JSON snapshot persisted alongside the report."""
        summary = self.summary()
        summary["balance"] = str(balance)
        return {
            "revenue_breakdown": [entry.to_snapshot() for entry in self.revenue_breakdown],
            "expense_breakdown": [entry.to_snapshot() for entry in self.expense_breakdown],
            "summary": summary,
        }


def _sum(entries: Iterable[LedgerEntry]) -> Decimal:
    return sum((entry.amount for entry in entries), ZERO)


def _totals(entries: list[LedgerEntry]) -> tuple[Decimal, Decimal, Decimal, Decimal | None]:
    total_revenue = quantize_money(_sum(e for e in entries if e.polarity is Polarity.REVENUE))
    total_expenses = quantize_money(_sum(e for e in entries if e.polarity is Polarity.EXPENSE))
    net_profit = total_revenue - total_expenses
    roi_percentage = (
        quantize_percent(net_profit / total_expenses * HUNDRED) if total_expenses > ZERO else None
    )
    return total_revenue, total_expenses, net_profit, roi_percentage


def validate_terms(terms: PartnerTerms) -> tuple[Decimal, Decimal]:
    """Normalise partner terms to (investment, share_percentage).

    A missing investment means "no investment". A missing share percentage is
    only acceptable when there is no investment to apply it to.

    Raises:
        ValidationError: On negative investment or an out-of-range/missing share.
    """
    investment = terms.investment_amount if terms.investment_amount is not None else ZERO
    if investment < ZERO:
        raise ValidationError(
            "Partner investment amount cannot be negative",
            context={"partner_invitation_id": terms.invitation_id, "investment_amount": str(investment)},
        )
    share = terms.share_percentage
    if share is None:
        if investment > ZERO:
            raise ValidationError(
                "Partner terms are missing the share percentage",
                context={"partner_invitation_id": terms.invitation_id},
            )
        share = ZERO
    if not ZERO <= share <= HUNDRED:
        raise ValidationError(
            f"Partner share percentage {share} must be between 0 and 100",
            context={"partner_invitation_id": terms.invitation_id, "share_percentage": str(share)},
        )
    return investment, share


def aggregate(entries: list[LedgerEntry], terms: PartnerTerms) -> ReportComputation:
    """Reduce ledger entries and partner terms into a ReportComputation.

    Args:
        entries: Ledger entries for one organization and month.
        terms: Investment terms of the partner the report is for.

    Returns:
        The computed report figures with the breakdown used to derive them.

    Raises:
        ValidationError: If the partner terms are invalid.
    """
    investment, share = validate_terms(terms)
    total_revenue, total_expenses, net_profit, roi_percentage = _totals(entries)

    partner_profit_share: Decimal | None = None
    partner_roi_percentage: Decimal | None = None
    if investment > ZERO:
        partner_profit_share = quantize_money(net_profit * share / HUNDRED)
        partner_roi_percentage = quantize_percent(partner_profit_share / investment * HUNDRED)

    return ReportComputation(
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=net_profit,
        roi_percentage=roi_percentage,
        partner_investment_amount=quantize_money(investment),
        partner_share_percentage=quantize_percent(share),
        partner_profit_share=partner_profit_share,
        partner_roi_percentage=partner_roi_percentage,
        revenue_breakdown=tuple(e for e in entries if e.polarity is Polarity.REVENUE),
        expense_breakdown=tuple(e for e in entries if e.polarity is Polarity.EXPENSE),
    )


def summarize_month(entries: list[LedgerEntry], month: ReportMonth) -> MonthlySummary:
    """Organization-level figures for one month, without partner terms."""
    total_revenue, total_expenses, net_profit, roi_percentage = _totals(entries)
    return MonthlySummary(
        month=month,
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        net_profit=net_profit,
        roi_percentage=roi_percentage,
    )
