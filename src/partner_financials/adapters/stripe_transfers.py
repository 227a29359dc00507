"""Stripe Connect transfer gateway.

Pays out withdrawals to the partner's connected Stripe account. The platform
fee is kept by the platform: the partner receives ``amount - fee``.

Stripe's Python SDK is synchronous, so calls run in a worker thread. Every
transfer carries an idempotency key, which is also stored as its
``transfer_group`` so an interrupted payout can be found again later.
"""

import asyncio
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

import stripe

from partner_financials.core.aggregator import HUNDRED, ZERO, quantize_money
from partner_financials.core.interfaces import TransferResult
from partner_financials.errors import TransferDeclinedError, UpstreamUnavailableError, ValidationError
from partner_financials.observability import get_logger
from partner_financials.settings import Settings

logger = get_logger(__name__)

# Refusals that will not succeed on retry without someone changing something.
_DECLINED_ERRORS: tuple[type[stripe.StripeError], ...] = (
    stripe.CardError,
    stripe.InvalidRequestError,
    stripe.PermissionError,
)


def compute_platform_fee(amount: Decimal, fee_percentage: Decimal) -> Decimal:
    """Platform fee on a withdrawal, rounded half-up to cents."""
    return quantize_money(amount * fee_percentage / HUNDRED)


def to_minor_units(amount: Decimal) -> int:
    return int((quantize_money(amount) * HUNDRED).to_integral_value())


def from_minor_units(amount: int) -> Decimal:
    return quantize_money(Decimal(amount) / HUNDRED)


class StripeTransferGateway:
    """Implements ITransferGateway with ``stripe.Transfer.create`` and ``stripe.Transfer.list``.

    Args:
        settings: Provides the secret key, currency, fee percentage and timeout.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.stripe_secret_key.get_secret_value()
        self._currency = settings.transfer_currency
        self._fee_percentage = settings.platform_fee_percentage
        self._timeout = settings.transfer_timeout_seconds

    async def transfer(
        self,
        destination_account_id: str,
        amount: Decimal,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """Transfer ``amount`` minus the platform fee to a connected account.

        Args:
            destination_account_id: Stripe Connect account id (``acct_...``).
            amount: Gross withdrawal amount.
            idempotency_key: Stable key for this withdrawal.
            metadata: Extra identifiers stored on the Stripe transfer.

        Returns:
            TransferResult with the Stripe transfer id and fee kept.

        Raises:
            ValidationError: If nothing would be left after the platform fee.
            TransferDeclinedError: Stripe refused the transfer.
            UpstreamUnavailableError: Stripe could not be reached or timed out.
        """
        self._require_key()
        fee = compute_platform_fee(amount, self._fee_percentage)
        net = amount - fee
        if net <= ZERO:
            raise ValidationError(
                "Withdrawal amount does not cover the platform fee",
                context={"amount": str(amount), "platform_fee": str(fee)},
            )

        transfer = await self._call(
            stripe.Transfer.create,
            idempotency_key,
            amount=to_minor_units(net),
            currency=self._currency,
            destination=destination_account_id,
            transfer_group=idempotency_key,
            metadata={
                **(metadata or {}),
                "gross_amount": str(amount),
                "platform_fee": str(fee),
            },
            idempotency_key=idempotency_key,
            api_key=self._api_key,
        )

        logger.info(
            "stripe_transfer_created",
            transfer_id=transfer.id,
            destination=destination_account_id,
            amount=str(net),
            platform_fee=str(fee),
        )
        return TransferResult(transfer_id=transfer.id, amount=net, fee_amount=fee)

    async def find_transfer(self, idempotency_key: str) -> TransferResult | None:
        """Look up the transfer created for ``idempotency_key``, if any.

        Raises:
            UpstreamUnavailableError: Stripe could not be reached or timed out.
        """
        self._require_key()
        page = await self._call(
            stripe.Transfer.list,
            idempotency_key,
            transfer_group=idempotency_key,
            limit=1,
            api_key=self._api_key,
        )
        if not page.data:
            logger.info("stripe_transfer_not_found", idempotency_key=idempotency_key)
            return None

        transfer = page.data[0]
        net = from_minor_units(transfer.amount)
        try:
            fee = quantize_money(Decimal(str(transfer.metadata.get("platform_fee"))))
        except (InvalidOperation, ValueError):
            fee = compute_platform_fee(net, self._fee_percentage)
        logger.info("stripe_transfer_found", idempotency_key=idempotency_key, transfer_id=transfer.id)
        return TransferResult(transfer_id=transfer.id, amount=net, fee_amount=fee)

    def _require_key(self) -> None:
        if not self._api_key:
            raise UpstreamUnavailableError(
                "Payment processor is not configured",
                recovery_hint="Set PARTNER_FIN_STRIPE_SECRET_KEY",
            )

    async def _call(self, func: Callable[..., Any], idempotency_key: str, /, **params: Any) -> Any:
        """Run a Stripe SDK call in a thread and map its errors."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, **params), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("stripe_request_timeout", idempotency_key=idempotency_key, timeout=self._timeout)
            raise UpstreamUnavailableError(
                "Timed out waiting for the payment processor",
                context={"idempotency_key": idempotency_key},
            ) from exc
        except _DECLINED_ERRORS as exc:
            logger.warning(
                "stripe_transfer_declined",
                idempotency_key=idempotency_key,
                stripe_code=getattr(exc, "code", None),
                error=str(exc),
            )
            raise TransferDeclinedError(
                f"Transfer was declined: {exc.user_message or exc}",
                context={"idempotency_key": idempotency_key, "stripe_code": getattr(exc, "code", None)},
            ) from exc
        except stripe.StripeError as exc:
            logger.error("stripe_request_failed", idempotency_key=idempotency_key, error=str(exc))
            raise UpstreamUnavailableError(
                "Payment processor request failed",
                context={"idempotency_key": idempotency_key},
            ) from exc
